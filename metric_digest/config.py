"""Configuration models using Pydantic for validation."""
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Literal, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import os
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from metric_digest.errors import ConfigurationError

DEFAULT_SYSTEM_INSTRUCTION = "You are a concise observability assistant."

# Field name -> environment variable, in diagnosis order
ENV_KEYS: Dict[str, str] = {
    "influx_url": "INFLUX_URL",
    "influx_token": "INFLUX_TOKEN",
    "influx_org": "INFLUX_ORG",
    "influx_bucket": "INFLUX_BUCKET",
    "google_api_key": "GOOGLE_API_KEY",
    "model": "GOOGLE_MODEL",
    "interval_minutes": "INTERVAL_MINUTES",
    "measurement_regex": "INFLUX_MEASUREMENT_REGEX",
    "field_regex": "INFLUX_FIELD_REGEX",
    "influx_timeout_s": "INFLUX_TIMEOUT_S",
    "google_api_endpoint": "GOOGLE_API_ENDPOINT",
    "output_measurement": "OUTPUT_MEASUREMENT",
    "timezone": "TIMEZONE",
    "run_once": "RUN_ONCE",
    "system_instruction": "SYSTEM_INSTRUCTION",
    "log_level": "LOG_LEVEL",
    "log_format": "LOG_FORMAT",
    "metrics_port": "METRICS_PORT",
    "control_api_port": "CONTROL_API_PORT",
}

REQUIRED_FIELDS = (
    "influx_url",
    "influx_token",
    "influx_org",
    "influx_bucket",
    "google_api_key",
    "model",
)


class RunContext(BaseModel):
    """Immutable per-run parameters derived from the configuration."""
    model_config = ConfigDict(frozen=True)

    interval_minutes: int
    timezone: str
    output_measurement: str
    bucket: str
    measurement_regex: str = ".*"
    field_regex: Optional[str] = None


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    # Metrics store
    influx_url: Optional[str] = "http://localhost:8086"
    influx_token: Optional[str] = None
    influx_org: Optional[str] = None
    influx_bucket: Optional[str] = None
    influx_timeout_s: float = Field(default=30.0, gt=0)
    measurement_regex: str = ".*"
    field_regex: Optional[str] = None

    # Text generation
    google_api_key: Optional[str] = None
    model: Optional[str] = "gemini-2.5-flash"
    google_api_endpoint: str = "https://generativelanguage.googleapis.com/v1beta"
    system_instruction: Optional[str] = DEFAULT_SYSTEM_INSTRUCTION

    # Job
    output_measurement: str = "dashboard_summary"
    interval_minutes: int = Field(default=15, gt=0)
    timezone: Optional[str] = None
    run_once: bool = False

    # Process
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    metrics_port: int = Field(default=0, ge=0)
    control_api_port: int = Field(default=0, ge=0)

    @field_validator("field_regex", "timezone", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("measurement_regex", "field_regex")
    @classmethod
    def validate_regex(cls, v):
        """Reject patterns that cannot be compiled."""
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid regular expression {v!r}: {e}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}")
        return v

    def missing_keys(self) -> List[str]:
        """Environment keys whose values are unset or invalid."""
        missing = [ENV_KEYS[name] for name in REQUIRED_FIELDS if _is_blank(getattr(self, name))]
        if self.interval_minutes <= 0:
            missing.append(ENV_KEYS["interval_minutes"])
        return missing

    def is_valid(self) -> bool:
        return not self.missing_keys()

    def zone(self) -> tzinfo:
        """Timezone used for interval alignment; the system zone when unset."""
        zone_id = self.timezone or system_zone_id()
        if zone_id:
            return ZoneInfo(zone_id)
        return datetime.now().astimezone().tzinfo

    def timezone_name(self) -> str:
        """IANA identifier of the zone, or the local abbreviation if none can be resolved."""
        zone_id = self.timezone or system_zone_id()
        if zone_id:
            return zone_id
        return datetime.now().astimezone().tzname()

    def run_context(self) -> RunContext:
        return RunContext(
            interval_minutes=self.interval_minutes,
            timezone=self.timezone_name(),
            output_measurement=self.output_measurement,
            bucket=self.influx_bucket,
            measurement_regex=self.measurement_regex,
            field_regex=self.field_regex,
        )


def _valid_zone_id(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return name


def system_zone_id(
    environ: Optional[Mapping[str, str]] = None,
    localtime_path: str = "/etc/localtime",
    timezone_file: str = "/etc/timezone",
) -> Optional[str]:
    """
    IANA identifier of the host timezone.

    Checked in order: the ``TZ`` variable, the ``/etc/localtime`` symlink
    target and ``/etc/timezone``. Returns ``None`` when none names a known zone.
    """
    env = os.environ if environ is None else environ
    zone_id = _valid_zone_id(env.get("TZ", "").lstrip(":").strip())
    if zone_id:
        return zone_id

    target = os.path.realpath(localtime_path)
    if "zoneinfo/" in target:
        zone_id = _valid_zone_id(target.split("zoneinfo/", 1)[1])
        if zone_id:
            return zone_id

    try:
        with open(timezone_file, 'r') as f:
            return _valid_zone_id(f.readline().strip())
    except OSError:
        return None


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _missing_required(raw: Mapping[str, Any]) -> List[str]:
    missing = []
    for name in REQUIRED_FIELDS:
        value = raw.get(name, Config.model_fields[name].default)
        if _is_blank(value):
            missing.append(name)
    return missing


def load_config(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from an optional YAML file overlaid with environment variables.

    Args:
        config_path: YAML file whose keys are the snake_case field names
        environ: Environment mapping, defaults to ``os.environ``

    Raises:
        ConfigurationError: listing every unset or invalid key
    """
    import yaml

    raw: Dict[str, Any] = {}
    if config_path:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        with open(config_path, 'r') as f:
            raw.update(yaml.safe_load(f) or {})

    # Environment wins over the file
    env = os.environ if environ is None else environ
    for name, env_key in ENV_KEYS.items():
        if env_key in env:
            raw[name] = env[env_key]

    bad = set(_missing_required(raw))
    details = []
    config = None
    try:
        config = Config(**raw)
    except ValidationError as e:
        for err in e.errors():
            name = str(err["loc"][0]) if err["loc"] else ""
            bad.add(name)
            details.append(f"{ENV_KEYS.get(name, name)}: {err['msg']}")

    if config is not None:
        bad.update(name for name, env_key in ENV_KEYS.items() if env_key in config.missing_keys())

    if bad:
        keys = [ENV_KEYS[name] for name in ENV_KEYS if name in bad]
        keys.extend(sorted(name for name in bad if name not in ENV_KEYS))
        raise ConfigurationError(keys, "; ".join(details) or None)

    return config
