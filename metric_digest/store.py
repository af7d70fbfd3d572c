"""InfluxDB 2.x access: windowed-aggregate queries and the summary write."""
from typing import Any, Iterator, Tuple
import logging

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from metric_digest.config import Config
from metric_digest.errors import PartialQueryError, WriteError
from metric_digest.series import SummaryPoint

logger = logging.getLogger(__name__)


def to_influx_point(point: SummaryPoint) -> Point:
    """Convert a summary point into an InfluxDB point with second precision."""
    return (
        Point(point.measurement)
        .tag("model", point.model)
        .field("text", point.text)
        .field("interval_minutes", int(point.interval_minutes))
        .time(point.timestamp, WritePrecision.S)
    )


class InfluxStore:
    """One InfluxDB client per run, closed when the run ends."""

    def __init__(self, config: Config):
        self.config = config
        self.client = InfluxDBClient(
            url=config.influx_url,
            token=config.influx_token,
            org=config.influx_org,
            timeout=int(config.influx_timeout_s * 1000),
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        self.client.close()

    def query_rows(self, flux: str) -> Iterator[Tuple[Any, Any, Any]]:
        """Yield ``(measurement, field, value)`` for every record of every table."""
        try:
            tables = self.client.query_api().query(flux, org=self.config.influx_org)
        except Exception as e:
            raise PartialQueryError(f"query failed: {e}") from e

        for table in tables:
            for record in table.records:
                yield (
                    record.values.get("_measurement"),
                    record.values.get("_field"),
                    record.get_value(),
                )

    def write_point(self, point: SummaryPoint):
        """Write a single summary point synchronously."""
        try:
            write_api = self.client.write_api(write_options=SYNCHRONOUS)
            write_api.write(
                bucket=self.config.influx_bucket,
                org=self.config.influx_org,
                record=to_influx_point(point),
                write_precision=WritePrecision.S,
            )
        except Exception as e:
            raise WriteError(f"write to measurement '{point.measurement}' failed: {e}") from e

        logger.info(
            f"Summary written to InfluxDB measurement '{point.measurement}' "
            f"in bucket '{self.config.influx_bucket}'"
        )
