"""Rendering of the merged snapshot into the model prompt."""
from typing import Any, Dict, Mapping
import json

from metric_digest.config import RunContext
from metric_digest.series import MergedRecord, MetricKey

PROMPT_TEMPLATE = (
    "You are an assistant that summarizes monitoring metrics for a dashboard. "
    "Given the following JSON metrics aggregated over the last {interval_minutes} minutes, "
    "write a short, human-friendly summary (2-4 concise sentences) highlighting anomalies, "
    "trends, and any actionable insights. "
    "Avoid repeating raw numbers unless necessary. JSON: {payload}"
)


def build_payload(context: RunContext, records: Mapping[MetricKey, MergedRecord]) -> Dict[str, Any]:
    """Build the JSON document handed to the model. Absent statistics are omitted."""
    metrics = []
    for key, record in records.items():
        item = {"measurement": key.measurement, "field": key.field}
        item.update(record.populated())
        metrics.append(item)

    return {
        "interval_minutes": context.interval_minutes,
        "timezone": context.timezone,
        "metrics": metrics,
    }


def render_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def build_prompt(context: RunContext, records: Mapping[MetricKey, MergedRecord]) -> str:
    payload = render_payload(build_payload(context, records))
    return PROMPT_TEMPLATE.format(interval_minutes=context.interval_minutes, payload=payload)
