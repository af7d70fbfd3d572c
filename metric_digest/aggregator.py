"""Windowed aggregate queries and the per-series merge."""
from typing import Dict, Iterable, Mapping, Optional, Tuple
import logging
import math

from metric_digest.config import RunContext
from metric_digest.series import STATISTICS, MergedRecord, MetricKey

logger = logging.getLogger(__name__)

PartialMap = Dict[MetricKey, float]


def _flux_regex(pattern: str) -> str:
    # Flux regex literals are delimited by '/'
    return pattern.replace("\\/", "/").replace("/", "\\/")


def build_base_query(context: RunContext) -> str:
    """Trailing-window selection shared by all four statistics."""
    query = (
        f'from(bucket: "{context.bucket}") '
        f'|> range(start: -{context.interval_minutes}m) '
        f'|> filter(fn: (r) => r["_measurement"] =~ /{_flux_regex(context.measurement_regex)}/)'
    )
    if context.field_regex is not None:
        query += f' |> filter(fn: (r) => r["_field"] =~ /{_flux_regex(context.field_regex)}/)'
    return query


def build_queries(context: RunContext) -> Dict[str, str]:
    """One Flux query per statistic, keyed by statistic name."""
    base = build_base_query(context)
    every = f"{context.interval_minutes}m"
    queries = {}
    for statistic in STATISTICS:
        if statistic == "last":
            queries[statistic] = f"{base} |> last()"
        else:
            queries[statistic] = f"{base} |> aggregateWindow(every: {every}, fn: {statistic}) |> last()"
    return queries


def _as_number(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def rows_to_partial(rows: Iterable[Tuple]) -> PartialMap:
    """
    Build a partial aggregate map from ``(measurement, field, value)`` rows.

    Rows missing an identifier or carrying a non-numeric value are skipped.
    """
    partial: PartialMap = {}
    for measurement, field, value in rows:
        number = _as_number(value)
        if measurement is None or field is None or number is None:
            continue
        partial[MetricKey(str(measurement), str(field))] = number
    return partial


def merge_partials(partials: Mapping[str, Mapping[MetricKey, float]]) -> Dict[MetricKey, MergedRecord]:
    """
    Merge per-statistic maps into one record per series.

    Each partial map is walked once and upserted into a single accumulator,
    so the resulting key set is the union of all input key sets and only the
    statistics seen for a key are populated.
    """
    merged: Dict[MetricKey, MergedRecord] = {}
    for statistic, partial in partials.items():
        if statistic not in STATISTICS:
            raise ValueError(f"Unknown statistic: {statistic}")
        for key, value in partial.items():
            record = merged.get(key)
            if record is None:
                record = merged[key] = MergedRecord(key=key)
            setattr(record, statistic, value)
    return merged


class WindowedAggregator:
    """Runs the four windowed queries for a run and merges the results."""

    def __init__(self, store, context: RunContext, self_metrics=None):
        self.store = store
        self.context = context
        self.self_metrics = self_metrics

    def query_partial(self, statistic: str, flux: str) -> PartialMap:
        """Run one query. Any failure degrades this statistic to an empty map."""
        try:
            return rows_to_partial(self.store.query_rows(flux))
        except Exception as e:
            logger.warning(f"Query for '{statistic}' failed: {e}\nFlux: {flux}")
            if self.self_metrics:
                self.self_metrics.record_query_failure(statistic)
            return {}

    def query_partials(self) -> Dict[str, PartialMap]:
        partials = {}
        for statistic, flux in build_queries(self.context).items():
            partials[statistic] = self.query_partial(statistic, flux)
            logger.debug(f"Statistic '{statistic}': {len(partials[statistic])} series")
        return partials

    def aggregate(self) -> Dict[MetricKey, MergedRecord]:
        merged = merge_partials(self.query_partials())
        logger.info(f"Aggregated {len(merged)} series over the last {self.context.interval_minutes}m")
        return merged
