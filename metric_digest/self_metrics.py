"""Self-monitoring metrics for the summary job, exposed with prometheus_client."""
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry, start_http_server
import logging

logger = logging.getLogger(__name__)


class SelfMetrics:
    """Counters and timings for summary runs."""

    def __init__(self, registry=None, prefix="digest_"):
        if registry is None:
            # Custom registry keeps default Python/process collectors out
            registry = CollectorRegistry()
        self.registry = registry

        self.runs_total = Counter(
            f"{prefix}runs_total",
            "Total number of summary runs by outcome",
            ["outcome"],
            registry=registry
        )

        self.run_failures_total = Counter(
            f"{prefix}run_failures_total",
            "Total number of failed runs by pipeline stage",
            ["stage"],
            registry=registry
        )

        self.query_failures_total = Counter(
            f"{prefix}query_failures_total",
            "Total number of failed windowed-aggregate queries",
            ["statistic"],
            registry=registry
        )

        self.run_duration_seconds = Histogram(
            f"{prefix}run_duration_seconds",
            "Duration of each summary run in seconds",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=registry
        )

        self.metrics_summarized = Gauge(
            f"{prefix}metrics_summarized",
            "Number of series included in the last summary",
            registry=registry
        )

        self.last_success_timestamp = Gauge(
            f"{prefix}last_success_timestamp_seconds",
            "Unix time of the last successfully written summary",
            registry=registry
        )

    def record_run(self, outcome: str, duration: float):
        self.runs_total.labels(outcome=outcome).inc()
        self.run_duration_seconds.observe(duration)

    def record_failure(self, stage: str):
        self.run_failures_total.labels(stage=stage).inc()

    def record_query_failure(self, statistic: str):
        self.query_failures_total.labels(statistic=statistic).inc()

    def set_metrics_summarized(self, count: int):
        self.metrics_summarized.set(count)

    def mark_success(self, timestamp: float):
        self.last_success_timestamp.set(timestamp)

    def serve(self, port: int, bind_address: str = "0.0.0.0"):
        """Start the Prometheus HTTP server for this registry."""
        try:
            start_http_server(port, addr=bind_address, registry=self.registry)
            logger.info(f"Self metrics listening on {bind_address}:{port}/metrics")
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise
