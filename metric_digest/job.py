"""One summary cycle: query, merge, generate, write."""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
import logging
import threading
import time

from metric_digest.aggregator import WindowedAggregator
from metric_digest.config import Config
from metric_digest.errors import StageError
from metric_digest.prompt import build_prompt
from metric_digest.series import SummaryPoint
from metric_digest.store import InfluxStore

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of a successful run."""
    started_at: datetime
    finished_at: datetime
    metric_count: int
    point: SummaryPoint


@contextmanager
def _stage(name: str):
    try:
        yield
    except StageError:
        raise
    except Exception as e:
        raise StageError(name, e) from e


def build_summary_point(config: Config, text: str, finished_at: datetime) -> SummaryPoint:
    """The single output point, stamped with the run completion instant in whole seconds."""
    return SummaryPoint(
        measurement=config.output_measurement,
        model=config.model,
        text=text,
        interval_minutes=config.interval_minutes,
        timestamp=finished_at.replace(microsecond=0),
    )


class SummaryJob:
    """Sequences aggregation, prompt building, generation and the write as one run."""

    def __init__(
        self,
        config: Config,
        generator,
        store_factory: Optional[Callable] = None,
        self_metrics=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.context = config.run_context()
        self.generator = generator
        self.store_factory = store_factory or (lambda: InfluxStore(config))
        self.self_metrics = self_metrics
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        # Held for the whole of a run; a second run waits or is refused
        self._run_lock = threading.Lock()

        self.runs_total = 0
        self.failures_total = 0
        self.last_started_at: Optional[datetime] = None
        self.last_result: Optional[RunResult] = None
        self.last_error: Optional[str] = None
        self.last_failed_stage: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def execute(self) -> RunResult:
        """Run the pipeline once. Failures are raised as ``StageError``."""
        started_at = self.clock()
        self.last_started_at = started_at
        logger.info(f"Job started at {started_at.isoformat()}")

        with _stage("connect"):
            store = self.store_factory()

        with store:
            with _stage("query"):
                aggregator = WindowedAggregator(store, self.context, self.self_metrics)
                records = aggregator.aggregate()

            with _stage("prompt"):
                prompt = build_prompt(self.context, records)

            with _stage("generate"):
                summary = self.generator.generate_summary(prompt)
            logger.info(f"Model summary: {summary}")

            finished_at = self.clock()
            point = build_summary_point(self.config, summary, finished_at)
            with _stage("write"):
                store.write_point(point)

        logger.info(f"Job finished at {finished_at.isoformat()}")
        return RunResult(
            started_at=started_at,
            finished_at=finished_at,
            metric_count=len(records),
            point=point,
        )

    def run(self) -> Optional[RunResult]:
        """Scheduler entry point. Never raises; returns ``None`` when the run failed."""
        with self._run_lock:
            return self._run_guarded()

    def try_run(self) -> bool:
        """Start a run on a background thread unless one is already in flight."""
        if not self._run_lock.acquire(blocking=False):
            return False

        def target():
            try:
                self._run_guarded()
            finally:
                self._run_lock.release()

        threading.Thread(target=target, name="summary-manual-run", daemon=True).start()
        return True

    def _run_guarded(self) -> Optional[RunResult]:
        self.runs_total += 1
        started = time.monotonic()
        try:
            result = self.execute()
        except StageError as e:
            self._record_failure(e.stage, e.cause, started)
            return None
        except Exception as e:
            self._record_failure("unknown", e, started)
            return None

        self.last_result = result
        self.last_error = None
        self.last_failed_stage = None
        if self.self_metrics:
            self.self_metrics.record_run("success", time.monotonic() - started)
            self.self_metrics.set_metrics_summarized(result.metric_count)
            self.self_metrics.mark_success(result.finished_at.timestamp())
        return result

    def _record_failure(self, stage: str, cause: BaseException, started: float):
        self.failures_total += 1
        self.last_error = str(cause)
        self.last_failed_stage = stage
        logger.error(f"Job execution failed at stage '{stage}': {cause}", exc_info=cause)
        if self.self_metrics:
            self.self_metrics.record_run("failure", time.monotonic() - started)
            self.self_metrics.record_failure(stage)
