"""Interval-aligned, fixed-rate scheduler for the summary job."""
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional
import logging
import threading
import time

logger = logging.getLogger(__name__)


def next_boundary(now: datetime, interval_minutes: int) -> datetime:
    """
    Next wall-clock minute that is a multiple of the interval within the hour.

    A time already on a boundary moves one full interval ahead. When no
    multiple is left in the current hour the top of the next hour is used.
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    slot = ((now.minute // interval_minutes) + 1) * interval_minutes
    if slot >= 60:
        # Add the hour on the absolute timeline so a repeated DST hour is not skipped
        later = (now.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(now.tzinfo)
        return later.replace(minute=0, second=0, microsecond=0)
    return now.replace(minute=slot, second=0, microsecond=0)


def initial_delay_ms(now: datetime, interval_minutes: int) -> int:
    """Milliseconds from ``now`` (timezone-aware) to the next interval boundary."""
    target = next_boundary(now, interval_minutes)
    # Compare on the absolute timeline, not wall-clock fields
    delta = target.astimezone(timezone.utc) - now.astimezone(timezone.utc)
    return int(delta / timedelta(milliseconds=1))


class IntervalScheduler:
    """
    Runs a job on a single worker thread at a fixed rate.

    The first firing is aligned to the next interval boundary in the given
    timezone; later firings follow a constant period on a monotonic clock.
    When a run overruns, the missed firings happen back-to-back, never
    concurrently.

    Args:
        job: Callable invoked once per firing
        interval_minutes: Period and alignment grid
        tz: Timezone the boundaries are computed in
        clock: Returns the current aware wall-clock time
        monotonic: Returns seconds on a monotonic timeline
        wait: Blocks up to the given seconds, returns True when stopped
    """

    def __init__(
        self,
        job: Callable[[], object],
        interval_minutes: int,
        tz: tzinfo,
        clock: Optional[Callable[[], datetime]] = None,
        monotonic: Optional[Callable[[], float]] = None,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.job = job
        self.interval_minutes = interval_minutes
        self.period_s = interval_minutes * 60.0
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(tz))
        self.monotonic = monotonic or time.monotonic

        self._stop_event = threading.Event()
        self.wait = wait or self._stop_event.wait
        self._thread: Optional[threading.Thread] = None

        self.fire_count = 0
        self.next_fire_at: Optional[datetime] = None
        self._next_fire_mono: Optional[float] = None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self):
        """Start the worker thread."""
        if self._thread is not None:
            raise RuntimeError("Scheduler already started")
        self._thread = threading.Thread(
            target=self.run_forever,
            name="summary-scheduler",
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Stop firing. An in-flight run is allowed to finish."""
        logger.info("Stopping scheduler")
        self._stop_event.set()
        if timeout is not None:
            self.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def run_forever(self):
        """Blocking scheduling loop."""
        now = self.clock()
        delay_ms = initial_delay_ms(now, self.interval_minutes)
        self._next_fire_mono = self.monotonic() + delay_ms / 1000.0
        self.next_fire_at = self._wall_after(now, delay_ms / 1000.0)
        logger.info(
            f"Scheduling job. First run in {delay_ms // 1000}s "
            f"(at {self.next_fire_at.isoformat()}), then every {self.interval_minutes} minutes."
        )

        while not self._stop_event.is_set():
            remaining = self._next_fire_mono - self.monotonic()
            if remaining > 0 and self.wait(remaining):
                break
            if self._stop_event.is_set():
                break

            lag = self.monotonic() - self._next_fire_mono
            if lag >= self.period_s:
                logger.warning(f"Firing {lag:.1f}s behind schedule, catching up")

            self._fire()

            self._next_fire_mono += self.period_s
            self.next_fire_at = self._wall_after(
                self.clock(), self._next_fire_mono - self.monotonic()
            )

        logger.info(f"Scheduler stopped after {self.fire_count} runs")

    def _wall_after(self, now: datetime, seconds: float) -> datetime:
        """Wall-clock time ``seconds`` after ``now`` on the absolute timeline."""
        later = now.astimezone(timezone.utc) + timedelta(seconds=seconds)
        return later.astimezone(self.tz)

    def _fire(self):
        self.fire_count += 1
        try:
            self.job()
        except Exception as e:
            logger.error(f"Scheduled job raised: {e}", exc_info=True)
