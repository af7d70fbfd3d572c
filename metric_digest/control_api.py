"""Status and control API using FastAPI."""
from typing import Optional
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import logging
import threading
import time

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ControlAPI:
    """FastAPI-based status and control API for the summary job."""

    def __init__(self, job, scheduler=None):
        """
        Initialize control API.

        Args:
            job: The summary job being scheduled
            scheduler: The interval scheduler, absent in run-once mode
        """
        self.job = job
        self.scheduler = scheduler
        self.start_time = time.time()
        self.app = FastAPI(title="Metric Digest Control API")
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Current job status."""
            job = self.job
            last = job.last_result
            return {
                "uptime_seconds": time.time() - self.start_time,
                "interval_minutes": job.context.interval_minutes,
                "timezone": job.context.timezone,
                "model": job.config.model,
                "output_measurement": job.context.output_measurement,
                "running": job.running,
                "runs_total": job.runs_total,
                "failures_total": job.failures_total,
                "last_started_at": _iso(job.last_started_at),
                "last_success": {
                    "finished_at": _iso(last.finished_at),
                    "metric_count": last.metric_count,
                    "summary": last.point.text,
                } if last else None,
                "last_error": job.last_error,
                "last_failed_stage": job.last_failed_stage,
                "next_run_at": _iso(self.scheduler.next_fire_at) if self.scheduler else None,
            }

        @self.app.post("/control/run")
        async def trigger_run():
            """Start one run now unless a run is in flight."""
            if not self.job.try_run():
                raise HTTPException(status_code=409, detail="A run is already in progress")
            logger.info("Manual run triggered")
            return JSONResponse(
                status_code=202,
                content={"status": "run_started", "timestamp": time.time()},
            )

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server (blocking)."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")

    def run_in_thread(self, host: str = "0.0.0.0", port: int = 8081) -> threading.Thread:
        thread = threading.Thread(
            target=self.run,
            kwargs={"host": host, "port": port},
            name="control-api",
            daemon=True,
        )
        thread.start()
        return thread
