"""Main entry point for the metric summary job."""
import argparse
import logging
import signal
import sys

from pythonjsonlogger.json import JsonFormatter

from metric_digest.config import load_config
from metric_digest.control_api import ControlAPI
from metric_digest.errors import ConfigurationError
from metric_digest.gemini_client import GeminiClient
from metric_digest.job import SummaryJob
from metric_digest.scheduler import IntervalScheduler
from metric_digest.self_metrics import SelfMetrics


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for the configured log format."""
    if log_format == "json":
        return JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt=LOG_DATEFMT,
            rename_fields={"asctime": "time", "levelname": "level", "name": "logger"},
        )
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))
    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("influxdb_client").setLevel(logging.WARNING)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Metric Digest - Summarize recent InfluxDB metrics with Gemini"
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Optional YAML file with settings; environment variables override it"
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run a single summary cycle and exit"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main function."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(
            "Missing required configuration. Please set the required environment variables.\n" + str(e),
            file=sys.stderr,
        )
        return 1
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)
    logger = logging.getLogger(__name__)

    run_once = args.run_once or config.run_once

    logger.info("=" * 60)
    logger.info("Metric Digest")
    logger.info("=" * 60)
    logger.info(f"InfluxDB: {config.influx_url} (org '{config.influx_org}', bucket '{config.influx_bucket}')")
    logger.info(f"Model: {config.model}")
    logger.info(f"Interval: {config.interval_minutes}m, timezone: {config.timezone_name()}")
    logger.info(f"Output measurement: {config.output_measurement}")

    self_metrics = SelfMetrics()
    job = SummaryJob(config, GeminiClient(config), self_metrics=self_metrics)

    if run_once:
        logger.info("Run-once mode")
        job.run()
        return 0

    if config.metrics_port:
        self_metrics.serve(config.metrics_port)

    scheduler = IntervalScheduler(job.run, config.interval_minutes, config.zone())

    if config.control_api_port:
        control_api = ControlAPI(job, scheduler)
        control_api.run_in_thread(port=config.control_api_port)
        logger.info(f"Control API listening on port {config.control_api_port}")

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        scheduler.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler.start()
    # Wake periodically so signal handlers run promptly
    while not scheduler.stopped and scheduler.is_alive():
        scheduler.join(timeout=1.0)
    scheduler.join()
    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
