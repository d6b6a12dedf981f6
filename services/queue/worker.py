"""arq worker runner.

Run with: python -m services.queue.worker
Or: arq services.queue.tasks.WorkerSettings

Pass ``--once`` to run a single scheduled-send sweep and exit, for use from
an external scheduler instead of the arq cron job.
"""

import argparse
import logging

from arq import run_worker

from services.queue.tasks import WorkerSettings, get_redis_settings
from services.shared.config import get_settings
from services.shared.container import build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def run_once() -> None:
    """Run one sweep synchronously, without Redis."""
    services = build_services(get_settings())
    try:
        result = services.sweep.run()
        logger.info(
            f"Sweep finished: selected={result.selected}, "
            f"sent={result.sent}, failed={result.failed}"
        )
    finally:
        services.engine.dispose()


def main(argv: list[str] | None = None) -> None:
    """Run the arq worker."""
    parser = argparse.ArgumentParser(description="Scheduled invoice email worker")
    parser.add_argument(
        "--once", action="store_true", help="run a single sweep and exit"
    )
    args = parser.parse_args(argv)

    if args.once:
        run_once()
        return

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")

    # Update worker settings from config
    WorkerSettings.redis_settings = get_redis_settings(settings)
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout

    # Run worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
