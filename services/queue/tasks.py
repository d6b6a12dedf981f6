"""Background task definitions for scheduled invoice delivery.

Uses arq (async Redis queue) cron jobs. The sweep runs at the top of every
hour (``0 * * * *``) and delivers every pending schedule that is due.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
import time
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from services.api import metrics
from services.invoices.sweep import ScheduledInvoiceSweep
from services.shared.config import Settings, get_settings
from services.shared.container import ServiceContainer, build_services

logger = logging.getLogger(__name__)


async def send_scheduled_invoices(ctx: dict[str, Any]) -> dict[str, Any]:
    """Deliver all due scheduled invoice emails.

    The sweep itself is synchronous (database and HTTP calls), so it runs in
    a worker thread to keep the event loop responsive.

    Args:
        ctx: arq context (contains the services built on startup)

    Returns:
        SweepResult as dict
    """
    sweep: ScheduledInvoiceSweep | None = ctx.get("sweep")
    owned: ServiceContainer | None = None
    if sweep is None:
        # Not started through the worker hooks; the engine is disposed after this run
        owned = build_services(get_settings())
        sweep = owned.sweep

    logger.info("Running scheduled invoice sweep")
    start_time = time.time()
    try:
        result = await asyncio.to_thread(sweep.run)
    except Exception as e:
        metrics.scheduled_sweep_runs_total.labels(status="error").inc()
        logger.exception(f"Scheduled invoice sweep failed: {e}")
        raise
    finally:
        metrics.scheduled_sweep_duration_seconds.observe(time.time() - start_time)
        if owned is not None:
            owned.engine.dispose()

    metrics.scheduled_sweep_runs_total.labels(status="completed").inc()
    if result.sent:
        metrics.invoice_emails_sent_total.labels(source="scheduled", status="success").inc(
            result.sent
        )
    if result.failed:
        metrics.invoice_emails_sent_total.labels(source="scheduled", status="failed").inc(
            result.failed
        )

    logger.info(
        f"Scheduled invoice sweep completed: selected={result.selected}, "
        f"sent={result.sent}, failed={result.failed}"
    )
    return result.model_dump()


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when worker starts. Builds the database engine and adapters
    once instead of on every sweep.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    services = build_services(settings)
    ctx["settings"] = settings
    ctx["services"] = services
    ctx["sweep"] = services.sweep
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    services = ctx.get("services")
    if services is not None:
        services.engine.dispose()


def get_redis_settings(settings: Settings | None = None) -> RedisSettings:
    """Get Redis settings from configuration."""
    settings = settings or get_settings()
    return RedisSettings.from_dsn(settings.redis_url)


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - The hourly scheduled-send cron job
    - Redis connection settings
    - Job timeout settings
    """

    functions = [send_scheduled_invoices]
    cron_jobs = [
        # unique: a slow sweep is never overlapped by the next hour's run
        cron(send_scheduled_invoices, minute=0, second=0, unique=True, max_tries=1),
    ]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings = None
    max_jobs = 10
    job_timeout = 1800
