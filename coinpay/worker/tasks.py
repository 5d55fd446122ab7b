"""ARQ jobs: the recharge sweeps, each recorded in the dead-letter collection when it raises."""

import uuid
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from arq.connections import RedisSettings

from coinpay.core.config import get_settings
from coinpay.core.logging import configure_logging, get_logger
from coinpay.db.init import close_db, init_db
from coinpay.models.failed_job import FailedJob
from coinpay.worker import cron

log = get_logger(__name__)


async def _run_sweep(job_name: str, ctx: dict[str, Any], sweep: Callable[[], Awaitable[int]]) -> int:
    """Run one sweep; on exception persist a FailedJob then re-raise so arq sees the failure."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
    attempt = ctx.get("job_try") or 1
    try:
        count = await sweep()
    except Exception as e:
        await FailedJob(
            job_name=job_name,
            job_id=job_id,
            attempt=attempt,
            error_type=type(e).__name__,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=job_id, attempt=attempt)
        raise
    log.info("job_done", job=job_name, job_id=job_id, count=count)
    return count


async def expire_pending_orders(ctx: dict[str, Any]) -> int:
    """Cron job: fail recharge orders nobody paid within the timeout."""
    return await _run_sweep("expire_pending_orders", ctx, cron.run_expire_pending_orders)


async def repair_recharge_ledger(ctx: dict[str, Any]) -> int:
    """Cron job: append deposit entries missing for paid orders."""
    return await _run_sweep("repair_recharge_ledger", ctx, cron.run_repair_recharge_ledger)


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    await init_db()
    log.info("worker_startup", db=settings.mongodb_db_name, timeout_minutes=settings.recharge_timeout_minutes)


async def shutdown(ctx: dict) -> None:
    close_db()
    log.info("worker_shutdown")


def get_redis_settings() -> RedisSettings:
    u = urlparse(get_settings().redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
