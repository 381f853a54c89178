"""ARQ job definitions: the periodic sweeps."""

import uuid
from typing import Any, Awaitable, Callable

from arq.connections import RedisSettings
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.logging import bind_job, clear_request_context, configure_logging, get_logger
from app.db.init import init_db

log = get_logger(__name__)


async def _run_sweep(ctx: dict[str, Any], job_name: str, sweep: Callable[[], Awaitable[dict]]) -> dict:
    """Run one sweep; on exception record a FailedJob and re-raise.

    arq marks the run failed without retrying it; the sweeps are idempotent,
    so the next scheduled run picks the work up again.
    """
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
    job_try = ctx.get("job_try") or 1
    clear_request_context()
    bind_job(job_name, job_id)
    try:
        out = await sweep()
    except Exception as e:
        from app.models.failed_job import FailedJob
        log.exception("job_failed", job_try=job_try, reason=str(e))
        try:
            await FailedJob(job_name=job_name, job_id=job_id, job_try=job_try, reason=str(e)[:2000]).insert()
        except PyMongoError as dlq_error:
            log.error("dead_letter_write_failed", reason=str(dlq_error))
        raise
    log.info("job_done", **out)
    return out


async def sweep_expired_boosts(ctx: dict[str, Any]) -> dict:
    """Cron job: expire boosts and reconcile featured flags."""
    from app.services.boosts import sweep_expired_boosts as _sweep
    return await _run_sweep(ctx, "sweep_expired_boosts", _sweep)


async def sweep_expired_stories(ctx: dict[str, Any]) -> dict:
    """Cron job: delete expired stories and their media."""
    from app.services.stories import sweep_expired_stories as _sweep
    return await _run_sweep(ctx, "sweep_expired_stories", _sweep)


async def notify_expiring_boosts(ctx: dict[str, Any]) -> dict:
    from app.services.boosts import notify_expiring_boosts as _notify
    return await _run_sweep(ctx, "notify_expiring_boosts", _notify)


async def renew_expiring(ctx: dict[str, Any]) -> dict:
    """Cron job: charge auto-renewing boosts and grants before they end."""
    from app.services.renewals import renew_expiring as _renew
    return await _run_sweep(ctx, "renew_expiring", _renew)


async def recover_half_writes(ctx: dict[str, Any]) -> dict:
    """Cron job: refund orphaned debits and settle stale earnings holds."""
    from app.services.recovery import run_recovery
    return await _run_sweep(ctx, "recover_half_writes", run_recovery)


async def startup(ctx: dict) -> None:
    configure_logging(debug=get_settings().debug)
    await init_db()
    log.info("worker_started")


async def shutdown(ctx: dict) -> None:
    log.info("worker_stopped")


def get_redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(get_settings().redis_url)
