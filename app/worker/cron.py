"""Cron schedule for the sweeps, driven by settings."""

from arq.cron import CronJob, cron

from app.core.config import get_settings
from app.worker.tasks import (
    notify_expiring_boosts,
    recover_half_writes,
    renew_expiring,
    sweep_expired_boosts,
    sweep_expired_stories,
)


def every(minutes: int) -> set[int]:
    """Minute marks for an every-N-minutes schedule within the hour.

    Marks repeat each hour, so N is rounded down to a divisor of 60 to keep
    the gap across the hour boundary the same as within it.
    """
    minutes = max(1, min(int(minutes), 60))
    while 60 % minutes:
        minutes -= 1
    return set(range(0, 60, minutes))


def cron_jobs() -> list[CronJob]:
    s = get_settings()
    return [
        cron(sweep_expired_boosts, minute=every(s.boost_sweep_minutes), second=0, unique=True),
        cron(sweep_expired_stories, minute=every(s.story_sweep_minutes), second=30, unique=True),
        cron(notify_expiring_boosts, minute=0, second=45, unique=True),  # hourly, matches the 1h notice window
        cron(renew_expiring, minute=every(s.renewal_sweep_minutes), second=15, unique=True),
        cron(recover_half_writes, minute=every(s.recovery_sweep_minutes), second=50, unique=True),
    ]
