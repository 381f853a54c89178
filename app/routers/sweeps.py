from fastapi import APIRouter, Depends

from app.deps import require_scheduler
from app.services import boosts as boosts_service
from app.services import recovery as recovery_service
from app.services import renewals as renewals_service
from app.services import stories as stories_service

router = APIRouter(dependencies=[Depends(require_scheduler)])


@router.post("/boosts")
async def sweep_boosts():
    """Expire boosts past their end date and refresh featured flags."""
    out = await boosts_service.sweep_expired_boosts()
    return {"processed": out["expired_count"]}


@router.post("/stories")
async def sweep_stories():
    """Delete expired stories and their media."""
    out = await stories_service.sweep_expired_stories()
    return {"processed": out["deleted_count"]}


@router.post("/expiring-boosts")
async def notify_expiring_boosts():
    """Notify owners of boosts that expire within the notice window."""
    out = await boosts_service.notify_expiring_boosts()
    return {"processed": out["notified"], "checked": out["checked"]}


@router.post("/renewals")
async def renew_expiring():
    """Charge auto-renewing boosts and grants that end within the renewal window."""
    out = await renewals_service.renew_expiring()
    return {"processed": out["renewed"], "checked": out["checked"], "failed": out["failed"]}


@router.post("/recovery")
async def recover_half_writes():
    """Refund orphaned debits and settle stale earnings holds."""
    out = await recovery_service.run_recovery()
    return {"processed": out["refunded"] + out["holds_restored"], **out}
