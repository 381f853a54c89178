"""Auto-renewal of boosts and premium grants shortly before they end.

A renewal is a debit keyed ``renewal:<kind>:<id>:<old_end>`` followed by a
conditional extension that only matches while ``end_date`` still equals
``old_end``. The key makes the debit happen once per period; the condition
makes the extension happen once per debit. A run that died between the two
finds the existing debit under the same key on the next pass and extends.
"""

from datetime import datetime, timedelta
from typing import Any

from beanie import UpdateResponse
from beanie.operators import Inc, Push, Set
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import AccountNotFoundError, ForbiddenError, InsufficientBalanceError
from app.core.logging import get_logger
from app.models.active_service_grant import ActiveServiceGrant
from app.models.boost import Boost, BoostPackage
from app.models.notification import Notification
from app.models.premium_service import PremiumService
from app.services import credits as credits_service
from app.services.recovery import renewal_key

log = get_logger(__name__)


async def set_auto_renew(kind: str, target_id: str, owner_id: str, enabled: bool):
    """Toggle auto-renewal on a boost or grant the caller paid for."""
    model = Boost if kind == "boost" else ActiveServiceGrant
    target = await model.get(target_id) if ObjectId.is_valid(target_id) else None
    if target is None or target.owner_id != owner_id:
        raise ForbiddenError("Not found or unauthorized")
    await target.set({model.auto_renew: enabled})
    log.info("auto_renew_set", kind=kind, target_id=target_id, owner_id=owner_id, enabled=enabled)
    return target


async def _notify(owner_id: str, type: str, title: str, message: str, metadata: dict[str, Any], dedupe_key: str) -> None:
    try:
        await Notification(
            user_id=owner_id,
            type=type,
            title=title,
            message=message,
            metadata=metadata,
            dedupe_key=dedupe_key,
        ).insert()
    except DuplicateKeyError:
        log.debug("renewal_already_notified", dedupe_key=dedupe_key)


async def _renew(kind: str, target, cost: int, duration: timedelta, name: str) -> str:
    """Renew one boost or grant. Returns renewed | failed | skipped."""
    model = type(target)
    old_end = target.end_date
    key = renewal_key(kind, target.id, old_end)
    target_field = "boost_id" if kind == "boost" else "grant_id"
    try:
        debit, _ = await credits_service.apply_once(
            target.owner_id,
            -cost,
            "auto_renewal",
            key,
            description=f"Auto-renewal of {name}",
            reference_id=str(target.id),
        )
    except (InsufficientBalanceError, AccountNotFoundError):
        log.info("renewal_insufficient_balance", kind=kind, target_id=str(target.id), owner_id=target.owner_id, cost=cost)
        await _notify(
            target.owner_id,
            "auto_renewal_failed",
            "Auto-renewal failed",
            f'"{name}" could not be renewed: insufficient credits.',
            {target_field: str(target.id), "reason": "insufficient_credits"},
            f"auto_renewal_failed:{key}",
        )
        return "failed"

    new_end = old_end + duration
    extended = await model.find_one(
        model.id == target.id,
        model.end_date == old_end,
    ).update(
        Set({model.end_date: new_end}),
        Push({model.renewal_transaction_ids: str(debit.id)}),
        Inc({model.renewal_count: 1}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if extended is None:
        current = await model.get(target.id)
        if current is not None and str(debit.id) in current.renewal_transaction_ids:
            return "skipped"
        # moved on under us (expired or changed); the period was not extended
        await credits_service.compensate_debit(target.owner_id, debit, f"Refund: auto-renewal of {name} not applied")
        return "failed"

    log.info(
        "renewed",
        kind=kind,
        target_id=str(target.id),
        owner_id=target.owner_id,
        transaction_id=str(debit.id),
        end_date=new_end.isoformat(),
    )
    await _notify(
        target.owner_id,
        "auto_renewal_success",
        "Renewed automatically",
        f'"{name}" was renewed until {new_end.strftime("%d/%m/%Y")}.',
        {target_field: str(target.id), "credits_spent": cost, "end_date": new_end.isoformat()},
        f"auto_renewal_success:{key}",
    )
    from app.core.audit import log_event
    await log_event(
        target.owner_id,
        "auto_renewed",
        kind,
        str(target.id),
        {"transaction_id": str(debit.id), "credits": cost, "end_date": new_end.isoformat()},
        source="scheduler",
    )
    return "renewed"


async def renew_expiring(now: datetime | None = None) -> dict:
    """Renew active auto-renewing boosts and grants ending within the renewal window."""
    now = now or datetime.utcnow()
    settings = get_settings()
    horizon = now + timedelta(hours=settings.renewal_window_hours)
    counts = {"checked": 0, "renewed": 0, "failed": 0}

    boosts = await Boost.find(
        Boost.status == "active",
        Boost.auto_renew == True,  # noqa: E712
        Boost.end_date > now,
        Boost.end_date <= horizon,
    ).limit(settings.sweep_batch_size).to_list()
    for boost in boosts:
        counts["checked"] += 1
        package = await BoostPackage.get(boost.package_id) if boost.package_id and ObjectId.is_valid(boost.package_id) else None
        if package is None or not package.is_active:
            log.info("renewal_package_unavailable", boost_id=str(boost.id), package_id=boost.package_id)
            counts["failed"] += 1
            continue
        outcome = await _renew("boost", boost, package.credit_cost, timedelta(hours=package.duration_hours), package.name)
        if outcome in counts:
            counts[outcome] += 1

    grants = await ActiveServiceGrant.find(
        ActiveServiceGrant.auto_renew == True,  # noqa: E712
        ActiveServiceGrant.end_date > now,
        ActiveServiceGrant.end_date <= horizon,
    ).limit(settings.sweep_batch_size).to_list()
    for grant in grants:
        counts["checked"] += 1
        service = await PremiumService.get(grant.service_id) if ObjectId.is_valid(grant.service_id) else None
        if service is None or not service.is_active or not service.duration_days:
            log.info("renewal_service_unavailable", grant_id=str(grant.id), service_id=grant.service_id)
            counts["failed"] += 1
            continue
        outcome = await _renew("premium", grant, service.credit_cost, timedelta(days=service.duration_days), service.name)
        if outcome in counts:
            counts[outcome] += 1

    if counts["checked"]:
        log.info("renewal_sweep_done", **counts)
    return counts
