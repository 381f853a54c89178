"""Boost purchase with credits, expiry sweep and the derived Profile.featured flag."""

from datetime import datetime, timedelta

from beanie import PydanticObjectId
from beanie.operators import In, NotIn, Set
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import get_settings
from app.core.exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    PackageNotFoundError,
    StorageFaultError,
)
from app.core.logging import get_logger
from app.core.retry import retry_async
from app.models.boost import Boost, BoostPackage
from app.models.notification import Notification
from app.models.profile import Profile
from app.services import credits as credits_service
from app.services.profiles import get_owned_profile
from app.services.recovery import activation_key, document_exists

log = get_logger(__name__)


def _object_ids(values) -> list[PydanticObjectId]:
    return [PydanticObjectId(v) for v in values if v and ObjectId.is_valid(str(v))]


async def activate_boost(
    owner_id: str,
    profile_id: str,
    package_id: str,
    now: datetime | None = None,
) -> Boost:
    """Pay for a boost package with credits; the profile becomes featured.
    Pairs the debit and the boost row the same way premium activation does."""
    await get_owned_profile(profile_id, owner_id)
    package = await BoostPackage.get(package_id) if ObjectId.is_valid(package_id) else None
    if package is None or not package.is_active:
        raise PackageNotFoundError("Boost package not found")

    boost_id = PydanticObjectId()
    try:
        debit = await credits_service.debit(
            owner_id,
            package.credit_cost,
            "boost",
            description=f"Activation of {package.name}",
            reference_id=profile_id,
            idempotency_key=activation_key("boost", boost_id),
        )
    except AccountNotFoundError:
        raise InsufficientBalanceError(balance=0, required=package.credit_cost)

    now = now or datetime.utcnow()
    boost = Boost(
        id=boost_id,
        owner_id=owner_id,
        profile_id=profile_id,
        package_id=str(package.id),
        status="active",
        start_date=now,
        end_date=now + timedelta(hours=package.duration_hours),
        payment_method="credits",
        transaction_id=str(debit.id),
    )
    try:
        await boost.insert()
    except PyMongoError as e:
        if not await document_exists(Boost, boost_id):
            log.error("boost_insert_failed", owner_id=owner_id, profile_id=profile_id, reference_id=str(debit.id), reason=str(e))
            await credits_service.compensate_debit(owner_id, debit, f"Refund: activation of {package.name} failed")
            raise StorageFaultError(
                "Could not activate boost",
                details={"owner_id": owner_id, "profile_id": profile_id, "transaction_id": str(debit.id)},
            ) from e

    try:
        await _set_featured(profile_id, True)
    except PyMongoError as e:
        # boost is live; the next sweep's reconcile sets the flag
        log.warning("boost_feature_deferred", profile_id=profile_id, boost_id=str(boost.id), reason=str(e))

    log.info(
        "boost_activated",
        owner_id=owner_id,
        profile_id=profile_id,
        boost_id=str(boost.id),
        transaction_id=str(debit.id),
        end_date=boost.end_date.isoformat(),
    )
    from app.core.audit import log_event
    await log_event(owner_id, "boost_activated", "boost", str(boost.id), {"profile_id": profile_id, "credits": package.credit_cost})
    return boost


async def sweep_expired_boosts(now: datetime | None = None) -> dict:
    """
    Expire active boosts whose end_date has passed and clear `featured` on
    profiles left without an active boost. Safe to run concurrently and to
    re-run after a crash: only boosts still active are transitioned, and
    the flag reconcile is recomputed from boost state every time.
    """
    now = now or datetime.utcnow()
    settings = get_settings()
    due = (
        await Boost.find(Boost.status == "active", Boost.end_date < now)
        .sort(+Boost.end_date)
        .limit(settings.sweep_batch_size)
        .to_list()
    )
    if not due:
        healed = await retry_async(reconcile_featured, attempts=settings.compensation_attempts, op="reconcile_featured")
        return {"expired_count": 0, "profiles_updated": healed}

    log.info("boost_sweep_found", count=len(due))
    result = await Boost.find(
        In(Boost.id, [b.id for b in due]),
        Boost.status == "active",
    ).update(Set({Boost.status: "expired"}))
    expired_count = result.modified_count if result is not None else 0

    # after the batch update, so a profile with several expiring boosts is settled once
    profiles_updated = 0
    for profile_id in sorted({b.profile_id for b in due}):
        cleared = await retry_async(
            clear_featured_if_idle,
            profile_id,
            attempts=settings.compensation_attempts,
            op="clear_featured",
        )
        profiles_updated += int(cleared)
    profiles_updated += await retry_async(reconcile_featured, attempts=settings.compensation_attempts, op="reconcile_featured")

    log.info("boost_sweep_done", expired_count=expired_count, profiles_updated=profiles_updated)
    if expired_count:
        from app.core.audit import log_event
        await log_event(
            None,
            "boosts_expired",
            "boost",
            metadata={"boost_ids": [str(b.id) for b in due], "expired_count": expired_count},
            source="scheduler",
        )
    return {"expired_count": expired_count, "profiles_updated": profiles_updated}


async def has_active_boost(profile_id: str) -> bool:
    return await Boost.find(Boost.profile_id == profile_id, Boost.status == "active").count() > 0


async def clear_featured_if_idle(profile_id: str) -> bool:
    """Clear featured when the profile has no active boost left. True if the flag changed.

    The flag is re-checked after the write: an activation that lands between
    the check and the clear gets its flag back here.
    """
    if await has_active_boost(profile_id):
        return False
    if not await _set_featured(profile_id, False):
        return False
    if await has_active_boost(profile_id):
        await _set_featured(profile_id, True)
        log.info("featured_restored", profile_id=profile_id)
        return False
    return True


async def raise_featured_if_boosted(profile_id: str) -> bool:
    """Set featured when the profile has an active boost. True if the flag changed."""
    if not await has_active_boost(profile_id):
        return False
    if not await _set_featured(profile_id, True):
        return False
    if not await has_active_boost(profile_id):
        await _set_featured(profile_id, False)
        return False
    return True


async def reconcile_featured() -> int:
    """Make `featured` agree with boost state for every profile. Returns profiles changed.

    The distinct snapshot only picks candidates; each flip is decided by
    ``clear_featured_if_idle`` / ``raise_featured_if_boosted`` against live state.
    """
    active_profile_ids = _object_ids(await Boost.distinct("profile_id", {"status": "active"}))
    changed = 0
    stale = await Profile.find(
        Profile.featured == True,  # noqa: E712
        NotIn(Profile.id, active_profile_ids),
    ).to_list()
    for profile in stale:
        changed += int(await clear_featured_if_idle(str(profile.id)))
    if active_profile_ids:
        unflagged = await Profile.find(
            Profile.featured == False,  # noqa: E712
            In(Profile.id, active_profile_ids),
        ).to_list()
        for profile in unflagged:
            changed += int(await raise_featured_if_boosted(str(profile.id)))
    if changed:
        log.info("featured_reconciled", changed=changed)
    return changed


async def _set_featured(profile_id: str, featured: bool) -> bool:
    if not ObjectId.is_valid(profile_id):
        return False
    result = await Profile.find_one(
        Profile.id == PydanticObjectId(profile_id),
        Profile.featured != featured,
    ).update(Set({Profile.featured: featured, Profile.updated_at: datetime.utcnow()}))
    return bool(result is not None and result.modified_count)


async def notify_expiring_boosts(now: datetime | None = None) -> dict:
    """One `boost_expiring` notification per active boost ending in the notice window."""
    now = now or datetime.utcnow()
    settings = get_settings()
    window_start = now + timedelta(hours=settings.boost_expiry_notice_hours)
    window_end = window_start + timedelta(hours=1)
    expiring = await Boost.find(
        Boost.status == "active",
        Boost.end_date >= window_start,
        Boost.end_date <= window_end,
    ).to_list()

    notified = 0
    for boost in expiring:
        profile = await Profile.get(boost.profile_id) if ObjectId.is_valid(boost.profile_id) else None
        if profile is None or not profile.user_id:
            continue
        package = await BoostPackage.get(boost.package_id) if boost.package_id and ObjectId.is_valid(boost.package_id) else None
        package_name = package.name if package else "Boost"
        try:
            await Notification(
                user_id=profile.user_id,
                type="boost_expiring",
                title="Your boost is expiring",
                message=(
                    f'The boost "{package_name}" for profile "{profile.name}" expires in '
                    f"{settings.boost_expiry_notice_hours} hours. Renew it to keep your visibility."
                ),
                metadata={
                    "boost_id": str(boost.id),
                    "profile_id": boost.profile_id,
                    "profile_name": profile.name,
                    "package_name": package_name,
                    "end_date": boost.end_date.isoformat(),
                },
                dedupe_key=f"boost_expiring:{boost.id}:{boost.end_date.isoformat()}",
            ).insert()
        except DuplicateKeyError:
            log.debug("boost_expiring_already_notified", boost_id=str(boost.id))
            continue
        notified += 1
    if expiring:
        log.info("boost_expiring_notices", checked=len(expiring), notified=notified)
    return {"checked": len(expiring), "notified": notified}
