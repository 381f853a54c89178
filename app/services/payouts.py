"""Creator payouts: pending earnings moved into payout requests or converted to credits.

Both moves take the amount out of ``pending_payout`` together with an
``EarningsHold`` naming the write that will consume it (the payout row or the
conversion credit, keyed by the hold id). The hold is released once that
write is confirmed and restored if it is known to have failed; holds left by
a crashed caller are settled by the recovery sweep.
"""

from datetime import datetime

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Pull, Push, Set
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import (
    BadRequestError,
    BelowMinimumError,
    InsufficientEarningsError,
    StorageFaultError,
)
from app.core.logging import get_logger
from app.core.retry import retry_async
from app.models.earnings import Earnings, EarningsHold
from app.models.payout_request import PayoutRequest
from app.services import credits as credits_service
from app.services import ledger
from app.services.profiles import get_owned_profile
from app.services.recovery import conversion_key, document_exists

log = get_logger(__name__)


async def get_pending_payout(profile_id: str) -> int:
    earnings = await Earnings.find_one(Earnings.profile_id == profile_id)
    return earnings.pending_payout if earnings else 0


async def take_hold(profile_id: str, hold: EarningsHold) -> Earnings | None:
    """Conditional decrement: only succeeds while pending_payout covers the hold
    and the hold is not already parked."""
    return await Earnings.find_one(
        Earnings.profile_id == profile_id,
        Earnings.pending_payout >= hold.amount,
        {"holds.id": {"$ne": hold.id}},
    ).update(
        Inc({Earnings.pending_payout: -hold.amount, Earnings.paid_out: hold.paid_out}),
        Push({Earnings.holds: hold.model_dump()}),
        Set({Earnings.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def restore_hold(profile_id: str, hold: EarningsHold) -> bool:
    """Give the held amount back. Only a hold still parked is restored, so a
    restore that races a release or another restore moves nothing twice."""
    settings = get_settings()

    async def _restore():
        return await Earnings.find_one(
            Earnings.profile_id == profile_id,
            {"holds.id": hold.id},
        ).update(
            Inc({Earnings.pending_payout: hold.amount, Earnings.paid_out: -hold.paid_out}),
            Pull({Earnings.holds: {"id": hold.id}}),
            Set({Earnings.updated_at: datetime.utcnow()}),
        )

    result = await retry_async(_restore, attempts=settings.compensation_attempts, op="restore_earnings")
    restored = bool(result is not None and result.modified_count)
    if restored:
        log.warning("earnings_restored", profile_id=profile_id, hold_id=hold.id, amount=hold.amount)
    return restored


async def release_hold(profile_id: str, hold_id: str) -> None:
    await Earnings.find_one(Earnings.profile_id == profile_id).update(
        Pull({Earnings.holds: {"id": hold_id}}),
    )


async def _release_after_success(profile_id: str, hold_id: str) -> None:
    try:
        await release_hold(profile_id, hold_id)
    except PyMongoError as e:
        # the write it covers exists; the recovery sweep releases it
        log.warning("earnings_hold_release_deferred", profile_id=profile_id, hold_id=hold_id, reason=str(e))


async def request_payout(profile_id: str, owner_id: str, amount: int, pix_key: str) -> PayoutRequest:
    """
    Move `amount` from the profile's pending payout into a pending PayoutRequest.
    The earnings decrement is conditional on the balance, so concurrent requests
    cannot overdraw; if the request row is known not to exist the decrement is
    restored before the error surfaces.
    """
    await get_owned_profile(profile_id, owner_id)

    settings = get_settings()
    if amount < settings.payout_min_amount:
        raise BelowMinimumError(settings.payout_min_amount)
    pix_key = (pix_key or "").strip()
    if not pix_key:
        raise BadRequestError("PIX key required")

    payout_id = PydanticObjectId()
    hold = EarningsHold(id=str(payout_id), kind="payout", owner_id=owner_id, amount=amount)
    earnings = await take_hold(profile_id, hold)
    if earnings is None:
        log.info("payout_insufficient_earnings", profile_id=profile_id, owner_id=owner_id, amount=amount)
        raise InsufficientEarningsError()

    payout = PayoutRequest(
        id=payout_id,
        profile_id=profile_id,
        owner_id=owner_id,
        amount=amount,
        pix_key=pix_key,
        status="pending",
    )
    try:
        await payout.insert()
    except PyMongoError as e:
        if not await document_exists(PayoutRequest, payout_id):
            log.error("payout_insert_failed", profile_id=profile_id, owner_id=owner_id, amount=amount, reason=str(e))
            await restore_hold(profile_id, hold)
            raise StorageFaultError("Could not create payout request", details={"profile_id": profile_id}) from e
    await _release_after_success(profile_id, hold.id)

    log.info(
        "payout_requested",
        profile_id=profile_id,
        owner_id=owner_id,
        payout_id=str(payout.id),
        amount=amount,
        pending_payout=earnings.pending_payout,
    )
    from app.core.audit import log_event
    await log_event(owner_id, "payout_requested", "payout", str(payout.id), {"profile_id": profile_id, "amount": amount})
    return payout


async def _find_conversion(owner_id: str, key: str):
    try:
        return await ledger.find_by_key(owner_id, key)
    except PyMongoError as e:
        log.error("earnings_conversion_unresolved", owner_id=owner_id, idempotency_key=key, reason=str(e))
        raise StorageFaultError("Conversion outcome unknown", details={"idempotency_key": key}) from e


async def convert_earnings_to_credits(profile_id: str, owner_id: str, amount: int) -> int:
    """Move pending earnings into the owner's credit balance, 1 credit per currency unit.
    Returns credits added."""
    await get_owned_profile(profile_id, owner_id)
    credits = int(amount)
    if credits < 1:
        raise BadRequestError("Amount must be at least 1")

    conversion_id = str(PydanticObjectId())
    hold = EarningsHold(id=conversion_id, kind="conversion", owner_id=owner_id, amount=credits, paid_out=credits)
    earnings = await take_hold(profile_id, hold)
    if earnings is None:
        raise InsufficientEarningsError()

    key = conversion_key(conversion_id)
    try:
        entry = await credits_service.credit(
            owner_id,
            credits,
            "earnings_conversion",
            description=f"Conversion of {credits} in earnings into {credits} credits",
            reference_id=profile_id,
            idempotency_key=key,
        )
    except (PyMongoError, StorageFaultError) as e:
        # the credit may have landed
        entry = await _find_conversion(owner_id, key)
        if entry is None:
            log.error("earnings_conversion_failed", profile_id=profile_id, owner_id=owner_id, amount=credits, reason=str(e))
            await restore_hold(profile_id, hold)
            raise StorageFaultError("Could not convert earnings", details={"profile_id": profile_id}) from e
    await _release_after_success(profile_id, hold.id)

    log.info("earnings_converted", profile_id=profile_id, owner_id=owner_id, credits=credits, transaction_id=str(entry.id))
    from app.core.audit import log_event
    await log_event(owner_id, "earnings_converted", "earnings", profile_id, {"credits": credits, "transaction_id": str(entry.id)})
    return credits
