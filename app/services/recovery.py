"""Roll back or complete multi-document writes left half-done by a crashed caller.

Activations, renewals and earnings moves are a credit ledger write paired with
a second document. Each half is keyed so that a later pass can tell which
halves exist:

- activation debits carry ``activation:<kind>:<target_id>`` with the target id
  assigned before the debit; a debit whose target never appeared is refunded.
- renewal debits carry ``renewal:<kind>:<target_id>:<old_end>``; one not pushed
  into the target's ``renewal_transaction_ids`` that can no longer be applied is
  refunded.
- earnings moves park an ``EarningsHold`` on the earnings row; the hold is
  released when its payout row or conversion credit exists and restored
  otherwise.

Refunds use the ``refund:<debit_id>`` key, so a debit is refunded at most once
no matter how many callers race to compensate it.
"""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from beanie.operators import In
from bson import ObjectId
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import StorageFaultError
from app.core.logging import get_logger
from app.models.active_service_grant import ActiveServiceGrant
from app.models.boost import Boost
from app.models.credit_transaction import CreditTransaction
from app.models.earnings import Earnings, EarningsHold
from app.services import credits as credits_service
from app.services import ledger

log = get_logger(__name__)

TARGETS: dict[str, Any] = {"premium": ActiveServiceGrant, "boost": Boost}


def activation_key(kind: str, target_id: PydanticObjectId | str) -> str:
    return f"activation:{kind}:{target_id}"


def renewal_key(kind: str, target_id: PydanticObjectId | str, old_end: datetime) -> str:
    return f"renewal:{kind}:{target_id}:{old_end.isoformat()}"


def conversion_key(conversion_id: str) -> str:
    return f"conversion:{conversion_id}"


async def document_exists(model, doc_id) -> bool:
    """Existence check after an insert that raised; the write may have landed.
    An unanswerable lookup raises StorageFaultError and leaves the pair to this sweep."""
    try:
        return await model.get(doc_id) is not None
    except PyMongoError as e:
        log.error("write_outcome_unknown", model=model.__name__, document_id=str(doc_id), reason=str(e))
        raise StorageFaultError("Write outcome unknown", details={"document_id": str(doc_id)}) from e


async def _get_target(kind: str, target_id: str):
    model = TARGETS.get(kind)
    if model is None or not ObjectId.is_valid(target_id):
        return None
    return await model.get(target_id)


async def _needs_refund(entry: CreditTransaction, now: datetime) -> bool:
    key = entry.idempotency_key
    if key.startswith("activation:"):
        _, kind, target_id = key.split(":", 2)
        return await _get_target(kind, target_id) is None
    if key.startswith("renewal:"):
        _, kind, target_id, old_end = key.split(":", 3)
        target = await _get_target(kind, target_id)
        if target is None:
            return True
        if str(entry.id) in target.renewal_transaction_ids:
            return False
        still_renewable = (
            getattr(target, "status", "active") == "active"
            and target.end_date is not None
            and target.end_date == datetime.fromisoformat(old_end)
            and target.end_date > now
        )
        # the renewal sweep picks it up again under the same key
        return not still_renewable
    return False


async def recover_orphaned_debits(now: datetime | None = None) -> dict:
    """Refund activation and renewal debits whose paired write never landed."""
    now = now or datetime.utcnow()
    settings = get_settings()
    cutoff = now - timedelta(minutes=settings.recovery_grace_minutes)
    since = now - timedelta(days=settings.recovery_lookback_days)

    checked = 0
    refunded = 0
    async for entry in CreditTransaction.find(
        In(CreditTransaction.type, ["premium_service", "boost", "auto_renewal"]),
        CreditTransaction.created_at >= since,
        CreditTransaction.created_at <= cutoff,
        CreditTransaction.amount < 0,
    ).sort(+CreditTransaction.created_at):
        checked += 1
        if not await _needs_refund(entry, now):
            continue
        if await ledger.find_by_key(entry.owner_id, credits_service.refund_key(entry)):
            continue
        log.warning(
            "orphaned_debit_found",
            owner_id=entry.owner_id,
            transaction_id=str(entry.id),
            idempotency_key=entry.idempotency_key,
        )
        await credits_service.compensate_debit(entry.owner_id, entry, f"Refund: {entry.description or entry.type} not completed")
        refunded += 1
    return {"checked": checked, "refunded": refunded}


async def _hold_landed(hold: EarningsHold) -> bool:
    from app.models.payout_request import PayoutRequest

    if hold.kind == "payout":
        return ObjectId.is_valid(hold.id) and await PayoutRequest.get(hold.id) is not None
    return await ledger.find_by_key(hold.owner_id, conversion_key(hold.id)) is not None


async def recover_stale_holds(now: datetime | None = None) -> dict:
    """Settle earnings holds older than the grace period."""
    from app.services import payouts

    now = now or datetime.utcnow()
    settings = get_settings()
    cutoff = now - timedelta(minutes=settings.recovery_grace_minutes)

    released = 0
    restored = 0
    rows = await Earnings.find({"holds.created_at": {"$lt": cutoff}}).to_list()
    for earnings in rows:
        for hold in earnings.holds:
            if hold.created_at >= cutoff:
                continue
            if await _hold_landed(hold):
                await payouts.release_hold(earnings.profile_id, hold.id)
                released += 1
            else:
                log.warning("stale_hold_restored", profile_id=earnings.profile_id, hold_id=hold.id, kind=hold.kind)
                if await payouts.restore_hold(earnings.profile_id, hold):
                    restored += 1
    return {"holds_released": released, "holds_restored": restored}


async def run_recovery(now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    debits = await recover_orphaned_debits(now)
    holds = await recover_stale_holds(now)
    out = {"checked": debits["checked"], "refunded": debits["refunded"], **holds}
    if debits["refunded"] or holds["holds_restored"]:
        from app.core.audit import log_event
        await log_event(None, "half_writes_recovered", "ledger", metadata=out, source="scheduler")
    log.info("recovery_done", **out)
    return out
