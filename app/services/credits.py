"""Credit/debit operations over the ledger, and the external purchase confirmation."""

from bson import ObjectId
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import AccountNotFoundError, BadRequestError, ConflictError, PackageNotFoundError
from app.core.logging import get_logger
from app.core.retry import retry_async
from app.models.credit_package import CreditPackage
from app.models.credit_transaction import CreditTransaction
from app.models.notification import Notification
from app.services import ledger

log = get_logger(__name__)


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise BadRequestError("Amount must be a positive integer")


async def debit(
    owner_id: str,
    amount: int,
    type: str,
    description: str = "",
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> CreditTransaction:
    """Take `amount` credits. Raises InsufficientBalanceError / AccountNotFoundError."""
    _require_positive(amount)
    return await ledger.apply_delta(
        owner_id, -amount, type, description, reference_id, idempotency_key=idempotency_key
    )


async def credit(
    owner_id: str,
    amount: int,
    type: str,
    description: str = "",
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> CreditTransaction:
    """Give `amount` credits, opening the account on first touch."""
    _require_positive(amount)
    return await ledger.apply_delta(
        owner_id, amount, type, description, reference_id, create=True, idempotency_key=idempotency_key
    )


async def apply_once(
    owner_id: str,
    amount: int,
    type: str,
    idempotency_key: str,
    description: str = "",
    reference_id: str | None = None,
    create: bool = False,
) -> tuple[CreditTransaction, bool]:
    """
    Apply a signed ``amount`` at most once per ``idempotency_key``.
    Returns (entry, created); a repeated key returns the recorded entry with
    created=False, including when a concurrent caller won the race.
    """
    existing = await ledger.find_by_key(owner_id, idempotency_key)
    if existing is not None:
        return existing, False
    _require_positive(abs(amount))
    try:
        entry = await ledger.apply_delta(
            owner_id, amount, type, description, reference_id, create=create, idempotency_key=idempotency_key
        )
    except ConflictError:
        existing = await ledger.find_by_key(owner_id, idempotency_key)
        if existing is None:
            raise
        log.info("ledger_key_reused", owner_id=owner_id, idempotency_key=idempotency_key)
        return existing, False
    return entry, True


async def get_balance_or_zero(owner_id: str) -> int:
    """Balance for display; an owner without an account has nothing to spend."""
    try:
        return await ledger.get_balance(owner_id)
    except AccountNotFoundError:
        return 0


async def confirm_purchase(owner_id: str, package_id: str, payment_id: str) -> tuple[CreditTransaction, bool]:
    """
    Apply an approved external payment for a credit package.
    Returns (transaction, created). A redelivered confirmation for the same
    payment returns the original transaction with created=False; the
    ``purchase:<payment_id>`` idempotency key settles concurrent deliveries.
    Every delivery books the referrer's commission on the package price,
    once per payment.
    """
    payment_id = str(payment_id)
    key = f"purchase:{payment_id}"
    existing = await ledger.find_by_key(owner_id, key)
    if existing:
        log.info("purchase_already_applied", owner_id=owner_id, payment_id=payment_id)
        await _record_commission(owner_id, package_id, payment_id)
        return existing, False

    package = await _get_package(package_id)
    if package is None:
        raise PackageNotFoundError("Credit package not found")

    total = package.total_credits
    entry, created = await apply_once(
        owner_id,
        total,
        "purchase",
        key,
        description=f"Purchase of {package.name} - {total} credits",
        reference_id=payment_id,
        create=True,
    )
    if not created:
        log.info("purchase_concurrent_delivery", owner_id=owner_id, payment_id=payment_id)
        return entry, False

    await _notify_payment(owner_id, package, total, payment_id)
    from app.core.audit import log_event
    await log_event(owner_id, "payment_confirmed", "credit_package", str(package.id), {"payment_id": payment_id, "credits": total})
    await _record_commission(owner_id, package_id, payment_id, package)
    return entry, True


async def _get_package(package_id: str) -> CreditPackage | None:
    return await CreditPackage.get(package_id) if ObjectId.is_valid(package_id) else None


async def _record_commission(owner_id: str, package_id: str, payment_id: str, package: CreditPackage | None = None) -> None:
    from app.services import referrals

    package = package or await _get_package(package_id)
    if package is None:
        return
    await referrals.record_commission(owner_id, "credits", payment_id, package.price)


async def _notify_payment(owner_id: str, package: CreditPackage, total: int, payment_id: str) -> None:
    """Best-effort change event; the credit is already committed."""
    try:
        await Notification(
            user_id=owner_id,
            type="payment_success",
            title="Payment confirmed",
            message=f"{total} credits were added to your balance.",
            metadata={"credits": total, "package_name": package.name, "payment_id": payment_id},
        ).insert()
    except PyMongoError as e:
        log.warning("notification_failed", owner_id=owner_id, payment_id=payment_id, reason=str(e))


def refund_key(debit_entry: CreditTransaction) -> str:
    return f"refund:{debit_entry.id}"


async def compensate_debit(owner_id: str, debit_entry: CreditTransaction, description: str) -> CreditTransaction:
    """Credit back a debit whose paired write failed, at most once per debit.
    Retried on storage errors."""
    settings = get_settings()
    refund, created = await retry_async(
        apply_once,
        owner_id,
        -debit_entry.amount,
        "refund",
        refund_key(debit_entry),
        description=description,
        reference_id=str(debit_entry.id),
        create=True,
        attempts=settings.compensation_attempts,
        op="compensate_debit",
    )
    log.warning(
        "debit_compensated" if created else "debit_already_compensated",
        owner_id=owner_id,
        transaction_id=str(debit_entry.id),
        refund_id=str(refund.id),
        amount=refund.amount,
    )
    return refund
