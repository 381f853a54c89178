"""Credit ledger store: account balances and the append-only transaction log.

Write protocol (no multi-document transactions needed):

1. Read the account; its ``seq`` is the last log entry folded into ``balance``.
2. Insert the new log entry with ``seq = account.seq + 1``. The unique
   ``(owner_id, seq)`` index makes this insert the compare-and-set: of two
   concurrent writers that read the same account, exactly one claims the slot.
   The loser re-reads and re-validates against the winner's balance.
3. Advance the account with a conditional update on ``seq``.

An entry whose writer died between steps 2 and 3 is folded in by the next
reader or writer (``_settle``), so the log stays authoritative and
``balance == sum(amount)`` holds once any operation on the account returns.
"""

import asyncio
from datetime import datetime

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Set
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import get_settings
from app.core.exceptions import (
    AccountNotFoundError,
    BadRequestError,
    ConflictError,
    InsufficientBalanceError,
    StorageFaultError,
)
from app.core.logging import get_logger
from app.core.retry import backoff_delay
from app.models.account import Account
from app.models.credit_transaction import CreditTransaction

log = get_logger(__name__)

TRANSACTION_TYPES = (
    "purchase",
    "premium_service",
    "boost",
    "payout",
    "refund",
    "bonus",
    "earnings_conversion",
    "auto_renewal",
    "mission",
)


async def get_account(owner_id: str) -> Account:
    account = await Account.find_one(Account.owner_id == owner_id)
    if account is None:
        raise AccountNotFoundError(owner_id)
    return await _settle(account)


async def get_balance(owner_id: str) -> int:
    """Current balance. Raises AccountNotFoundError if the owner never had an account."""
    account = await get_account(owner_id)
    return account.balance


async def apply_delta(
    owner_id: str,
    amount: int,
    type: str,
    description: str = "",
    reference_id: str | None = None,
    create: bool = False,
    idempotency_key: str | None = None,
) -> CreditTransaction:
    """
    Append one log entry and move the balance by ``amount``.
    An ``idempotency_key`` already used by the owner raises ConflictError;
    callers that must apply an effect once go through
    ``credits.apply_once``.
    Debits that would drive the balance negative raise InsufficientBalanceError
    and leave both log and balance untouched. ``create`` opens the account at
    first touch; without it a missing account raises AccountNotFoundError.
    """
    if type not in TRANSACTION_TYPES:
        raise BadRequestError(f"Invalid transaction type: {type}")
    if amount == 0:
        raise BadRequestError("Amount must be non-zero")

    settings = get_settings()
    for attempt in range(1, settings.ledger_max_attempts + 1):
        account = await Account.find_one(Account.owner_id == owner_id)
        if account is None:
            if not create:
                raise AccountNotFoundError(owner_id)
            account = await _create_account(owner_id)
        account = await _settle(account)

        balance_after = account.balance + amount
        if balance_after < 0:
            log.info(
                "ledger_insufficient_balance",
                owner_id=owner_id,
                balance=account.balance,
                amount=amount,
                reference_id=reference_id,
            )
            raise InsufficientBalanceError(balance=account.balance, required=-amount)

        entry = CreditTransaction(
            id=PydanticObjectId(),
            owner_id=owner_id,
            seq=account.seq + 1,
            amount=amount,
            balance_after=balance_after,
            type=type,
            description=description,
            reference_id=reference_id,
        )
        if idempotency_key:
            entry.idempotency_key = idempotency_key
        try:
            await entry.insert()
        except DuplicateKeyError as e:
            if not _is_seq_conflict(e):
                log.info("ledger_duplicate_key", owner_id=owner_id, type=type, idempotency_key=entry.idempotency_key)
                raise ConflictError("Transaction already recorded", details={"idempotency_key": entry.idempotency_key}) from e
            # another writer claimed this seq; re-validate against its result
            log.debug("ledger_seq_conflict", owner_id=owner_id, seq=entry.seq, attempt=attempt)
            await asyncio.sleep(backoff_delay(attempt, base_delay=0.01))
            continue
        except PyMongoError as e:
            # the write may have landed
            if not await _entry_exists(entry.id):
                log.error("ledger_insert_failed", owner_id=owner_id, reference_id=reference_id, reason=str(e))
                raise StorageFaultError("Ledger write failed", details={"owner_id": owner_id}) from e

        try:
            await _advance(entry)
        except PyMongoError as e:
            # the entry is durable; the next read folds it in
            log.warning("ledger_advance_deferred", owner_id=owner_id, seq=entry.seq, reason=str(e))

        log.info(
            "ledger_applied",
            owner_id=owner_id,
            transaction_id=str(entry.id),
            type=type,
            amount=amount,
            balance_after=balance_after,
            reference_id=reference_id,
        )
        return entry

    log.error("ledger_contention", owner_id=owner_id, attempts=settings.ledger_max_attempts)
    raise StorageFaultError("Ledger write contention", details={"owner_id": owner_id})


async def list_transactions(owner_id: str, limit: int = 50, offset: int = 0) -> list[CreditTransaction]:
    """Log entries for owner, newest first."""
    return (
        await CreditTransaction.find(CreditTransaction.owner_id == owner_id)
        .sort(-CreditTransaction.seq)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def find_by_key(owner_id: str, idempotency_key: str) -> CreditTransaction | None:
    return await CreditTransaction.find_one(
        CreditTransaction.owner_id == owner_id,
        CreditTransaction.idempotency_key == idempotency_key,
    )


async def replay_balance(owner_id: str) -> int:
    """Recompute the balance from the log in seq order."""
    entries = await CreditTransaction.find(CreditTransaction.owner_id == owner_id).sort(+CreditTransaction.seq).to_list()
    return sum(e.amount for e in entries)


async def verify_account(owner_id: str) -> bool:
    """True when the log is gap-free, every balance_after matches the running sum,
    and the running sum equals the stored balance."""
    account = await get_account(owner_id)
    entries = await CreditTransaction.find(CreditTransaction.owner_id == owner_id).sort(+CreditTransaction.seq).to_list()
    running = 0
    for expected_seq, e in enumerate(entries, start=1):
        running += e.amount
        if e.seq != expected_seq or e.balance_after != running or running < 0:
            log.error("ledger_inconsistent", owner_id=owner_id, seq=e.seq, running=running)
            return False
    return account.seq == len(entries) and account.balance == running


async def _create_account(owner_id: str) -> Account:
    account = Account(owner_id=owner_id)
    try:
        await account.insert()
        log.info("ledger_account_opened", owner_id=owner_id)
        return account
    except DuplicateKeyError:
        existing = await Account.find_one(Account.owner_id == owner_id)
        if existing is None:
            raise StorageFaultError("Account vanished after conflict", details={"owner_id": owner_id})
        return existing


def _is_seq_conflict(exc: DuplicateKeyError) -> bool:
    details = exc.details or {}
    key_pattern = details.get("keyPattern")
    if key_pattern is not None:
        return "seq" in key_pattern
    return "uniq_idempotency_key" not in str(details.get("errmsg", exc))


async def _entry_exists(entry_id: PydanticObjectId | None) -> bool:
    try:
        return await CreditTransaction.get(entry_id) is not None
    except PyMongoError as e:
        log.error("ledger_insert_unresolved", transaction_id=str(entry_id), reason=str(e))
        raise StorageFaultError("Ledger write outcome unknown", details={"transaction_id": str(entry_id)}) from e


async def _advance(entry: CreditTransaction) -> Account | None:
    """Fold `entry` into its account if the account sits right before it. None if already folded."""
    spent = 0
    earned = 0
    if entry.amount < 0:
        spent = -entry.amount
    elif entry.type == "refund":
        spent = -entry.amount
    else:
        earned = entry.amount
    return await Account.find_one(
        Account.owner_id == entry.owner_id,
        Account.seq == entry.seq - 1,
    ).update(
        Set({
            Account.balance: entry.balance_after,
            Account.seq: entry.seq,
            Account.updated_at: datetime.utcnow(),
        }),
        Inc({Account.total_spent: spent, Account.total_earned: earned}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def _settle(account: Account) -> Account:
    """Roll the account forward over log entries whose writer did not advance it."""
    while True:
        pending = await CreditTransaction.find_one(
            CreditTransaction.owner_id == account.owner_id,
            CreditTransaction.seq == account.seq + 1,
        )
        if pending is None:
            return account
        advanced = await _advance(pending)
        if advanced is None:
            advanced = await Account.find_one(Account.owner_id == account.owner_id)
            if advanced is None:
                raise AccountNotFoundError(account.owner_id)
        else:
            log.info("ledger_rolled_forward", owner_id=account.owner_id, seq=pending.seq)
        account = advanced
