"""Ledger store: balance/log consistency, no negative balances, concurrent writers."""

import asyncio

import pytest
from pymongo.errors import AutoReconnect

from app.core.exceptions import (
    AccountNotFoundError,
    BadRequestError,
    ConflictError,
    InsufficientBalanceError,
    StorageFaultError,
)
from app.models.credit_transaction import CreditTransaction
from app.services import ledger

pytestmark = pytest.mark.asyncio


async def test_get_balance_unknown_owner(db):
    with pytest.raises(AccountNotFoundError):
        await ledger.get_balance("nobody")


async def test_credit_opens_account_on_first_touch(db):
    entry = await ledger.apply_delta("owner-1", 100, "bonus", "welcome", create=True)
    assert entry.seq == 1
    assert entry.balance_after == 100
    assert await ledger.get_balance("owner-1") == 100


async def test_debit_without_account_is_not_found(db):
    with pytest.raises(AccountNotFoundError):
        await ledger.apply_delta("owner-1", -10, "premium_service")


async def test_balance_matches_log_after_each_delta(db):
    deltas = [500, -120, 30, -410, 75, -75]
    for d in deltas:
        await ledger.apply_delta("owner-1", d, "bonus" if d > 0 else "premium_service", create=True)
        assert await ledger.get_balance("owner-1") == await ledger.replay_balance("owner-1")
    assert await ledger.get_balance("owner-1") == sum(deltas)
    assert await ledger.verify_account("owner-1")

    account = await ledger.get_account("owner-1")
    assert account.seq == len(deltas)
    assert account.total_spent == 120 + 410 + 75
    assert account.total_earned == 500 + 30 + 75


async def test_overdraw_leaves_no_trace(db):
    await ledger.apply_delta("owner-1", 200, "purchase", reference_id="pay-1", create=True)
    with pytest.raises(InsufficientBalanceError):
        await ledger.apply_delta("owner-1", -201, "premium_service")
    assert await ledger.get_balance("owner-1") == 200
    assert await CreditTransaction.find(CreditTransaction.owner_id == "owner-1").count() == 1


async def test_rejects_zero_and_unknown_type(db):
    with pytest.raises(BadRequestError):
        await ledger.apply_delta("owner-1", 0, "bonus", create=True)
    with pytest.raises(BadRequestError):
        await ledger.apply_delta("owner-1", 10, "gift", create=True)


async def test_concurrent_debits_never_overdraw(db):
    await ledger.apply_delta("owner-1", 300, "bonus", create=True)
    results = await asyncio.gather(
        *[ledger.apply_delta("owner-1", -100, "premium_service") for _ in range(5)],
        return_exceptions=True,
    )
    succeeded = [r for r in results if isinstance(r, CreditTransaction)]
    refused = [r for r in results if isinstance(r, InsufficientBalanceError)]
    assert not [r for r in results if isinstance(r, StorageFaultError)]
    assert len(succeeded) == 3
    assert len(refused) == 2
    assert sorted(e.seq for e in succeeded) == [2, 3, 4]
    assert await ledger.get_balance("owner-1") == 0
    assert await ledger.verify_account("owner-1")


async def test_entry_left_by_crashed_writer_is_folded_in(db):
    await ledger.apply_delta("owner-1", 100, "bonus", create=True)
    # log entry written, account never advanced
    await CreditTransaction(
        owner_id="owner-1",
        seq=2,
        amount=-40,
        balance_after=60,
        type="premium_service",
    ).insert()
    assert await ledger.get_balance("owner-1") == 60

    entry = await ledger.apply_delta("owner-1", -60, "premium_service")
    assert entry.seq == 3
    assert entry.balance_after == 0
    assert await ledger.verify_account("owner-1")


async def test_list_transactions_newest_first(db):
    for amount in (10, 20, 30):
        await ledger.apply_delta("owner-1", amount, "bonus", create=True)
    entries = await ledger.list_transactions("owner-1", limit=2)
    assert [e.amount for e in entries] == [30, 20]


async def test_idempotency_key_is_unique_per_owner(db):
    await ledger.apply_delta("owner-1", 100, "purchase", create=True, idempotency_key="purchase:pay-1")
    with pytest.raises(ConflictError):
        await ledger.apply_delta("owner-1", 100, "purchase", create=True, idempotency_key="purchase:pay-1")
    # same key, different owner
    await ledger.apply_delta("owner-2", 100, "purchase", create=True, idempotency_key="purchase:pay-1")
    assert await ledger.get_balance("owner-1") == 100
    found = await ledger.find_by_key("owner-1", "purchase:pay-1")
    assert found.amount == 100 and found.seq == 1
    assert await ledger.verify_account("owner-1")


async def test_unanswered_lookup_after_failed_insert_is_a_fault(db, monkeypatch):
    await ledger.apply_delta("owner-1", 100, "bonus", create=True)
    original_insert = CreditTransaction.insert

    async def insert_then_drop_connection(self, *args, **kwargs):
        await original_insert(self, *args, **kwargs)
        raise AutoReconnect("connection reset after write")

    async def unreachable_get(cls, *args, **kwargs):
        raise AutoReconnect("lookup timed out")

    monkeypatch.setattr(CreditTransaction, "insert", insert_then_drop_connection)
    monkeypatch.setattr(CreditTransaction, "get", classmethod(unreachable_get))
    with pytest.raises(StorageFaultError) as exc:
        await ledger.apply_delta("owner-1", -40, "premium_service")
    assert exc.value.message == "Ledger write outcome unknown"
    monkeypatch.undo()

    # the write landed; it is folded in, not lost or repeated
    assert await ledger.get_balance("owner-1") == 60
    assert await ledger.verify_account("owner-1")
