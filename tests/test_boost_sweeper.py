"""Boost expiry sweep and the derived featured flag."""

import asyncio
from datetime import timedelta

import pytest
from beanie.operators import Set
from pymongo.errors import PyMongoError

from app.core.exceptions import ForbiddenError, InsufficientBalanceError, StorageFaultError
from app.models.audit_log import AuditLog
from app.models.boost import Boost, BoostPackage
from app.models.notification import Notification
from app.models.profile import Profile
from app.services import boosts as boosts_service
from app.services import ledger

pytestmark = pytest.mark.asyncio


async def _reload(profile: Profile) -> Profile:
    return await Profile.get(profile.id)


async def test_two_expired_boosts_clear_featured(make_profile, make_boost, now):
    profile = await make_profile(featured=True)
    await make_boost(str(profile.id), now - timedelta(hours=2))
    await make_boost(str(profile.id), now - timedelta(minutes=5))

    out = await boosts_service.sweep_expired_boosts(now)
    assert out["expired_count"] == 2
    assert (await _reload(profile)).featured is False
    assert await Boost.find(Boost.status == "active").count() == 0
    events = await AuditLog.find(AuditLog.source == "scheduler").to_list()
    assert [(e.event_type, e.metadata["expired_count"]) for e in events] == [("boosts_expired", 2)]


async def test_remaining_active_boost_keeps_featured(make_profile, make_boost, now):
    profile = await make_profile(featured=True)
    await make_boost(str(profile.id), now - timedelta(hours=1))
    await make_boost(str(profile.id), now + timedelta(hours=5))

    out = await boosts_service.sweep_expired_boosts(now)
    assert out["expired_count"] == 1
    assert (await _reload(profile)).featured is True


async def test_second_sweep_is_a_noop(make_profile, make_boost, now):
    profile = await make_profile(featured=True)
    other = await make_profile(featured=True, name="Bia")
    await make_boost(str(profile.id), now - timedelta(hours=1))
    await make_boost(str(other.id), now + timedelta(hours=1))

    first = await boosts_service.sweep_expired_boosts(now)
    second = await boosts_service.sweep_expired_boosts(now)
    assert first["expired_count"] == 1
    assert second == {"expired_count": 0, "profiles_updated": 0}
    assert (await _reload(profile)).featured is False
    assert (await _reload(other)).featured is True


async def test_concurrent_sweeps_process_each_boost_once(make_profile, make_boost, now):
    profiles = [await make_profile(featured=True, name=f"p{i}") for i in range(4)]
    for p in profiles:
        await make_boost(str(p.id), now - timedelta(minutes=1))

    results = await asyncio.gather(
        boosts_service.sweep_expired_boosts(now),
        boosts_service.sweep_expired_boosts(now),
    )
    assert sum(r["expired_count"] for r in results) == 4
    for p in profiles:
        assert (await _reload(p)).featured is False


async def test_sweep_heals_flag_left_by_interrupted_run(make_profile, make_boost, now):
    # boost already expired but the flag was never cleared
    stale = await make_profile(featured=True)
    await make_boost(str(stale.id), now - timedelta(hours=3), status="expired")
    # boost active but the flag never set
    missing = await make_profile(featured=False, name="Bia")
    await make_boost(str(missing.id), now + timedelta(hours=3))

    out = await boosts_service.sweep_expired_boosts(now)
    assert out["expired_count"] == 0
    assert out["profiles_updated"] == 2
    assert (await _reload(stale)).featured is False
    assert (await _reload(missing)).featured is True


async def test_activate_boost_with_credits(make_profile, funded, now):
    profile = await make_profile()
    package = BoostPackage(name="24h boost", credit_cost=50, duration_hours=24)
    await package.insert()
    await funded("owner-1", 80)

    boost = await boosts_service.activate_boost("owner-1", str(profile.id), str(package.id), now=now)
    assert boost.status == "active"
    assert boost.end_date == now + timedelta(hours=24)
    assert (await _reload(profile)).featured is True
    assert await ledger.get_balance("owner-1") == 30

    with pytest.raises(InsufficientBalanceError):
        await boosts_service.activate_boost("owner-1", str(profile.id), str(package.id), now=now)
    assert await Boost.find_all().count() == 1


async def test_activate_boost_on_foreign_profile(make_profile, funded):
    profile = await make_profile(user_id="someone-else")
    package = BoostPackage(name="24h boost", credit_cost=50, duration_hours=24)
    await package.insert()
    await funded("owner-1", 80)
    with pytest.raises(ForbiddenError):
        await boosts_service.activate_boost("owner-1", str(profile.id), str(package.id))
    assert await ledger.get_balance("owner-1") == 80


async def test_expiry_notice_sent_once(make_profile, make_boost, now):
    profile = await make_profile()
    await make_boost(str(profile.id), now + timedelta(hours=24, minutes=30))
    await make_boost(str(profile.id), now + timedelta(hours=30))

    first = await boosts_service.notify_expiring_boosts(now)
    second = await boosts_service.notify_expiring_boosts(now)
    assert first == {"checked": 1, "notified": 1}
    assert second == {"checked": 1, "notified": 0}
    notice = await Notification.find_one(Notification.type == "boost_expiring")
    assert notice.user_id == "owner-1"
    assert notice.metadata["profile_id"] == str(profile.id)


async def test_boost_insert_failure_is_compensated(make_profile, funded, monkeypatch):
    profile = await make_profile()
    package = BoostPackage(name="24h boost", credit_cost=50, duration_hours=24)
    await package.insert()
    await funded("owner-1", 80)

    async def failing_insert(self, *args, **kwargs):
        raise PyMongoError("write concern timeout")

    monkeypatch.setattr(Boost, "insert", failing_insert)
    with pytest.raises(StorageFaultError):
        await boosts_service.activate_boost("owner-1", str(profile.id), str(package.id))

    assert await ledger.get_balance("owner-1") == 80
    assert await Boost.find_all().count() == 0
    assert (await _reload(profile)).featured is False
    refund, debit = (await ledger.list_transactions("owner-1"))[:2]
    assert (refund.type, refund.amount, refund.reference_id) == ("refund", 50, str(debit.id))
    assert debit.idempotency_key.startswith("activation:boost:")
    assert await ledger.verify_account("owner-1")


async def test_activation_between_check_and_clear_keeps_featured(make_profile, make_boost, monkeypatch, now):
    profile = await make_profile(featured=False)
    real_check = boosts_service.has_active_boost
    calls = []

    async def check_then_activate(profile_id):
        calls.append(profile_id)
        if len(calls) == 1:
            # an activation completes right after this check answered
            await make_boost(profile_id, now + timedelta(hours=5))
            await Profile.find_one(Profile.id == profile.id).update(Set({Profile.featured: True}))
            return False
        return await real_check(profile_id)

    monkeypatch.setattr(boosts_service, "has_active_boost", check_then_activate)
    assert await boosts_service.clear_featured_if_idle(str(profile.id)) is False
    assert (await _reload(profile)).featured is True


async def test_reconcile_rechecks_stale_candidates(make_profile, make_boost, monkeypatch, now):
    profile = await make_profile(featured=True)
    await make_boost(str(profile.id), now + timedelta(hours=5))

    async def stale_distinct(cls, *args, **kwargs):
        # snapshot taken before the boost was written
        return []

    monkeypatch.setattr(Boost, "distinct", classmethod(stale_distinct))
    assert await boosts_service.reconcile_featured() == 0
    assert (await _reload(profile)).featured is True


async def test_renewed_boost_gets_a_new_expiry_notice(make_profile, make_boost, now):
    profile = await make_profile()
    boost = await make_boost(str(profile.id), now + timedelta(hours=24, minutes=30))
    assert (await boosts_service.notify_expiring_boosts(now))["notified"] == 1

    await boost.set({Boost.end_date: boost.end_date + timedelta(hours=24)})
    later = now + timedelta(hours=24)
    assert (await boosts_service.notify_expiring_boosts(later))["notified"] == 1
    assert await Notification.find(Notification.type == "boost_expiring").count() == 2
