"""Daily mission rewards: once per owner, mission and UTC day."""

import asyncio
from datetime import timedelta

import pytest

from app.core.exceptions import BadRequestError, NotFoundError
from app.models.credit_transaction import CreditTransaction
from app.models.mission import DailyMission, MissionProgress
from app.services import ledger
from app.services import missions as missions_service

pytestmark = pytest.mark.asyncio


async def _mission(reward: int = 15, is_active: bool = True) -> DailyMission:
    mission = DailyMission(name="Share your profile", credit_reward=reward, target_value=3, is_active=is_active)
    await mission.insert()
    return mission


async def test_reward_is_credited_once_per_day(db, now):
    mission = await _mission()
    entry = await missions_service.complete_mission("owner-1", str(mission.id), now)
    assert (entry.type, entry.amount) == ("mission", 15)
    assert await ledger.get_balance("owner-1") == 15

    with pytest.raises(BadRequestError) as exc:
        await missions_service.complete_mission("owner-1", str(mission.id), now + timedelta(hours=1))
    assert exc.value.code == "MISSION_ALREADY_COMPLETED"
    assert await ledger.get_balance("owner-1") == 15

    progress = await MissionProgress.find_one(MissionProgress.owner_id == "owner-1")
    assert (progress.completed, progress.current_value, progress.transaction_id) == (True, 3, str(entry.id))

    await missions_service.complete_mission("owner-1", str(mission.id), now + timedelta(days=1))
    assert await ledger.get_balance("owner-1") == 30


async def test_concurrent_completions_pay_once(db, now):
    mission = await _mission()
    results = await asyncio.gather(
        *[missions_service.complete_mission("owner-1", str(mission.id), now) for _ in range(3)],
        return_exceptions=True,
    )
    assert sum(isinstance(r, CreditTransaction) for r in results) == 1
    assert sum(isinstance(r, BadRequestError) for r in results) == 2
    assert await ledger.get_balance("owner-1") == 15
    assert await ledger.verify_account("owner-1")


async def test_unknown_or_inactive_mission(db):
    inactive = await _mission(is_active=False)
    with pytest.raises(NotFoundError):
        await missions_service.complete_mission("owner-1", str(inactive.id))
    with pytest.raises(NotFoundError):
        await missions_service.complete_mission("owner-1", "nope")
    assert await CreditTransaction.find_all().count() == 0


async def test_list_missions_marks_today(db, now):
    done = await _mission()
    open_ = await _mission(reward=5)
    await missions_service.complete_mission("owner-1", str(done.id), now)
    listed = {m["id"]: m["completed"] for m in await missions_service.list_missions("owner-1", now)}
    assert listed == {str(done.id): True, str(open_.id): False}
    tomorrow = await missions_service.list_missions("owner-1", now + timedelta(days=1))
    assert not any(m["completed"] for m in tomorrow)
