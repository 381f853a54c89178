"""Daily missions: a credit bonus per mission, once per owner and UTC day."""

from datetime import datetime

from beanie.operators import Set
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.models.credit_transaction import CreditTransaction
from app.models.mission import DailyMission, MissionProgress
from app.services import credits as credits_service

log = get_logger(__name__)


def mission_key(mission_id: str, day: str) -> str:
    return f"mission:{mission_id}:{day}"


async def get_active_mission(mission_id: str) -> DailyMission:
    mission = await DailyMission.get(mission_id) if ObjectId.is_valid(mission_id) else None
    if mission is None or not mission.is_active:
        raise NotFoundError("Mission not found", code="MISSION_NOT_FOUND")
    return mission


async def _mark_completed(owner_id: str, mission: DailyMission, day: str, entry: CreditTransaction, now: datetime) -> None:
    fields = {
        MissionProgress.current_value: mission.target_value,
        MissionProgress.completed: True,
        MissionProgress.completed_at: now,
        MissionProgress.transaction_id: str(entry.id),
    }
    query = MissionProgress.find_one(
        MissionProgress.owner_id == owner_id,
        MissionProgress.mission_id == str(mission.id),
        MissionProgress.date == day,
    )
    try:
        await query.upsert(
            Set(fields),
            on_insert=MissionProgress(
                owner_id=owner_id,
                mission_id=str(mission.id),
                date=day,
                current_value=mission.target_value,
                completed=True,
                completed_at=now,
                transaction_id=str(entry.id),
            ),
        )
    except DuplicateKeyError:
        # a concurrent completion inserted the row first
        await query.update(Set(fields))


async def complete_mission(owner_id: str, mission_id: str, now: datetime | None = None) -> CreditTransaction:
    """
    Credit the mission reward for today. A second completion on the same UTC
    day raises BadRequestError; the ``mission:<id>:<date>`` idempotency key
    settles concurrent completions, so the reward lands once.
    """
    now = now or datetime.utcnow()
    mission = await get_active_mission(mission_id)
    day = now.date().isoformat()

    entry, created = await credits_service.apply_once(
        owner_id,
        mission.credit_reward,
        "mission",
        mission_key(str(mission.id), day),
        description=f"Mission completed: {mission.name}",
        reference_id=str(mission.id),
        create=True,
    )
    # progress follows the ledger; a repeat call repairs a missing row
    await _mark_completed(owner_id, mission, day, entry, now)
    if not created:
        log.info("mission_already_completed", owner_id=owner_id, mission_id=mission_id, date=day)
        raise BadRequestError("Mission already completed today", code="MISSION_ALREADY_COMPLETED")

    log.info("mission_completed", owner_id=owner_id, mission_id=mission_id, credits=mission.credit_reward, transaction_id=str(entry.id))
    from app.core.audit import log_event
    await log_event(owner_id, "mission_completed", "mission", str(mission.id), {"credits": mission.credit_reward, "date": day})
    return entry


async def list_missions(owner_id: str, now: datetime | None = None) -> list[dict]:
    """Active missions with today's completion state for the owner."""
    now = now or datetime.utcnow()
    day = now.date().isoformat()
    missions = await DailyMission.find(DailyMission.is_active == True).to_list()  # noqa: E712
    done = {
        p.mission_id
        for p in await MissionProgress.find(
            MissionProgress.owner_id == owner_id,
            MissionProgress.date == day,
            MissionProgress.completed == True,  # noqa: E712
        ).to_list()
    }
    return [
        {
            "id": str(m.id),
            "name": m.name,
            "description": m.description,
            "credit_reward": m.credit_reward,
            "target_value": m.target_value,
            "completed": str(m.id) in done,
        }
        for m in missions
    ]
