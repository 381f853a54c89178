from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class DailyMission(Document):
    name: str
    description: str = ""
    credit_reward: int = Field(gt=0)
    target_value: int = 1
    is_active: bool = True

    class Settings:
        name = "daily_missions"


class MissionProgress(Document):
    owner_id: str
    mission_id: str
    date: str  # YYYY-MM-DD, UTC
    current_value: int = 0
    completed: bool = False
    completed_at: datetime | None = None
    transaction_id: str | None = None

    class Settings:
        name = "user_mission_progress"
        indexes = [
            IndexModel(
                [("owner_id", ASCENDING), ("mission_id", ASCENDING), ("date", ASCENDING)],
                unique=True,
            ),
        ]
