from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field


class BoostPackage(Document):
    name: str
    credit_cost: int = Field(gt=0)
    duration_hours: int = Field(gt=0)
    is_active: bool = True

    class Settings:
        name = "boost_packages"


class Boost(Document):
    owner_id: str
    profile_id: str
    package_id: str | None = None
    status: Literal["active", "expired"] = "active"
    start_date: datetime = Field(default_factory=datetime.utcnow)
    end_date: datetime
    payment_method: str = "credits"  # credits | external
    transaction_id: str | None = None
    auto_renew: bool = False
    renewal_transaction_ids: list[str] = Field(default_factory=list)
    renewal_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "active_boosts"
        indexes = [
            [("status", 1), ("end_date", 1)],
            [("profile_id", 1), ("status", 1)],
            [("auto_renew", 1), ("end_date", 1)],
        ]
