from datetime import datetime

from beanie import Document
from pydantic import Field


class ActiveServiceGrant(Document):
    owner_id: str
    profile_id: str
    service_id: str
    end_date: datetime | None = None  # None = permanent
    transaction_id: str
    auto_renew: bool = False
    renewal_transaction_ids: list[str] = Field(default_factory=list)
    renewal_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def is_expired(self, now: datetime) -> bool:
        return self.end_date is not None and now > self.end_date

    class Settings:
        name = "active_premium_services"
        indexes = [
            [("profile_id", 1), ("end_date", 1)],
            [("transaction_id", 1)],
            [("auto_renew", 1), ("end_date", 1)],
        ]
