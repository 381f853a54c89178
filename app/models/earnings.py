from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import BaseModel, Field


class EarningsHold(BaseModel):
    """Earnings taken out of pending_payout for a write that has not been confirmed yet."""
    id: str
    kind: Literal["payout", "conversion"]
    owner_id: str
    amount: int
    paid_out: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Earnings(Document):
    profile_id: Indexed(str, unique=True)
    pending_payout: int = 0
    paid_out: int = 0
    holds: list[EarningsHold] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "creator_earnings"
