from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field


class PayoutRequest(Document):
    """Awaits manual approval; transitions past pending are owned by the admin workflow."""
    profile_id: str
    owner_id: str
    amount: int = Field(gt=0)
    pix_key: str
    status: Literal["pending", "approved", "rejected", "paid"] = "pending"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "creator_payouts"
        indexes = [[("profile_id", 1), ("created_at", -1)], [("status", 1)]]
