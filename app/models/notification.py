import uuid
from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class Notification(Document):
    """Change event for the external notifier (realtime UI, email)."""
    user_id: str
    type: str  # payment_success, boost_expiring, auto_renewal_success, ...
    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    # set to a stable value for events that must be emitted once
    dedupe_key: str = Field(default_factory=lambda: uuid.uuid4().hex)
    read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "notifications"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("dedupe_key", ASCENDING)], unique=True, name="uniq_dedupe_key"),
        ]
