from datetime import datetime
from typing import Any, Literal

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    owner_id: str | None = None
    source: Literal["api", "scheduler"] = "api"
    event_type: str  # premium_activated, boost_activated, boosts_expired, payout_requested, ...
    entity_type: str
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("owner_id", 1), ("created_at", -1)],
            [("source", 1), ("event_type", 1), ("created_at", -1)],
        ]
