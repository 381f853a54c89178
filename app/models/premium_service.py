from datetime import datetime

from beanie import Document
from pydantic import Field


class PremiumService(Document):
    """Catalog entry; read only from the ledger's side."""
    name: str
    description: str = ""
    credit_cost: int = Field(gt=0)
    duration_days: int | None = None  # None = permanent
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "premium_services"
