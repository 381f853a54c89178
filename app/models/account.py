from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Account(Document):
    """Credit balance per owner. A cache of the transaction log, advanced by seq."""
    owner_id: Indexed(str, unique=True)
    balance: int = 0
    total_spent: int = 0
    total_earned: int = 0
    seq: int = 0  # seq of the last log entry folded into balance
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "accounts"
