from datetime import datetime

from beanie import Document
from pydantic import Field


class Profile(Document):
    """Listing profile. Owned by the directory; the ledger only reads
    ownership and maintains the derived `featured` flag."""
    user_id: str
    name: str = ""
    featured: bool = False
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "model_profiles"
        indexes = [[("user_id", 1)], [("featured", 1)]]
