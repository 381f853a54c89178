from datetime import datetime

from beanie import Document
from pydantic import Field


class Story(Document):
    """Ephemeral profile content; removed with its media once expired."""
    profile_id: str
    media_url: str
    expires_at: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "profile_stories"
        indexes = [[("expires_at", 1)]]
