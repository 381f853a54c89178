"""Dead-letter record for scheduled sweeps that raised."""

from datetime import datetime

from beanie import Document
from pydantic import Field


class FailedJob(Document):
    job_name: str
    job_id: str
    job_try: int = 1
    reason: str = ""
    failed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", 1), ("failed_at", -1)]]
