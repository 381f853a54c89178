from abc import ABC, abstractmethod

from app.core.config import get_settings


class StorageBackend(ABC):
    """Media blob store scoped to one bucket."""

    bucket_name: str

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the object. Returns False when it was already gone."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...


def get_storage(bucket: str | None = None) -> StorageBackend:
    """Backend for `bucket`; without one, the configured default bucket."""
    settings = get_settings()
    if settings.storage_backend == "gcs":
        from app.storage.gcs import GCSStorage
        return GCSStorage(bucket or settings.gcs_bucket_name or settings.story_media_bucket)
    from app.storage.local import LocalStorage
    return LocalStorage(bucket or settings.story_media_bucket)
