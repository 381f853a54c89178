from pathlib import Path

from app.core.config import get_settings
from app.storage.base import StorageBackend


class LocalStorage(StorageBackend):
    """Bucket as a directory under STORAGE_LOCAL_PATH (development and tests)."""

    def __init__(self, bucket: str) -> None:
        self.bucket_name = bucket
        self.root = (Path(get_settings().storage_local_path) / bucket).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Key escapes bucket: {key}")
        return path

    async def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
