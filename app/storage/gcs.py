import asyncio

from google.api_core.exceptions import NotFound
from google.cloud import storage

from app.storage.base import StorageBackend


class GCSStorage(StorageBackend):
    def __init__(self, bucket: str) -> None:
        self.bucket_name = bucket
        self._client = storage.Client()
        self._bucket = self._client.bucket(bucket)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._bucket.blob(key).exists)

    async def delete(self, key: str) -> bool:
        blob = self._bucket.blob(key)
        try:
            await asyncio.to_thread(blob.delete)
        except NotFound:
            return False
        return True
