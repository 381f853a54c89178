"""Expired story cleanup."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.models.story import Story
from app.services import stories as stories_service
from app.services.stories import media_key_from_url
from app.storage.base import StorageBackend
from app.storage.local import LocalStorage

BASE = "https://cdn.example.com/storage/v1/object/public/story-media"


class RecordingStorage(StorageBackend):
    bucket_name = "story-media"

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.deleted: list[str] = []
        self.fail_on = fail_on or set()

    async def exists(self, key: str) -> bool:
        return key not in self.deleted

    async def delete(self, key: str) -> bool:
        if key in self.fail_on:
            raise OSError(f"cannot delete {key}")
        self.deleted.append(key)
        return True


def test_media_key_from_public_url():
    assert media_key_from_url(f"{BASE}/p1/a%20b.jpg", "story-media") == "p1/a b.jpg"
    assert media_key_from_url("gs://story-media/p1/x.mp4", "story-media") == "p1/x.mp4"
    assert media_key_from_url("gs://other/p1/x.mp4", "story-media") is None
    assert media_key_from_url("https://elsewhere.example.com/x.jpg", "story-media") is None
    assert media_key_from_url("", "story-media") is None


async def _story(profile_id: str, key: str, expires_at) -> Story:
    story = Story(profile_id=profile_id, media_url=f"{BASE}/{key}", expires_at=expires_at)
    await story.insert()
    return story


@pytest.mark.asyncio
async def test_sweep_deletes_expired_rows_and_media(db, now):
    await _story("p1", "p1/old.jpg", now - timedelta(minutes=1))
    await _story("p1", "p1/older.jpg", now - timedelta(hours=1))
    fresh = await _story("p1", "p1/new.jpg", now + timedelta(hours=23))
    storage = RecordingStorage()

    out = await stories_service.sweep_expired_stories(now, storage=storage)
    assert out == {"deleted_count": 2, "media_deleted": 2}
    assert sorted(storage.deleted) == ["p1/old.jpg", "p1/older.jpg"]
    remaining = await Story.find_all().to_list()
    assert [s.id for s in remaining] == [fresh.id]

    again = await stories_service.sweep_expired_stories(now, storage=storage)
    assert again == {"deleted_count": 0, "media_deleted": 0}


@pytest.mark.asyncio
async def test_media_failure_does_not_block_row_deletion(db, now):
    await _story("p1", "p1/stuck.jpg", now - timedelta(minutes=1))
    await _story("p1", "p1/ok.jpg", now - timedelta(minutes=1))
    storage = RecordingStorage(fail_on={"p1/stuck.jpg"})

    out = await stories_service.sweep_expired_stories(now, storage=storage)
    assert out == {"deleted_count": 2, "media_deleted": 1}
    assert await Story.find_all().count() == 0


@pytest.mark.asyncio
async def test_local_storage_delete(tmp_path, monkeypatch):
    monkeypatch.setattr("app.storage.local.get_settings", lambda: SimpleNamespace(storage_local_path=str(tmp_path)))
    storage = LocalStorage("story-media")
    media = tmp_path / "story-media" / "p1" / "a.jpg"
    media.parent.mkdir(parents=True)
    media.write_bytes(b"jpg")

    assert await storage.exists("p1/a.jpg") is True
    assert await storage.delete("p1/a.jpg") is True
    assert await storage.delete("p1/a.jpg") is False
    with pytest.raises(ValueError):
        await storage.delete("../outside.jpg")


@pytest.mark.asyncio
async def test_sweep_parses_urls_against_the_backend_bucket(db, now):
    story = Story(profile_id="p1", media_url="gs://archive-media/p1/a.jpg", expires_at=now - timedelta(minutes=1))
    await story.insert()
    storage = RecordingStorage()
    storage.bucket_name = "archive-media"

    out = await stories_service.sweep_expired_stories(now, storage=storage)
    assert out == {"deleted_count": 1, "media_deleted": 1}
    assert storage.deleted == ["p1/a.jpg"]


def test_get_storage_prefers_the_requested_bucket(monkeypatch):
    from app.storage import base

    class FakeGCS:
        def __init__(self, bucket: str) -> None:
            self.bucket_name = bucket

    settings = SimpleNamespace(storage_backend="gcs", gcs_bucket_name="site-assets", story_media_bucket="story-media")
    monkeypatch.setattr(base, "get_settings", lambda: settings)
    monkeypatch.setattr("app.storage.gcs.GCSStorage", FakeGCS)
    assert base.get_storage("story-media").bucket_name == "story-media"
    assert base.get_storage().bucket_name == "site-assets"
