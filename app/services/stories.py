"""Expired story cleanup: media first (best effort), then the rows in one batch."""

from datetime import datetime
from urllib.parse import unquote, urlparse

from beanie.operators import In

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.story import Story
from app.storage.base import StorageBackend, get_storage

log = get_logger(__name__)


def media_key_from_url(media_url: str, bucket: str) -> str | None:
    """Object key inside `bucket` for a stored media URL, or None if it is not ours.

    Understands public object URLs (``/storage/v1/object/public/<bucket>/<key>``)
    and ``gs://<bucket>/<key>`` URIs.
    """
    if not media_url:
        return None
    parsed = urlparse(media_url)
    if parsed.scheme == "gs":
        if parsed.netloc != bucket:
            return None
        key = parsed.path.lstrip("/")
        return unquote(key) or None
    marker = f"/storage/v1/object/public/{bucket}/"
    idx = parsed.path.find(marker)
    if idx == -1:
        return None
    key = parsed.path[idx + len(marker):]
    return unquote(key) or None


async def _delete_media(storage: StorageBackend, story: Story) -> bool:
    key = media_key_from_url(story.media_url, storage.bucket_name)
    if key is None:
        log.warning("story_media_unrecognised", story_id=str(story.id), media_url=story.media_url)
        return False
    try:
        removed = await storage.delete(key)
    except Exception as e:
        # a dangling blob is tolerated; expired content must leave listings
        log.error("story_media_delete_failed", story_id=str(story.id), key=key, reason=str(e))
        return False
    if not removed:
        log.info("story_media_missing", story_id=str(story.id), key=key)
    return removed


async def sweep_expired_stories(now: datetime | None = None, storage: StorageBackend | None = None) -> dict:
    """Delete stories whose expires_at has passed, with their media. Re-runs are no-ops."""
    now = now or datetime.utcnow()
    settings = get_settings()
    expired = (
        await Story.find(Story.expires_at < now)
        .limit(settings.sweep_batch_size)
        .to_list()
    )
    if not expired:
        return {"deleted_count": 0, "media_deleted": 0}

    log.info("story_sweep_found", count=len(expired))
    storage = storage or get_storage(settings.story_media_bucket)
    media_deleted = 0
    for story in expired:
        media_deleted += int(await _delete_media(storage, story))

    result = await Story.find(In(Story.id, [s.id for s in expired])).delete()
    deleted_count = result.deleted_count if result is not None else 0
    log.info("story_sweep_done", deleted_count=deleted_count, media_deleted=media_deleted)
    from app.core.audit import log_event
    await log_event(None, "stories_expired", "story", metadata={"deleted_count": deleted_count}, source="scheduler")
    return {"deleted_count": deleted_count, "media_deleted": media_deleted}
