"""Audit trail for credit, boost and payout events."""

from typing import Any

from pymongo.errors import PyMongoError

from app.core.logging import get_logger
from app.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    owner_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    source: str = "api",
) -> bool:
    """
    Append to audit_logs. Called after the audited write has committed, so a
    failure here is logged and reported as False instead of failing a request
    whose effect already happened.
    """
    try:
        await AuditLog(
            owner_id=owner_id,
            source=source,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        ).insert()
    except PyMongoError as e:
        log.warning("audit_write_failed", event_type=event_type, entity_id=entity_id, reason=str(e))
        return False
    return True

