"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.config import get_settings
from app.core.exceptions import UnauthorizedError
from app.core.logging import bind_owner
from app.core.security import load_session_token, verify_cron_secret

SESSION_COOKIE_NAME = "classifieds_session"
CRON_SECRET_HEADER = "X-Cron-Secret"


def _session_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip() or None
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_owner(request: Request) -> str:
    """Dependency: owner id from the signed session token (header or cookie)."""
    token = _session_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    owner_id = payload.get("user_id")
    if not owner_id:
        raise UnauthorizedError("Invalid session")
    owner_id = str(owner_id)
    bind_owner(owner_id)
    return owner_id


async def require_scheduler(request: Request) -> None:
    """Dependency: caller presents the scheduler shared secret."""
    if not verify_cron_secret(request.headers.get(CRON_SECRET_HEADER), get_settings().cron_secret):
        raise UnauthorizedError("Invalid scheduler credentials")
