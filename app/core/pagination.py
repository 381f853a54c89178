"""Offset pagination for listing endpoints."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

MAX_LIMIT = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    next_offset: int | None = None


def paginate(limit: int, offset: int, max_limit: int = MAX_LIMIT) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset)."""
    return max(1, min(limit, max_limit)), max(0, offset)


def build_page(rows: list[T], limit: int, offset: int) -> Page[T]:
    """`rows` is fetched with limit + 1; the extra row only signals that more exist."""
    has_more = len(rows) > limit
    return Page(
        items=rows[:limit],
        limit=limit,
        offset=offset,
        next_offset=offset + limit if has_more else None,
    )
