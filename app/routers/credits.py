from fastapi import APIRouter, Depends, Query

from app.core.pagination import MAX_LIMIT, Page, build_page, paginate
from app.deps import get_current_owner
from app.services import credits as credits_service
from app.services import ledger

router = APIRouter()


@router.get("/balance")
async def credits_balance(owner_id: str = Depends(get_current_owner)):
    """Return current credit balance (0 before the first purchase)."""
    balance = await credits_service.get_balance_or_zero(owner_id)
    return {"balance": balance}


@router.get("/ledger", response_model=Page[dict])
async def credits_ledger(
    owner_id: str = Depends(get_current_owner),
    limit: int = Query(50, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
):
    """Return transactions for current owner (newest first)."""
    limit, offset = paginate(limit, offset)
    entries = await ledger.list_transactions(owner_id, limit=limit + 1, offset=offset)
    items = [
        {
            "id": str(e.id),
            "seq": e.seq,
            "amount": e.amount,
            "balance_after": e.balance_after,
            "type": e.type,
            "description": e.description,
            "reference_id": e.reference_id,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return build_page(items, limit, offset)
