from fastapi import APIRouter, Depends

from app.deps import get_current_owner
from app.services import credits as credits_service
from app.services import missions as missions_service

router = APIRouter()


@router.get("")
async def list_missions(owner_id: str = Depends(get_current_owner)):
    return {"missions": await missions_service.list_missions(owner_id)}


@router.post("/{mission_id}/complete")
async def complete_mission(mission_id: str, owner_id: str = Depends(get_current_owner)):
    """Claim today's reward for a mission."""
    entry = await missions_service.complete_mission(owner_id, mission_id)
    return {
        "success": True,
        "credits_earned": entry.amount,
        "balance": await credits_service.get_balance_or_zero(owner_id),
        "message": f"You earned {entry.amount} credits!",
    }
