from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_current_owner
from app.services import payouts as payouts_service

router = APIRouter()


class PayoutRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    profile_id: str = Field(alias="profileId")
    amount: int
    pix_key: str = Field(alias="pixKey")


class ConvertEarningsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    profile_id: str = Field(alias="profileId")
    amount: int


@router.post("/request")
async def request_payout(body: PayoutRequestBody, owner_id: str = Depends(get_current_owner)):
    """Request a payout of pending earnings; awaits admin approval."""
    payout = await payouts_service.request_payout(body.profile_id, owner_id, body.amount, body.pix_key)
    return {
        "success": True,
        "payout_id": str(payout.id),
        "message": f"Payout request of {payout.amount:.2f} created. It is awaiting review.",
    }


@router.post("/convert")
async def convert_earnings(body: ConvertEarningsBody, owner_id: str = Depends(get_current_owner)):
    """Convert pending earnings into credits (1:1)."""
    credits = await payouts_service.convert_earnings_to_credits(body.profile_id, owner_id, body.amount)
    return {
        "success": True,
        "credits": credits,
        "message": f"{body.amount:.2f} converted into {credits} credits.",
    }
