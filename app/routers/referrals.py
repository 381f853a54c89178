from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.deps import require_scheduler
from app.services import referrals as referrals_service

router = APIRouter()

_MESSAGES = {
    "tracked": "Referral tracked successfully",
    "already_tracked": "Referral already tracked",
    "affiliate_not_found": "Affiliate not found",
    "invalid": "Affiliate code and user required",
}


class TrackReferralRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    affiliate_code: str = Field(alias="affiliateCode")
    new_user_id: str = Field(alias="newUserId")


@router.post("/track")
async def track_referral(body: TrackReferralRequest):
    """Signup side effect: never fails for unknown codes or repeats."""
    out = await referrals_service.track(body.affiliate_code, body.new_user_id)
    reason = out["reason"]
    success = out["created"] or reason == "already_tracked"
    return {"success": success, "created": out["created"], "message": _MESSAGES[reason]}


class CommissionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    transaction_type: str = Field(alias="transactionType")
    transaction_id: str = Field(alias="transactionId")
    amount: float


@router.post("/commission", dependencies=[Depends(require_scheduler)])
async def record_commission(body: CommissionRequest):
    """Book the referrer's commission on a paid transaction by a referred user."""
    out = await referrals_service.record_commission(body.user_id, body.transaction_type, body.transaction_id, body.amount)
    return {"success": True, **out}
