from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import get_current_owner
from app.models.boost import Boost
from app.services import boosts as boosts_service
from app.services import renewals as renewals_service

router = APIRouter()


class ActivateBoostRequest(BaseModel):
    profile_id: str
    package_id: str


class AutoRenewRequest(BaseModel):
    enabled: bool


def boost_out(boost: Boost) -> dict:
    return {
        "id": str(boost.id),
        "profile_id": boost.profile_id,
        "package_id": boost.package_id,
        "status": boost.status,
        "end_date": boost.end_date.isoformat(),
        "auto_renew": boost.auto_renew,
        "renewal_count": boost.renewal_count,
    }


@router.post("/activate")
async def activate_boost(body: ActivateBoostRequest, owner_id: str = Depends(get_current_owner)):
    """Pay for a boost package with credits."""
    boost = await boosts_service.activate_boost(owner_id, body.profile_id, body.package_id)
    return {"success": True, "boost": boost_out(boost)}


@router.put("/{boost_id}/auto-renew")
async def set_boost_auto_renew(boost_id: str, body: AutoRenewRequest, owner_id: str = Depends(get_current_owner)):
    """Renew this boost from the credit balance before it ends."""
    boost = await renewals_service.set_auto_renew("boost", boost_id, owner_id, body.enabled)
    return {"success": True, "boost": boost_out(boost)}
