from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import get_current_owner
from app.models.active_service_grant import ActiveServiceGrant
from app.services import premium as premium_service
from app.services import renewals as renewals_service
from app.services.profiles import get_owned_profile

router = APIRouter()


class ActivateServiceRequest(BaseModel):
    profile_id: str
    service_id: str


def grant_out(grant: ActiveServiceGrant) -> dict:
    return {
        "id": str(grant.id),
        "profile_id": grant.profile_id,
        "service_id": grant.service_id,
        "end_date": grant.end_date.isoformat() if grant.end_date else None,
        "transaction_id": grant.transaction_id,
        "auto_renew": grant.auto_renew,
        "renewal_count": grant.renewal_count,
        "created_at": grant.created_at.isoformat(),
    }


@router.post("/activate")
async def activate_service(body: ActivateServiceRequest, owner_id: str = Depends(get_current_owner)):
    """Spend credits on a premium service for a profile."""
    grant = await premium_service.activate(owner_id, body.profile_id, body.service_id)
    return {"success": True, "grant": grant_out(grant)}


@router.get("/profiles/{profile_id}/grants")
async def profile_grants(profile_id: str, owner_id: str = Depends(get_current_owner)):
    """Unexpired grants on a profile the caller owns."""
    await get_owned_profile(profile_id, owner_id)
    grants = await premium_service.list_active_grants(profile_id)
    return {"grants": [grant_out(g) for g in grants]}


class AutoRenewRequest(BaseModel):
    enabled: bool


@router.put("/grants/{grant_id}/auto-renew")
async def set_grant_auto_renew(grant_id: str, body: AutoRenewRequest, owner_id: str = Depends(get_current_owner)):
    grant = await renewals_service.set_auto_renew("premium", grant_id, owner_id, body.enabled)
    return {"success": True, "grant": grant_out(grant)}
