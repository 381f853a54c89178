"""Profile lookups the ledger needs: ownership checks."""

from bson import ObjectId

from app.core.exceptions import ForbiddenError
from app.models.profile import Profile


async def get_owned_profile(profile_id: str, owner_id: str) -> Profile:
    """Profile owned by owner_id; a missing profile is reported the same as a foreign one."""
    profile = await Profile.get(profile_id) if ObjectId.is_valid(profile_id) else None
    if profile is None or profile.user_id != owner_id:
        raise ForbiddenError("Profile not found or unauthorized")
    return profile
