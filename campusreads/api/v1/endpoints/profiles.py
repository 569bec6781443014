# campusreads/api/v1/endpoints/profiles.py
from fastapi import APIRouter, Body, Depends, HTTPException
from loguru import logger
from pydantic import ValidationError

from campusreads.core.security import get_current_profile
from campusreads.core.utils import utcnow
from campusreads.models.profile import Profile

router = APIRouter(
    tags=["Profiles"]
)


def validate_profile_response(profile: Profile) -> Profile.Response:
    try:
        data = profile.model_dump(mode="json", exclude={"hashed_password", "revision_id"})
        data["id"] = str(profile.id)
        return Profile.Response.model_validate(data)
    except ValidationError as ve:
        logger.error(f"[{profile.id}] Profile response validation failed: {ve}")
        raise HTTPException(status_code=500, detail="Error preparing profile response.") from ve


@router.get("/me", response_model=Profile.Response, summary="Current profile")
async def read_my_profile(current_profile: Profile = Depends(get_current_profile)):
    return validate_profile_response(current_profile)


@router.patch("/me", response_model=Profile.Response, summary="Update current profile")
async def update_my_profile(
    profile_in: Profile.Update = Body(...),
    current_profile: Profile = Depends(get_current_profile),
):
    update_data = profile_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided.")
    update_data["updated_at"] = utcnow()
    try:
        await current_profile.update({"$set": update_data})
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to update profile.") from e

    updated = await Profile.get(current_profile.id)
    if not updated:
        raise HTTPException(status_code=404, detail="Profile not found after update.")
    return validate_profile_response(updated)
