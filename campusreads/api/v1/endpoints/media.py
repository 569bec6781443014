# campusreads/api/v1/endpoints/media.py
from fastapi import APIRouter, Depends, File, Request, UploadFile, status

from campusreads.core.media import store_image
from campusreads.core.rate_limiter import limiter
from campusreads.core.security import get_current_profile
from campusreads.models.profile import Profile

router = APIRouter(
    tags=["Media"]
)


@router.post("/images", status_code=status.HTTP_201_CREATED, summary="Upload an image and get its public URL")
@limiter.limit("20/hour")
async def upload_image(
    request: Request,
    file: UploadFile = File(...),
    current_profile: Profile = Depends(get_current_profile),
):
    """Stores the image under the caller's namespace. Attach the URL to a book via its image_url."""
    url = await store_image(str(current_profile.id), file)
    return {"url": url}
