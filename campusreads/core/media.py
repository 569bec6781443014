# campusreads/core/media.py
import logging
import uuid
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Optional

from fastapi import HTTPException, UploadFile, status
from starlette.concurrency import run_in_threadpool

from campusreads.core.config import MEDIA_ROOT, MEDIA_BASE_URL, MAX_UPLOAD_BYTES, ALLOWED_IMAGE_TYPES
from campusreads.core.utils import utcnow

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def build_object_name(original_filename: Optional[str], content_type: str, now: Optional[datetime] = None) -> str:
    """``<epoch-millis>_<6 hex><ext>``; the extension follows the content type."""
    now = now or utcnow()
    ext = _EXTENSIONS.get(content_type)
    if ext is None:
        suffix = PurePosixPath(original_filename or "").suffix.lower()
        ext = suffix if suffix and len(suffix) <= 6 and suffix[1:].isalnum() else ""
    millis = int(now.timestamp() * 1000)
    return f"{millis}_{uuid.uuid4().hex[:6]}{ext}"


def public_url(owner_id: str, object_name: str, base_url: str = MEDIA_BASE_URL) -> str:
    return f"{base_url}/{owner_id}/{object_name}"


def local_path_for_url(url: Optional[str], media_root: Path = MEDIA_ROOT, base_url: str = MEDIA_BASE_URL) -> Optional[Path]:
    """Maps a public media URL back to its file; None for external URLs."""
    if not url or not url.startswith(base_url + "/"):
        return None
    relative = url[len(base_url) + 1:]
    parts = PurePosixPath(relative).parts
    if len(parts) != 2 or any(p in ("", ".", "..") for p in parts):
        return None
    return media_root.joinpath(*parts)


async def store_image(owner_id: str, upload: UploadFile, media_root: Optional[Path] = None) -> str:
    """
    Saves an uploaded image under ``<media_root>/<owner_id>/`` and returns
    its public URL. Type and size are checked here, not only by the client.
    """
    media_root = media_root or MEDIA_ROOT
    content_type = (upload.content_type or "").lower()
    if not content_type.startswith("image/") or content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported image type '{content_type or 'unknown'}'. Allowed: {sorted(ALLOWED_IMAGE_TYPES)}",
        )

    data = await upload.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=f"Image exceeds {MAX_UPLOAD_BYTES} bytes.")
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    object_name = build_object_name(upload.filename, content_type)
    target_dir = media_root / owner_id
    target = target_dir / object_name
    try:
        await run_in_threadpool(target_dir.mkdir, parents=True, exist_ok=True)
        await run_in_threadpool(target.write_bytes, data)
    except OSError as e:
        logger.error(f"Failed to write upload to {target}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to store image.") from e

    url = public_url(owner_id, object_name)
    logger.info(f"Stored {len(data)} bytes for profile {owner_id} at {target}")
    return url
