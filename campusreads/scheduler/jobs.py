# campusreads/scheduler/jobs.py
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional, Set, Tuple

from starlette.concurrency import run_in_threadpool

from campusreads.core.config import MEDIA_ROOT, ORPHAN_MEDIA_GRACE_HOURS
from campusreads.core.media import local_path_for_url
from campusreads.core.utils import utcnow
from campusreads.models.book import Book

logger = logging.getLogger("scheduler_jobs")


def _remove_unreferenced(media_root: Path, referenced: Set[Path], cutoff: float) -> Tuple[int, int, int]:
    """Blocking file scan; returns (scanned, removed, errors)."""
    referenced = {p.resolve() for p in referenced}
    scanned = removed = errors = 0
    for path in media_root.rglob("*"):
        if not path.is_file():
            continue
        scanned += 1
        if path.resolve() in referenced:
            continue
        try:
            if path.stat().st_mtime > cutoff:
                continue
            path.unlink()
            removed += 1
            logger.debug(f"Removed orphaned media file {path}")
        except OSError:
            errors += 1
            logger.error(f"Could not remove orphaned media file {path}", exc_info=True)
    return scanned, removed, errors


async def purge_orphaned_media(media_root: Optional[Path] = None, grace_hours: int = ORPHAN_MEDIA_GRACE_HOURS) -> int:
    """
    Deletes uploaded images that no book points at any more (book deleted or
    image replaced). Files younger than ``grace_hours`` are kept because an
    upload may not be attached to its book yet. Returns the number removed.
    """
    media_root = media_root or MEDIA_ROOT
    started = utcnow()
    logger.info(f"Running purge_orphaned_media job at {started} on {media_root}")
    if not await run_in_threadpool(media_root.is_dir):
        logger.info("Media root does not exist yet; nothing to purge.")
        return 0

    referenced: Set[Path] = set()
    books = await Book.find({"image_url": {"$ne": None}}).to_list()
    for book in books:
        path = local_path_for_url(book.image_url, media_root=media_root)
        if path is not None:
            referenced.add(path)

    cutoff = (started - timedelta(hours=grace_hours)).timestamp()
    scanned, removed, errors = await run_in_threadpool(_remove_unreferenced, media_root, referenced, cutoff)

    logger.info(f"Job finished. Scanned: {scanned}, Referenced: {len(referenced)}, Removed: {removed}, Errors: {errors}")
    return removed
