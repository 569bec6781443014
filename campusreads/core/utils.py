# campusreads/core/utils.py
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, TypeVar

from bson import ObjectId
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by MongoDB) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_object_id(raw: str, label: str = "ID") -> ObjectId:
    """Converts a path/body string into an ObjectId or raises 400."""
    if not raw or not ObjectId.is_valid(raw):
        logger.warning(f"Invalid ObjectId format for {label}: {raw}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {label} format.")
    return ObjectId(raw)


def dedupe_by_id(*groups: Iterable[T]) -> List[T]:
    """
    Merges several document lists, keeping one entry per ``id``.
    When an id repeats, the later group wins.
    """
    merged: Dict[str, T] = {}
    for group in groups:
        for doc in group:
            merged[str(getattr(doc, "id"))] = doc
    return list(merged.values())


def session_kwargs(session: Optional[object]) -> dict:
    """Only pass ``session`` to Motor when one is open."""
    return {"session": session} if session is not None else {}
