# campusreads/core/catalog.py
import logging
import re
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo import DESCENDING

from campusreads.core.utils import utcnow, parse_object_id, dedupe_by_id
from campusreads.models.book import Book
from campusreads.models.borrow_request import BorrowRequest
from campusreads.models.enum import BookStatus, BookView, RequestStatus
from campusreads.models.profile import Profile, ProfileRef

logger = logging.getLogger(__name__)

# Statuses an owner may set directly; BORROWED belongs to the request workflow
OWNER_SETTABLE_STATUSES = {BookStatus.AVAILABLE, BookStatus.UNAVAILABLE}


async def get_book_or_404(book_id: str) -> Book:
    oid = parse_object_id(book_id, "book ID")
    try:
        book = await Book.get(oid)
    except Exception as e:
        logger.error(f"Error finding book by ID '{book_id}': {e}")
        raise HTTPException(status_code=500, detail=f"Error retrieving book '{book_id}'.") from e
    if not book:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Book with ID '{book_id}' not found")
    return book


def ensure_owner(book: Book, profile: Profile) -> None:
    if book.owner_id != profile.id:
        logger.warning(f"Forbidden: profile '{profile.id}' tried to modify book '{book.id}' owned by '{book.owner_id}'.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the owner can modify this book.")


async def load_profile_refs(profile_ids: Iterable[ObjectId]) -> Dict[str, ProfileRef]:
    """Fetches profile summaries for a set of ids in one query."""
    ids = list({ObjectId(str(pid)) for pid in profile_ids if pid is not None})
    if not ids:
        return {}
    profiles = await Profile.find({"_id": {"$in": ids}}).to_list()
    return {str(p.id): p.summary() for p in profiles}


def _search_filter(search: Optional[str]) -> dict:
    if not search or not search.strip():
        return {}
    pattern = re.escape(search.strip())
    return {"$or": [
        {"title": {"$regex": pattern, "$options": "i"}},
        {"author": {"$regex": pattern, "$options": "i"}},
    ]}


async def list_books(view: BookView, profile: Profile, search: Optional[str] = None) -> List[Book]:
    """
    ``all``: every book, newest first.
    ``mine``: the caller's available books plus books they are currently
    borrowing (approved requests), one entry per book id, no ordering.
    """
    text_filter = _search_filter(search)

    if view == BookView.ALL:
        return await Book.find(text_filter, sort=[("created_at", DESCENDING)]).to_list()

    owned = await Book.find(
        {"owner_id": profile.id, "status": BookStatus.AVAILABLE.value, **text_filter}
    ).to_list()

    approved = await BorrowRequest.find(
        {"borrower_id": profile.id, "status": RequestStatus.APPROVED.value}
    ).to_list()
    borrowed: List[Book] = []
    borrowed_ids = list({r.book_id for r in approved})
    if borrowed_ids:
        borrowed = await Book.find({"_id": {"$in": borrowed_ids}, **text_filter}).to_list()

    books = dedupe_by_id(owned, borrowed)
    logger.debug(f"'mine' view for {profile.id}: owned={len(owned)} borrowed={len(borrowed)} merged={len(books)}")
    return books


async def create_book(book_in: Book.Create, owner: Profile) -> Book:
    book = Book(
        **book_in.model_dump(),
        owner_id=owner.id,
        status=BookStatus.AVAILABLE,
    )
    try:
        await book.insert()
    except Exception as e:
        logger.error(f"Failed to insert book for owner {owner.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save book.") from e
    logger.info(f"Book '{book.title}' ({book.id}) listed by profile {owner.id}.")
    return book


async def update_book(book: Book, book_in: Book.Update, actor: Profile) -> Book:
    ensure_owner(book, actor)
    update_data = book_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided.")

    if "status" in update_data:
        new_status = BookStatus(update_data["status"])
        if new_status != book.status:
            if book.status == BookStatus.BORROWED:
                raise HTTPException(status_code=409, detail="Book is currently lent out; its status changes when it is returned.")
            if new_status not in OWNER_SETTABLE_STATUSES:
                raise HTTPException(status_code=409, detail="A book becomes 'borrowed' only by approving a request.")
        update_data["status"] = new_status.value

    update_data["updated_at"] = utcnow()
    # A status edit only applies if the status is still the one checked above
    query = {"_id": book.id}
    if "status" in update_data:
        query["status"] = book.status.value
    try:
        result = await Book.get_motor_collection().update_one(query, {"$set": update_data})
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to update book.") from e

    updated = await Book.get(book.id)
    if not updated:
        raise HTTPException(status_code=404, detail="Book not found after update.")
    if result.matched_count == 0:
        logger.warning(f"Status edit on book {book.id} lost a race: expected '{book.status.value}', found '{updated.status.value}'.")
        raise HTTPException(status_code=409, detail="Book status changed meanwhile; reload and try again.")
    return updated


async def delete_book(book: Book, actor: Profile) -> None:
    ensure_owner(book, actor)
    active_loan = await BorrowRequest.find_one(
        {"book_id": book.id, "status": RequestStatus.APPROVED.value}
    )
    if active_loan or book.status == BookStatus.BORROWED:
        raise HTTPException(status_code=409, detail=f"Cannot delete '{book.title}' while it is lent out.")
    # An approval landing after the check above leaves the book borrowed; keep it then
    try:
        delete_result = await Book.get_motor_collection().delete_one(
            {"_id": book.id, "status": {"$ne": BookStatus.BORROWED.value}}
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to delete book.") from e
    if delete_result.deleted_count == 0:
        if await Book.get(book.id) is None:
            raise HTTPException(status_code=404, detail=f"Book with ID '{book.id}' not found")
        raise HTTPException(status_code=409, detail=f"Cannot delete '{book.title}' while it is lent out.")
    logger.info(f"Book '{book.title}' ({book.id}) deleted by owner {actor.id}.")


async def attach_image(book: Book, image_url: str, actor: Profile) -> Book:
    ensure_owner(book, actor)
    try:
        await book.update({"$set": {"image_url": image_url, "updated_at": utcnow()}})
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to attach image.") from e
    return await Book.get(book.id)
