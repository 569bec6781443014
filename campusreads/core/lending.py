# campusreads/core/lending.py
"""
Borrow request workflow.

    pending  -> approved -> returned
    pending  -> rejected

Approve and return touch two collections. Each write is a conditional
(compare-and-set) update on the current status, so of two racing approvals
for the same book only one can move the book from ``available`` to
``borrowed``. When MONGODB_TRANSACTIONS is enabled both writes also share one
transaction; without it a failed second write is compensated.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Set

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo import DESCENDING, ReturnDocument

from campusreads.core.catalog import get_book_or_404, load_profile_refs
from campusreads.core.utils import utcnow, as_utc, parse_object_id, session_kwargs
from campusreads.db.database import workflow_session
from campusreads.models.book import Book
from campusreads.models.borrow_request import BorrowRequest
from campusreads.models.enum import BookStatus, RequestStatus, RequestView
from campusreads.models.profile import Profile

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[RequestStatus, Set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.APPROVED, RequestStatus.REJECTED},
    RequestStatus.APPROVED: {RequestStatus.RETURNED},
    RequestStatus.REJECTED: set(),
    RequestStatus.RETURNED: set(),
}

ACTIVE_STATUSES = [RequestStatus.PENDING.value, RequestStatus.APPROVED.value]


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(RequestStatus(current), set())


def ensure_transition(borrow_request: BorrowRequest, target: RequestStatus) -> None:
    current = RequestStatus(borrow_request.status)
    if not can_transition(current, target):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Request is '{current.value}'; cannot move to '{target.value}'.",
        )


async def get_request_or_404(request_id: str) -> BorrowRequest:
    oid = parse_object_id(request_id, "request ID")
    try:
        borrow_request = await BorrowRequest.get(oid)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving request '{request_id}'.") from e
    if not borrow_request:
        raise HTTPException(status_code=404, detail=f"Borrow request with ID '{request_id}' not found")
    return borrow_request


def ensure_request_owner(borrow_request: BorrowRequest, actor: Profile) -> None:
    if borrow_request.owner_id != actor.id:
        logger.warning(f"Forbidden: profile '{actor.id}' acted on request '{borrow_request.id}' owned by '{borrow_request.owner_id}'.")
        raise HTTPException(status_code=403, detail="Only the book owner can act on this request.")


def ensure_participant(borrow_request: BorrowRequest, actor: Profile) -> None:
    if actor.id not in (borrow_request.owner_id, borrow_request.borrower_id):
        raise HTTPException(status_code=403, detail="Forbidden to view this request.")


def _ensure_book_matches(borrow_request: BorrowRequest, book_id: Optional[str]) -> None:
    if book_id is None:
        return
    if parse_object_id(book_id, "book ID") != borrow_request.book_id:
        raise HTTPException(status_code=400, detail="book_id does not match the request's book.")


# --- create ---
async def create_request(
    book_id: str,
    borrower: Profile,
    notes: Optional[str] = None,
    due_date: Optional[datetime] = None,
) -> BorrowRequest:
    book = await get_book_or_404(book_id)

    if book.owner_id == borrower.id:
        raise HTTPException(status_code=400, detail="You cannot borrow your own book.")
    if book.status != BookStatus.AVAILABLE:
        raise HTTPException(status_code=409, detail=f"Book '{book.title}' is not available ({book.status.value}).")
    if due_date is not None:
        due_date = as_utc(due_date)
        if due_date.date() < utcnow().date():
            raise HTTPException(status_code=400, detail="Due date cannot be in the past.")

    existing = await BorrowRequest.find_one({
        "book_id": book.id, "borrower_id": borrower.id, "status": {"$in": ACTIVE_STATUSES},
    })
    if existing:
        raise HTTPException(status_code=409, detail="You already have an active request for this book.")

    borrow_request = BorrowRequest(
        book_id=book.id,
        borrower_id=borrower.id,
        owner_id=book.owner_id,
        status=RequestStatus.PENDING,
        notes=notes,
        due_date=due_date,
    )
    try:
        await borrow_request.insert()
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to submit borrow request.") from e
    logger.info(f"Profile {borrower.id} requested book '{book.title}' ({book.id}); request {borrow_request.id}.")
    return borrow_request


# --- approve ---
async def approve_request(request_id: str, actor: Profile, book_id: Optional[str] = None) -> BorrowRequest:
    borrow_request = await get_request_or_404(request_id)
    ensure_request_owner(borrow_request, actor)
    _ensure_book_matches(borrow_request, book_id)
    ensure_transition(borrow_request, RequestStatus.APPROVED)

    books = Book.get_motor_collection()
    requests = BorrowRequest.get_motor_collection()
    now = utcnow()

    async with workflow_session() as session:
        kw = session_kwargs(session)
        # 1. Claim the book: only one approval can win this compare-and-set
        claimed = await books.find_one_and_update(
            {"_id": borrow_request.book_id, "status": BookStatus.AVAILABLE.value},
            {"$set": {"status": BookStatus.BORROWED.value, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
            **kw,
        )
        if not claimed:
            raise HTTPException(status_code=409, detail="Book is not available; another request may already be approved.")

        # 2. Move the request; undo the claim if it is no longer pending
        try:
            moved = await requests.find_one_and_update(
                {"_id": borrow_request.id, "status": RequestStatus.PENDING.value},
                {"$set": {"status": RequestStatus.APPROVED.value, "approved_at": now}},
                return_document=ReturnDocument.AFTER,
                **kw,
            )
        except Exception as e:
            await _release_book(borrow_request.book_id, session)
            raise HTTPException(status_code=500, detail="Failed to approve request.") from e
        if not moved:
            await _release_book(borrow_request.book_id, session)
            raise HTTPException(status_code=409, detail="Request is no longer pending.")

    logger.info(f"Request {borrow_request.id} approved by {actor.id}; book {borrow_request.book_id} marked borrowed.")
    return await BorrowRequest.get(borrow_request.id)


async def _release_book(book_id: ObjectId, session=None) -> None:
    """Compensation for a failed approval: borrowed -> available."""
    try:
        await Book.get_motor_collection().update_one(
            {"_id": book_id, "status": BookStatus.BORROWED.value},
            {"$set": {"status": BookStatus.AVAILABLE.value, "updated_at": utcnow()}},
            **session_kwargs(session),
        )
        logger.warning(f"Released book {book_id} after a failed approval.")
    except Exception:
        logger.critical(f"Could not release book {book_id} after failed approval; manual fix needed.", exc_info=True)
        raise


# --- reject ---
async def reject_request(request_id: str, actor: Profile) -> BorrowRequest:
    borrow_request = await get_request_or_404(request_id)
    ensure_request_owner(borrow_request, actor)
    ensure_transition(borrow_request, RequestStatus.REJECTED)

    try:
        moved = await BorrowRequest.get_motor_collection().find_one_and_update(
            {"_id": borrow_request.id, "status": RequestStatus.PENDING.value},
            {"$set": {"status": RequestStatus.REJECTED.value}},
            return_document=ReturnDocument.AFTER,
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to reject request.") from e
    if not moved:
        raise HTTPException(status_code=409, detail="Request is no longer pending.")

    logger.info(f"Request {borrow_request.id} rejected by {actor.id}.")
    return await BorrowRequest.get(borrow_request.id)


# --- return ---
async def mark_returned(request_id: str, actor: Profile, book_id: Optional[str] = None) -> BorrowRequest:
    borrow_request = await get_request_or_404(request_id)
    ensure_request_owner(borrow_request, actor)
    _ensure_book_matches(borrow_request, book_id)
    ensure_transition(borrow_request, RequestStatus.RETURNED)

    books = Book.get_motor_collection()
    requests = BorrowRequest.get_motor_collection()
    now = utcnow()

    async with workflow_session() as session:
        kw = session_kwargs(session)
        moved = await requests.find_one_and_update(
            {"_id": borrow_request.id, "status": RequestStatus.APPROVED.value},
            {"$set": {"status": RequestStatus.RETURNED.value, "returned_at": now}},
            return_document=ReturnDocument.AFTER,
            **kw,
        )
        if not moved:
            raise HTTPException(status_code=409, detail="Request is no longer approved.")

        try:
            result = await books.update_one(
                {"_id": borrow_request.book_id, "status": BookStatus.BORROWED.value},
                {"$set": {"status": BookStatus.AVAILABLE.value, "updated_at": now}},
                **kw,
            )
        except Exception as e:
            # Put the request back so the book is not left borrowed with no approved request
            await requests.update_one(
                {"_id": borrow_request.id, "status": RequestStatus.RETURNED.value},
                {"$set": {"status": RequestStatus.APPROVED.value, "returned_at": None}},
                **kw,
            )
            raise HTTPException(status_code=500, detail="Failed to mark book as returned.") from e
        if result.matched_count == 0:
            logger.warning(f"Book {borrow_request.book_id} was not 'borrowed' when request {borrow_request.id} was returned.")

    logger.info(f"Request {borrow_request.id} returned; book {borrow_request.book_id} available again.")
    return await BorrowRequest.get(borrow_request.id)


# --- list ---
async def list_requests(view: RequestView, profile: Profile) -> List[BorrowRequest]:
    if view == RequestView.RECEIVED:
        query = {"owner_id": profile.id}
    elif view == RequestView.SENT:
        query = {"borrower_id": profile.id}
    else:
        query = {"$or": [{"owner_id": profile.id}, {"borrower_id": profile.id}]}
    return await BorrowRequest.find(query, sort=[("requested_at", DESCENDING)]).to_list()


async def build_request_responses(borrow_requests: List[BorrowRequest]) -> List[BorrowRequest.Response]:
    """Embeds book and profile summaries, two queries for the whole page."""
    book_ids = list({r.book_id for r in borrow_requests})
    books = await Book.find({"_id": {"$in": book_ids}}).to_list() if book_ids else []
    book_refs = {str(b.id): b.summary() for b in books}
    profile_refs = await load_profile_refs(
        [r.owner_id for r in borrow_requests] + [r.borrower_id for r in borrow_requests]
    )

    responses: List[BorrowRequest.Response] = []
    for r in borrow_requests:
        data = r.model_dump(mode="json", exclude={"id", "revision_id"})
        data["id"] = str(r.id)
        data["book"] = book_refs.get(str(r.book_id))
        data["borrower"] = profile_refs.get(str(r.borrower_id))
        data["owner"] = profile_refs.get(str(r.owner_id))
        responses.append(BorrowRequest.Response.model_validate(data))
    return responses
