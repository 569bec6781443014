# campusreads/models/borrow_request.py
from typing import Optional
from datetime import datetime
from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING, DESCENDING

from campusreads.core.utils import utcnow
from .enum import RequestStatus
from .book import BookRef
from .profile import ProfileRef


class BorrowRequest(Document):
    book_id: PydanticObjectId
    borrower_id: PydanticObjectId
    # Copied from the book when the request is created
    owner_id: PydanticObjectId
    status: RequestStatus = Field(default=RequestStatus.PENDING)
    requested_at: datetime = Field(default_factory=utcnow)
    approved_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None

    class Settings:
        name = "borrow_requests"
        indexes = [
            IndexModel([("book_id", ASCENDING), ("status", ASCENDING)], name="request_book_status_index"),
            IndexModel([("borrower_id", ASCENDING)], name="request_borrower_index"),
            IndexModel([("owner_id", ASCENDING)], name="request_owner_index"),
            IndexModel([("requested_at", DESCENDING)], name="request_requested_at_index"),
        ]

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        book_id: str = Field(..., description="String ObjectId of the book to borrow")
        notes: Optional[str] = Field(None, max_length=1000)
        due_date: Optional[datetime] = Field(None, description="Expected return date (ISO format)")

    class Transition(BaseModel):
        """Optional body for approve/return; when given, book_id must match the request."""
        book_id: Optional[str] = None

    class Response(BaseModel):
        id: str
        book_id: str
        borrower_id: str
        owner_id: str
        book: Optional[BookRef] = None        # None when the book was deleted
        borrower: Optional[ProfileRef] = None
        owner: Optional[ProfileRef] = None
        status: RequestStatus
        requested_at: datetime
        approved_at: Optional[datetime] = None
        returned_at: Optional[datetime] = None
        due_date: Optional[datetime] = None
        notes: Optional[str] = None
