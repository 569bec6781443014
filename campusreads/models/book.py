# campusreads/models/book.py
from typing import Optional
from datetime import datetime
from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field, field_validator
from pymongo import IndexModel, ASCENDING, DESCENDING

from campusreads.core.utils import utcnow
from .enum import BookStatus
from .profile import ProfileRef


def _strip_required(v: str) -> str:
    if v is None or not v.strip():
        raise ValueError("must not be blank")
    return v.strip()


class BookRef(BaseModel):
    """Short book summary embedded in request responses."""
    id: str
    title: str
    author: str
    image_url: Optional[str] = None


class Book(Document):
    owner_id: PydanticObjectId
    title: str = Field(..., max_length=200)
    author: str = Field(..., max_length=200)
    isbn: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    image_url: Optional[str] = None
    status: BookStatus = Field(default=BookStatus.AVAILABLE)
    # Pickup location (hostel / bhawan) and contact number
    address: str = Field(..., max_length=200)
    phone: str = Field(..., max_length=20)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "books"
        indexes = [
            IndexModel([("owner_id", ASCENDING)], name="book_owner_index"),
            IndexModel([("status", ASCENDING)], name="book_status_index"),
            IndexModel([("created_at", DESCENDING)], name="book_created_at_index"),
        ]

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        """Owner and status are not accepted here; they are set by the server."""
        title: str = Field(..., max_length=200)
        author: str = Field(..., max_length=200)
        address: str = Field(..., max_length=200)
        phone: str = Field(..., max_length=20)
        isbn: Optional[str] = Field(None, max_length=20)
        description: Optional[str] = None
        image_url: Optional[str] = Field(None, max_length=500)

        @field_validator("title", "author", "address", "phone")
        @classmethod
        def required_not_blank(cls, v: str) -> str:
            return _strip_required(v)

    class Update(BaseModel):
        title: Optional[str] = Field(None, max_length=200)
        author: Optional[str] = Field(None, max_length=200)
        address: Optional[str] = Field(None, max_length=200)
        phone: Optional[str] = Field(None, max_length=20)
        isbn: Optional[str] = Field(None, max_length=20)
        description: Optional[str] = None
        image_url: Optional[str] = Field(None, max_length=500)
        status: Optional[BookStatus] = None

        @field_validator("title", "author", "address", "phone")
        @classmethod
        def not_blank_when_given(cls, v: Optional[str]) -> Optional[str]:
            if v is None:
                raise ValueError("must not be null")
            return _strip_required(v)

        @field_validator("status")
        @classmethod
        def status_not_null(cls, v: Optional[BookStatus]) -> BookStatus:
            if v is None:
                raise ValueError("must not be null")
            return v

    class Response(BaseModel):
        id: str
        owner_id: str
        owner: Optional[ProfileRef] = None
        title: str
        author: str
        isbn: Optional[str] = None
        description: Optional[str] = None
        image_url: Optional[str] = None
        status: BookStatus
        address: str
        phone: str
        created_at: datetime
        updated_at: datetime

    def summary(self) -> BookRef:
        return BookRef(id=str(self.id), title=self.title, author=self.author, image_url=self.image_url)
