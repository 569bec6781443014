# campusreads/models/profile.py
from typing import Optional
from datetime import datetime
from beanie import Document
from pydantic import BaseModel, Field, EmailStr, field_validator
from pymongo import IndexModel, ASCENDING

from campusreads.core.utils import utcnow


class ProfileRef(BaseModel):
    """Short public summary of a profile, embedded in book and request responses."""
    id: str
    full_name: str
    student_id: str


class Profile(Document):
    email: EmailStr
    full_name: str
    student_id: str
    department: Optional[str] = None
    phone: Optional[str] = None
    hashed_password: str
    # Bumped on sign-out; tokens carrying an older value are refused
    token_version: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "profiles"
        indexes = [
            IndexModel([("email", ASCENDING)], name="profile_email_unique_index", unique=True),
            IndexModel([("student_id", ASCENDING)], name="profile_student_id_index"),
        ]

    # --- Pydantic Schemas ---
    class SignUp(BaseModel):
        email: EmailStr
        password: str = Field(..., min_length=8, max_length=72)
        full_name: str = Field(..., min_length=1, max_length=120)
        phone: Optional[str] = Field(None, max_length=20)
        student_id: Optional[str] = Field(None, max_length=40)
        department: Optional[str] = Field(None, max_length=120)

        @field_validator("full_name")
        @classmethod
        def full_name_not_blank(cls, v: str) -> str:
            if not v.strip():
                raise ValueError("full_name must not be blank")
            return v.strip()

    class Update(BaseModel):
        full_name: Optional[str] = Field(None, min_length=1, max_length=120)
        student_id: Optional[str] = Field(None, min_length=1, max_length=40)
        department: Optional[str] = Field(None, max_length=120)
        phone: Optional[str] = Field(None, max_length=20)

        @field_validator("full_name", "student_id")
        @classmethod
        def not_blank_when_given(cls, v: Optional[str]) -> str:
            if v is None or not v.strip():
                raise ValueError("must not be null or blank")
            return v.strip()

    class Response(BaseModel):
        id: str
        email: EmailStr
        full_name: str
        student_id: str
        department: Optional[str] = None
        phone: Optional[str] = None
        created_at: datetime
        updated_at: datetime

    def summary(self) -> ProfileRef:
        return ProfileRef(id=str(self.id), full_name=self.full_name, student_id=self.student_id)
