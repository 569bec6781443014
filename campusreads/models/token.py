# campusreads/models/token.py
from typing import Optional
from pydantic import BaseModel

class Token(BaseModel):
    access_token: str
    token_type: str

class TokenData(BaseModel):
    profile_id: Optional[str] = None
    version: int = 0
