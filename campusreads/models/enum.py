# campusreads/models/enum.py
from enum import Enum

class BookStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"       # Only set by the request workflow
    UNAVAILABLE = "unavailable"

class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"

class BookView(str, Enum):
    ALL = "all"
    MINE = "mine"

class RequestView(str, Enum):
    ALL = "all"
    RECEIVED = "received"
    SENT = "sent"
