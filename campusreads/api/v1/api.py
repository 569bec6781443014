# campusreads/api/v1/api.py
from fastapi import APIRouter

from campusreads.api.v1.endpoints import auth, profiles, books, requests, media

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(auth.router, prefix="/auth")
api_router_v1.include_router(profiles.router, prefix="/profiles")
api_router_v1.include_router(books.router, prefix="/books")
api_router_v1.include_router(requests.router, prefix="/requests")
api_router_v1.include_router(media.router, prefix="/media")
