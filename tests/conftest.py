# tests/conftest.py
import os
import tempfile

# Settings are read at import time, so they have to be in place first
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/campusreads_test")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["ALLOWED_EMAIL_DOMAIN"] = "iitr.ac.in"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="campusreads-media-")

import pytest
from httpx import ASGITransport, AsyncClient
from beanie import PydanticObjectId
from mongomock_motor import AsyncMongoMockClient

from campusreads.db.database import init_db
from campusreads.main import app
from campusreads.models.book import Book
from campusreads.models.profile import Profile


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = await init_db(client["campusreads_test"])
    yield database


@pytest.fixture
async def client(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def sign_up(client: AsyncClient, email: str, password: str = "password123", full_name: str = "Test User", **extra):
    payload = {"email": email, "password": password, "full_name": full_name, **extra}
    response = await client.post("/api/v1/auth/signup", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def sign_in(client: AsyncClient, email: str, password: str = "password123") -> dict:
    response = await client.post("/api/v1/auth/token", data={"username": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
async def owner(client):
    profile = await sign_up(client, "owner@iitr.ac.in", full_name="Asha Owner")
    headers = await sign_in(client, "owner@iitr.ac.in")
    return {"profile": profile, "headers": headers}


@pytest.fixture
async def borrower(client):
    profile = await sign_up(client, "borrower@iitr.ac.in", full_name="Ravi Borrower")
    headers = await sign_in(client, "borrower@iitr.ac.in")
    return {"profile": profile, "headers": headers}


@pytest.fixture
async def second_borrower(client):
    profile = await sign_up(client, "third@cs.iitr.ac.in", full_name="Meera Third")
    headers = await sign_in(client, "third@cs.iitr.ac.in")
    return {"profile": profile, "headers": headers}


BOOK_PAYLOAD = {
    "title": "Introduction to Algorithms",
    "author": "Cormen",
    "address": "Rajendra Bhawan, Room 12",
    "phone": "9876543210",
}


async def create_book(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/v1/books/", json={**BOOK_PAYLOAD, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def get_profile_doc(email: str) -> Profile:
    return await Profile.find_one(Profile.email == email)


async def get_book_doc(book_id: str) -> Book:
    return await Book.get(PydanticObjectId(book_id))
