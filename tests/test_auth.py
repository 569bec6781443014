# tests/test_auth.py
from datetime import datetime, timezone

import pytest
from pymongo.errors import DuplicateKeyError

from campusreads.core.security import is_allowed_email, decode_access_token, issue_token_for
from campusreads.models.profile import Profile
from conftest import sign_up, sign_in, get_profile_doc


@pytest.mark.parametrize("email,allowed", [
    ("student@iitr.ac.in", True),
    ("Student@IITR.AC.IN", True),
    ("someone@cs.iitr.ac.in", True),
    ("someone@evil-iitr.ac.in", False),
    ("someone@iitr.ac.in.evil.com", False),
    ("someone@gmail.com", False),
    ("no-at-sign", False),
])
def test_is_allowed_email(email, allowed):
    assert is_allowed_email(email, "iitr.ac.in") is allowed


async def test_signup_returns_profile_without_password(client):
    body = await sign_up(client, "Asha.K@iitr.ac.in", full_name="  Asha K  ", department="CSE")
    assert body["email"] == "asha.k@iitr.ac.in"
    assert body["full_name"] == "Asha K"
    assert body["student_id"] == "asha.k"
    assert body["department"] == "CSE"
    assert "hashed_password" not in body
    assert "password" not in body


async def test_signup_keeps_given_student_id(client):
    body = await sign_up(client, "ravi@iitr.ac.in", student_id="21114075")
    assert body["student_id"] == "21114075"


async def test_signup_rejects_other_domains(client):
    for email in ("x@gmail.com", "x@evil-iitr.ac.in"):
        response = await client.post(
            "/api/v1/auth/signup",
            json={"email": email, "password": "password123", "full_name": "X"},
        )
        assert response.status_code == 403


async def test_signup_duplicate_email(client):
    await sign_up(client, "dup@iitr.ac.in")
    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "DUP@iitr.ac.in", "password": "password123", "full_name": "Again"},
    )
    assert response.status_code == 400


async def test_signup_validation_errors(client):
    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "short@iitr.ac.in", "password": "short", "full_name": "X"},
    )
    assert response.status_code == 422
    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "blank@iitr.ac.in", "password": "password123", "full_name": "   "},
    )
    assert response.status_code == 422


async def test_sign_in_wrong_password(client):
    await sign_up(client, "asha@iitr.ac.in")
    response = await client.post("/api/v1/auth/token", data={"username": "asha@iitr.ac.in", "password": "wrong-password"})
    assert response.status_code == 401
    response = await client.post("/api/v1/auth/token", data={"username": "nobody@iitr.ac.in", "password": "password123"})
    assert response.status_code == 401


async def test_token_claims(client):
    body = await sign_up(client, "claims@iitr.ac.in")
    profile = await get_profile_doc("claims@iitr.ac.in")
    token_data = decode_access_token(issue_token_for(profile))
    assert token_data.profile_id == body["id"]
    assert token_data.version == 0


async def test_protected_paths_need_token(client, db):
    for path in ("/api/v1/books/", "/api/v1/requests/", "/api/v1/profiles/me"):
        response = await client.get(path)
        assert response.status_code == 401
    response = await client.get("/api/v1/books/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_public_paths(client):
    assert (await client.get("/")).status_code == 200
    assert (await client.get("/health")).status_code == 200


async def test_request_id_header(client):
    response = await client.get("/health")
    assert response.headers.get("X-Request-ID")


async def test_sign_out_revokes_token(client):
    await sign_up(client, "leaver@iitr.ac.in")
    headers = await sign_in(client, "leaver@iitr.ac.in")
    assert (await client.get("/api/v1/profiles/me", headers=headers)).status_code == 200

    response = await client.post("/api/v1/auth/signout", headers=headers)
    assert response.status_code == 200

    assert (await client.get("/api/v1/profiles/me", headers=headers)).status_code == 401

    profile = await get_profile_doc("leaver@iitr.ac.in")
    assert profile.token_version == 1
    fresh = await sign_in(client, "leaver@iitr.ac.in")
    assert (await client.get("/api/v1/profiles/me", headers=fresh)).status_code == 200


async def test_update_my_profile(client):
    await sign_up(client, "editor@iitr.ac.in", full_name="Old Name")
    headers = await sign_in(client, "editor@iitr.ac.in")
    profile = await get_profile_doc("editor@iitr.ac.in")
    await profile.update({"$set": {"updated_at": datetime(2020, 1, 1, tzinfo=timezone.utc)}})

    response = await client.patch("/api/v1/profiles/me", json={"full_name": "New Name", "phone": "99999"}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["full_name"] == "New Name"
    assert body["phone"] == "99999"
    assert body["email"] == "editor@iitr.ac.in"

    response = await client.patch("/api/v1/profiles/me", json={}, headers=headers)
    assert response.status_code == 400

    refreshed = await get_profile_doc("editor@iitr.ac.in")
    assert refreshed.full_name == "New Name"
    assert refreshed.updated_at.replace(tzinfo=None) > datetime(2020, 1, 1)


async def test_update_my_profile_rejects_null_and_blank_names(client):
    await sign_up(client, "careful@iitr.ac.in", full_name="Kept Name", student_id="21114001")
    headers = await sign_in(client, "careful@iitr.ac.in")

    for payload in ({"full_name": None}, {"student_id": None}, {"full_name": "   "}, {"student_id": ""}):
        response = await client.patch("/api/v1/profiles/me", json=payload, headers=headers)
        assert response.status_code == 422, payload

    # The stored profile is untouched and the account still works
    response = await client.get("/api/v1/profiles/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["full_name"] == "Kept Name"
    assert response.json()["student_id"] == "21114001"


async def test_signup_duplicate_key_race(client, monkeypatch):
    async def insert_after_other_signup(self, *args, **kwargs):
        raise DuplicateKeyError("E11000 duplicate key error collection: profiles index: profile_email_unique_index")

    monkeypatch.setattr(Profile, "insert", insert_after_other_signup)
    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "racer@iitr.ac.in", "password": "password123", "full_name": "Racer"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"
