# tests/test_lending.py
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from beanie import PydanticObjectId
from fastapi import HTTPException
from pydantic import ValidationError

from campusreads.core import lending
from campusreads.models.book import Book
from campusreads.models.borrow_request import BorrowRequest
from campusreads.models.enum import BookStatus, RequestStatus
from conftest import create_book, get_book_doc, get_profile_doc


@pytest.mark.parametrize("current,target,allowed", [
    (RequestStatus.PENDING, RequestStatus.APPROVED, True),
    (RequestStatus.PENDING, RequestStatus.REJECTED, True),
    (RequestStatus.APPROVED, RequestStatus.RETURNED, True),
    (RequestStatus.PENDING, RequestStatus.RETURNED, False),
    (RequestStatus.APPROVED, RequestStatus.REJECTED, False),
    (RequestStatus.REJECTED, RequestStatus.APPROVED, False),
    (RequestStatus.RETURNED, RequestStatus.APPROVED, False),
    (RequestStatus.RETURNED, RequestStatus.PENDING, False),
])
def test_can_transition(current, target, allowed):
    assert lending.can_transition(current, target) is allowed


async def test_request_status_is_closed_set(db):
    with pytest.raises(ValidationError):
        BorrowRequest(
            book_id=PydanticObjectId(),
            borrower_id=PydanticObjectId(),
            owner_id=PydanticObjectId(),
            status="lost",
        )


async def _request(client, borrower, book_id, **extra):
    return await client.post("/api/v1/requests/", json={"book_id": book_id, **extra}, headers=borrower["headers"])


async def test_full_lending_cycle(client, owner, borrower):
    book = await create_book(client, owner["headers"])

    response = await _request(client, borrower, book["id"], notes="Need it for the midsem")
    assert response.status_code == 201
    req = response.json()
    assert req["status"] == "pending"
    assert req["owner_id"] == owner["profile"]["id"]
    assert req["borrower"]["full_name"] == "Ravi Borrower"
    assert req["book"]["title"] == book["title"]

    response = await client.patch(f"/api/v1/requests/{req['id']}/approve", headers=owner["headers"])
    assert response.status_code == 200
    approved = response.json()
    assert approved["status"] == "approved"
    assert approved["approved_at"] is not None
    assert (await get_book_doc(book["id"])).status == BookStatus.BORROWED

    response = await client.post(f"/api/v1/requests/{req['id']}/return", headers=owner["headers"])
    assert response.status_code == 200
    returned = response.json()
    assert returned["status"] == "returned"
    assert returned["returned_at"] is not None
    assert (await get_book_doc(book["id"])).status == BookStatus.AVAILABLE

    # The book can be lent again
    response = await _request(client, borrower, book["id"])
    assert response.status_code == 201


async def test_reject(client, owner, borrower):
    book = await create_book(client, owner["headers"])
    req = (await _request(client, borrower, book["id"])).json()

    response = await client.patch(f"/api/v1/requests/{req['id']}/reject", headers=owner["headers"])
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert (await get_book_doc(book["id"])).status == BookStatus.AVAILABLE


async def test_terminal_states_refuse_transitions(client, owner, borrower):
    book = await create_book(client, owner["headers"])
    rejected = (await _request(client, borrower, book["id"])).json()
    await client.patch(f"/api/v1/requests/{rejected['id']}/reject", headers=owner["headers"])

    for action, method in (("approve", "patch"), ("reject", "patch"), ("return", "post")):
        response = await getattr(client, method)(f"/api/v1/requests/{rejected['id']}/{action}", headers=owner["headers"])
        assert response.status_code == 409, action

    returned = (await _request(client, borrower, book["id"])).json()
    await client.patch(f"/api/v1/requests/{returned['id']}/approve", headers=owner["headers"])
    await client.post(f"/api/v1/requests/{returned['id']}/return", headers=owner["headers"])
    for action, method in (("approve", "patch"), ("reject", "patch"), ("return", "post")):
        response = await getattr(client, method)(f"/api/v1/requests/{returned['id']}/{action}", headers=owner["headers"])
        assert response.status_code == 409, action


async def test_return_requires_approval(client, owner, borrower):
    book = await create_book(client, owner["headers"])
    req = (await _request(client, borrower, book["id"])).json()
    response = await client.post(f"/api/v1/requests/{req['id']}/return", headers=owner["headers"])
    assert response.status_code == 409


async def test_only_owner_acts_on_request(client, owner, borrower):
    book = await create_book(client, owner["headers"])
    req = (await _request(client, borrower, book["id"])).json()
    response = await client.patch(f"/api/v1/requests/{req['id']}/approve", headers=borrower["headers"])
    assert response.status_code == 403
    response = await client.patch(f"/api/v1/requests/{req['id']}/reject", headers=borrower["headers"])
    assert response.status_code == 403

    await client.patch(f"/api/v1/requests/{req['id']}/approve", headers=owner["headers"])
    response = await client.post(f"/api/v1/requests/{req['id']}/return", headers=borrower["headers"])
    assert response.status_code == 403


async def test_transition_body_must_match_book(client, owner, borrower):
    book = await create_book(client, owner["headers"])
    other = await create_book(client, owner["headers"], title="Other")
    req = (await _request(client, borrower, book["id"])).json()

    response = await client.patch(
        f"/api/v1/requests/{req['id']}/approve", json={"book_id": other["id"]}, headers=owner["headers"],
    )
    assert response.status_code == 400
    response = await client.patch(
        f"/api/v1/requests/{req['id']}/approve", json={"book_id": book["id"]}, headers=owner["headers"],
    )
    assert response.status_code == 200


async def test_create_request_checks(client, owner, borrower):
    book = await create_book(client, owner["headers"])

    assert (await _request(client, owner, book["id"])).status_code == 400
    assert (await _request(client, borrower, str(PydanticObjectId()))).status_code == 404
    assert (await _request(client, borrower, "bad-id")).status_code == 400

    yesterday = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
    assert (await _request(client, borrower, book["id"], due_date=yesterday)).status_code == 400

    assert (await _request(client, borrower, book["id"])).status_code == 201
    assert (await _request(client, borrower, book["id"])).status_code == 409

    shelved = await create_book(client, owner["headers"], title="Shelved")
    await client.put(f"/api/v1/books/{shelved['id']}", json={"status": "unavailable"}, headers=owner["headers"])
    assert (await _request(client, borrower, shelved["id"])).status_code == 409


async def test_second_approval_conflicts(client, owner, borrower, second_borrower):
    book = await create_book(client, owner["headers"])
    first = (await _request(client, borrower, book["id"])).json()
    second = (await _request(client, second_borrower, book["id"])).json()

    assert (await client.patch(f"/api/v1/requests/{first['id']}/approve", headers=owner["headers"])).status_code == 200
    assert (await client.patch(f"/api/v1/requests/{second['id']}/approve", headers=owner["headers"])).status_code == 409

    # The losing request stays pending
    response = await client.get(f"/api/v1/requests/{second['id']}", headers=owner["headers"])
    assert response.json()["status"] == "pending"


async def test_concurrent_approvals_lend_book_once(client, owner, borrower, second_borrower):
    book = await create_book(client, owner["headers"])
    first = (await _request(client, borrower, book["id"])).json()
    second = (await _request(client, second_borrower, book["id"])).json()
    owner_doc = await get_profile_doc("owner@iitr.ac.in")

    results = await asyncio.gather(
        lending.approve_request(first["id"], owner_doc),
        lending.approve_request(second["id"], owner_doc),
        return_exceptions=True,
    )
    approved = [r for r in results if isinstance(r, BorrowRequest)]
    conflicts = [r for r in results if isinstance(r, HTTPException)]
    assert len(approved) == 1
    assert len(conflicts) == 1 and conflicts[0].status_code == 409

    assert (await get_book_doc(book["id"])).status == BookStatus.BORROWED
    active = await BorrowRequest.find(
        {"book_id": PydanticObjectId(book["id"]), "status": RequestStatus.APPROVED.value}
    ).to_list()
    assert len(active) == 1


async def test_request_views(client, owner, borrower):
    owners_book = await create_book(client, owner["headers"])
    borrowers_book = await create_book(client, borrower["headers"], title="Borrower's book")
    sent = (await _request(client, borrower, owners_book["id"])).json()
    received = (await _request(client, owner, borrowers_book["id"])).json()

    async def ids(view):
        response = await client.get("/api/v1/requests/", params={"view": view}, headers=borrower["headers"])
        assert response.status_code == 200
        return {r["id"] for r in response.json()}

    assert await ids("sent") == {sent["id"]}
    assert await ids("received") == {received["id"]}
    assert await ids("all") == {sent["id"], received["id"]}


async def test_request_visible_to_participants_only(client, owner, borrower, second_borrower):
    book = await create_book(client, owner["headers"])
    req = (await _request(client, borrower, book["id"])).json()
    url = f"/api/v1/requests/{req['id']}"
    assert (await client.get(url, headers=owner["headers"])).status_code == 200
    assert (await client.get(url, headers=borrower["headers"])).status_code == 200
    assert (await client.get(url, headers=second_borrower["headers"])).status_code == 403


async def test_request_survives_book_deletion(client, owner, borrower):
    book = await create_book(client, owner["headers"])
    req = (await _request(client, borrower, book["id"])).json()
    await client.patch(f"/api/v1/requests/{req['id']}/reject", headers=owner["headers"])
    assert (await client.delete(f"/api/v1/books/{book['id']}", headers=owner["headers"])).status_code == 204

    response = await client.get(f"/api/v1/requests/{req['id']}", headers=borrower["headers"])
    assert response.status_code == 200
    assert response.json()["book"] is None


async def test_failed_approval_releases_book(client, owner, borrower, monkeypatch):
    book = await create_book(client, owner["headers"])
    req = (await _request(client, borrower, book["id"])).json()
    owner_doc = await get_profile_doc("owner@iitr.ac.in")

    # The request stops being pending between the status check and the write
    stale = await lending.get_request_or_404(req["id"])
    await BorrowRequest.get_motor_collection().update_one(
        {"_id": stale.id}, {"$set": {"status": RequestStatus.REJECTED.value}}
    )

    async def stale_get(request_id):
        return stale

    monkeypatch.setattr(lending, "get_request_or_404", stale_get)
    with pytest.raises(HTTPException) as exc_info:
        await lending.approve_request(req["id"], owner_doc)

    assert exc_info.value.status_code == 409
    assert (await Book.get(PydanticObjectId(book["id"]))).status == BookStatus.AVAILABLE
