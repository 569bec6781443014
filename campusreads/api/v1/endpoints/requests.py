# campusreads/api/v1/endpoints/requests.py
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, status
from loguru import logger

from campusreads.core import lending
from campusreads.core.rate_limiter import limiter
from campusreads.core.security import get_current_profile
from campusreads.models.borrow_request import BorrowRequest
from campusreads.models.enum import RequestView
from campusreads.models.profile import Profile

router = APIRouter(
    tags=["Borrow Requests"]
)


async def validate_request_response(borrow_request: BorrowRequest) -> BorrowRequest.Response:
    if not borrow_request:
        raise HTTPException(status_code=404, detail="Borrow request not found after update.")
    responses = await lending.build_request_responses([borrow_request])
    return responses[0]


# --- GET / ---
@router.get("/", response_model=List[BorrowRequest.Response], summary="List my borrow requests")
async def read_requests(
    view: RequestView = Query(RequestView.ALL, description="'received' as owner, 'sent' as borrower, 'all' for both"),
    current_profile: Profile = Depends(get_current_profile),
):
    try:
        borrow_requests = await lending.list_requests(view, current_profile)
        return await lending.build_request_responses(borrow_requests)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing requests for {current_profile.id} (view={view.value}): {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error retrieving borrow requests.") from e


# --- POST / --- (ask to borrow a book)
@router.post("/", response_model=BorrowRequest.Response, status_code=status.HTTP_201_CREATED, summary="Request to borrow a book")
@limiter.limit("30/hour")
async def create_request(
    request: Request,
    request_in: BorrowRequest.Create = Body(...),
    current_profile: Profile = Depends(get_current_profile),
):
    borrow_request = await lending.create_request(
        request_in.book_id,
        current_profile,
        notes=request_in.notes,
        due_date=request_in.due_date,
    )
    return await validate_request_response(borrow_request)


# --- GET /{request_id} ---
@router.get("/{request_id}", response_model=BorrowRequest.Response, summary="Get a borrow request")
async def read_request(
    request_id: str = Path(..., description="The ID of the borrow request"),
    current_profile: Profile = Depends(get_current_profile),
):
    borrow_request = await lending.get_request_or_404(request_id)
    lending.ensure_participant(borrow_request, current_profile)
    return await validate_request_response(borrow_request)


# --- PATCH /{request_id}/approve ---
@router.patch("/{request_id}/approve", response_model=BorrowRequest.Response, summary="Approve a pending request (owner only)")
@limiter.limit("60/hour")
async def approve_request(
    request: Request,
    request_id: str = Path(...),
    transition_in: Optional[BorrowRequest.Transition] = Body(None),
    current_profile: Profile = Depends(get_current_profile),
):
    book_id = transition_in.book_id if transition_in else None
    borrow_request = await lending.approve_request(request_id, current_profile, book_id=book_id)
    return await validate_request_response(borrow_request)


# --- PATCH /{request_id}/reject ---
@router.patch("/{request_id}/reject", response_model=BorrowRequest.Response, summary="Reject a pending request (owner only)")
@limiter.limit("60/hour")
async def reject_request(
    request: Request,
    request_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
):
    borrow_request = await lending.reject_request(request_id, current_profile)
    return await validate_request_response(borrow_request)


# --- POST /{request_id}/return --- (owner confirms the book came back)
@router.post("/{request_id}/return", response_model=BorrowRequest.Response, summary="Mark a borrowed book as returned (owner only)")
@limiter.limit("60/hour")
async def return_request(
    request: Request,
    request_id: str = Path(...),
    transition_in: Optional[BorrowRequest.Transition] = Body(None),
    current_profile: Profile = Depends(get_current_profile),
):
    book_id = transition_in.book_id if transition_in else None
    borrow_request = await lending.mark_returned(request_id, current_profile, book_id=book_id)
    return await validate_request_response(borrow_request)
