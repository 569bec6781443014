# campusreads/api/v1/endpoints/books.py
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, File, HTTPException, Path, Query, Request, UploadFile, status
from loguru import logger
from pydantic import ValidationError

from campusreads.core import catalog
from campusreads.core.media import store_image
from campusreads.core.rate_limiter import limiter
from campusreads.core.security import get_current_profile
from campusreads.models.book import Book
from campusreads.models.enum import BookView
from campusreads.models.profile import Profile, ProfileRef

router = APIRouter(
    tags=["Books"]
)


def validate_book_response(book_doc: Book, owner: Optional[ProfileRef] = None) -> Book.Response:
    """Converts ObjectIds to strings and validates into Book.Response."""
    if not book_doc: raise ValueError("Invalid book document")
    try:
        book_data = book_doc.model_dump(mode="json", exclude={"revision_id"})
        book_data["id"] = str(book_doc.id)
        book_data["owner_id"] = str(book_doc.owner_id)
        book_data["owner"] = owner
        return Book.Response.model_validate(book_data)
    except ValidationError as ve:
        logger.error(f"[{book_doc.id}] Book response validation failed: {ve}")
        raise HTTPException(status_code=500, detail="Error preparing book response.") from ve


async def build_book_responses(books: List[Book]) -> List[Book.Response]:
    owners = await catalog.load_profile_refs(b.owner_id for b in books)
    response_list: List[Book.Response] = []
    for book in books:
        try: response_list.append(validate_book_response(book, owners.get(str(book.owner_id))))
        except HTTPException: logger.error(f"Skipping book {book.id} in list"); continue
    return response_list


# --- GET / --- (browse or "my books")
@router.get("/", response_model=List[Book.Response], summary="List books")
@limiter.limit("120/minute")
async def read_books(
    request: Request,
    view: BookView = Query(BookView.ALL, description="'all' for every listing, 'mine' for owned-available plus currently borrowed"),
    q: Optional[str] = Query(None, max_length=100, description="Case-insensitive title/author filter"),
    current_profile: Profile = Depends(get_current_profile),
):
    try:
        books = await catalog.list_books(view, current_profile, search=q)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing books (view={view.value}): {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error retrieving books.") from e
    return await build_book_responses(books)


# --- POST / --- (list a new book)
@router.post("/", response_model=Book.Response, status_code=status.HTTP_201_CREATED, summary="List a book")
@limiter.limit("30/hour")
async def create_book(
    request: Request,
    book_in: Book.Create = Body(...),
    current_profile: Profile = Depends(get_current_profile),
):
    book = await catalog.create_book(book_in, current_profile)
    return validate_book_response(book, current_profile.summary())


# --- GET /{book_id} ---
@router.get("/{book_id}", response_model=Book.Response, summary="Get book details")
async def read_book(
    book_id: str = Path(..., description="The ID of the book"),
    current_profile: Profile = Depends(get_current_profile),
):
    book = await catalog.get_book_or_404(book_id)
    owners = await catalog.load_profile_refs([book.owner_id])
    return validate_book_response(book, owners.get(str(book.owner_id)))


# --- PUT /{book_id} ---
@router.put("/{book_id}", response_model=Book.Response, summary="Edit a book (owner only)")
@limiter.limit("60/hour")
async def update_book(
    request: Request,
    book_id: str = Path(...),
    book_in: Book.Update = Body(...),
    current_profile: Profile = Depends(get_current_profile),
):
    logger.info(f"Profile '{current_profile.id}' updating book {book_id}")
    book = await catalog.get_book_or_404(book_id)
    updated = await catalog.update_book(book, book_in, current_profile)
    return validate_book_response(updated, current_profile.summary())


# --- DELETE /{book_id} ---
@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a book (owner only)")
@limiter.limit("30/hour")
async def delete_book(
    request: Request,
    book_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
):
    logger.warning(f"Profile '{current_profile.id}' deleting book {book_id}")
    book = await catalog.get_book_or_404(book_id)
    await catalog.delete_book(book, current_profile)
    return None


# --- POST /{book_id}/image --- (upload and attach a cover image)
@router.post("/{book_id}/image", response_model=Book.Response, summary="Upload a cover image (owner only)")
@limiter.limit("20/hour")
async def upload_book_image(
    request: Request,
    book_id: str = Path(...),
    file: UploadFile = File(...),
    current_profile: Profile = Depends(get_current_profile),
):
    book = await catalog.get_book_or_404(book_id)
    catalog.ensure_owner(book, current_profile)
    url = await store_image(str(current_profile.id), file)
    updated = await catalog.attach_image(book, url, current_profile)
    return validate_book_response(updated, current_profile.summary())
