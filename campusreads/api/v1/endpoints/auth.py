# campusreads/api/v1/endpoints/auth.py
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger
from pymongo.errors import DuplicateKeyError

from campusreads.core.config import ALLOWED_EMAIL_DOMAIN
from campusreads.core.rate_limiter import limiter
from campusreads.core.security import (
    get_current_profile,
    get_password_hash,
    is_allowed_email,
    issue_token_for,
    verify_password,
)
from campusreads.core.utils import utcnow
from campusreads.models.profile import Profile
from campusreads.models.token import Token
from campusreads.api.v1.endpoints.profiles import validate_profile_response

router = APIRouter(
    tags=["Authentication"]
)


# --- POST /signup ---
@router.post("/signup", response_model=Profile.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/hour")
async def sign_up(request: Request, profile_in: Profile.SignUp = Body(...)):
    """Create an account. Only institutional email addresses may register."""
    email = profile_in.email.lower()
    if not is_allowed_email(email):
        logger.warning(f"Sign-up refused for non-institutional email domain: {email.rpartition('@')[2]}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Sign up is only allowed with an {ALLOWED_EMAIL_DOMAIN} email address.",
        )
    if await Profile.find_one(Profile.email == email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    profile = Profile(
        email=email,
        full_name=profile_in.full_name,
        student_id=(profile_in.student_id or email.partition("@")[0]).strip(),
        department=profile_in.department,
        phone=profile_in.phone,
        hashed_password=get_password_hash(profile_in.password),
    )
    try:
        await profile.insert()
    except DuplicateKeyError as e:
        # Lost a race with a concurrent sign-up for the same address
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered") from e
    except Exception as e:
        logger.error(f"Failed to create profile for {email}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create account.") from e

    logger.info(f"Profile {profile.id} created for {email}.")
    return validate_profile_response(profile)


# --- POST /token --- (sign-in; the OAuth2 "username" field carries the email)
@router.post("/token", response_model=Token)
@limiter.limit("20/minute")
async def sign_in(request: Request, form_data: OAuth2PasswordRequestForm = Depends()):
    profile = await Profile.find_one(Profile.email == form_data.username.strip().lower())
    if not profile or not verify_password(form_data.password, profile.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"access_token": issue_token_for(profile), "token_type": "bearer"}


# --- POST /signout ---
@router.post("/signout", status_code=status.HTTP_200_OK)
async def sign_out(current_profile: Profile = Depends(get_current_profile)):
    """Invalidates every token issued to the caller so far."""
    try:
        await current_profile.update({
            "$inc": {"token_version": 1},
            "$set": {"updated_at": utcnow()},
        })
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to sign out.") from e
    logger.info(f"Profile {current_profile.id} signed out.")
    return {"message": "Signed out"}
