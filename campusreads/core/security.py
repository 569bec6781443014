# campusreads/core/security.py
from datetime import timedelta
from typing import Optional
import logging

from bson import ObjectId
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from campusreads.core.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, ALLOWED_EMAIL_DOMAIN
from campusreads.core.utils import utcnow
from campusreads.models.token import TokenData
from campusreads.models.profile import Profile

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def is_allowed_email(email: str, allowed_domain: str = ALLOWED_EMAIL_DOMAIN) -> bool:
    """
    True when the email's domain is the institutional domain or one of its
    subdomains (``student@cs.iitr.ac.in``). Suffix look-alikes such as
    ``evil-iitr.ac.in`` are refused.
    """
    if not allowed_domain:
        return True
    _, sep, domain = email.strip().lower().rpartition("@")
    if not sep or not domain:
        return False
    allowed_domain = allowed_domain.lower().lstrip(".")
    return domain == allowed_domain or domain.endswith("." + allowed_domain)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenData:
    """Raises JWTError when the token is malformed, expired or missing ``sub``."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    profile_id: Optional[str] = payload.get("sub")
    if profile_id is None:
        raise JWTError("Profile id ('sub') missing in token payload.")
    return TokenData(profile_id=profile_id, version=int(payload.get("ver", 0)))


def issue_token_for(profile: Profile) -> str:
    return create_access_token({"sub": str(profile.id), "ver": profile.token_version})


async def get_current_profile(
    request: Request,
    token: str = Depends(oauth2_scheme)
) -> Profile:
    """
    Resolves the caller's Profile from the bearer token. AuthMiddleware has
    usually decoded it already and left the claims on ``request.state``.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data: Optional[TokenData] = getattr(request.state, "token_data", None)
    if token_data is None:
        try:
            token_data = decode_access_token(token)
        except JWTError:
            logger.warning("Token decode failed in get_current_profile dependency.")
            raise credentials_exception

    if not token_data.profile_id or not ObjectId.is_valid(token_data.profile_id):
        raise credentials_exception

    profile = await Profile.get(ObjectId(token_data.profile_id))
    if profile is None:
        logger.warning(f"Profile '{token_data.profile_id}' from token not found in database.")
        raise credentials_exception
    if profile.token_version != token_data.version:
        logger.info(f"Refusing revoked token for profile '{token_data.profile_id}'.")
        raise credentials_exception
    return profile
