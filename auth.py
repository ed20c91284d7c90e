"""
Authentication routes and dependencies
"""

import re
import logging
from typing import Optional
from fastapi import APIRouter, HTTPException, Header, Depends, Cookie
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from crud.user import UserRepository
from auth_utils import hash_password, verify_password, create_jwt, decode_jwt, session_max_age

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 12
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


class CredentialsRequest(BaseModel):
    email: str
    password: str


def _session_response(user_id: int) -> JSONResponse:
    """Build the login/signup response carrying the httpOnly session cookie"""
    response = JSONResponse(content={"ok": True, "user_id": str(user_id)})
    response.set_cookie(
        key="auth_token",
        value=create_jwt(str(user_id)),
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=session_max_age(),
    )
    return response


def _extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    # Cookie first (browser clients), then Bearer header (API consumers)
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization.replace("Bearer ", "").strip()
    return None


async def _resolve_user(token: Optional[str], db: AsyncSession) -> dict:
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    payload = decode_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid user ID in token")

    user = await UserRepository(db).get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive")

    return {
        "user_id": str(user.id),
        "email": user.email,
        "is_active": user.is_active,
    }


@auth_router.post("/signup")
async def signup(request: CredentialsRequest, db: AsyncSession = Depends(get_db)):
    """Create a new user account. Trials are not granted here."""
    if not EMAIL_PATTERN.match(request.email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    if len(request.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
        )

    user_repo = UserRepository(db)
    if await user_repo.get_user_by_email(request.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = await user_repo.create_user(request.email, hash_password(request.password))
    logger.info(f"Created user {user.id}")
    return _session_response(user.id)


@auth_router.post("/login")
async def login(request: CredentialsRequest, db: AsyncSession = Depends(get_db)):
    """Login and set the session cookie"""
    user = await UserRepository(db).get_user_by_email(request.email)
    if not user or not verify_password(request.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive")
    return _session_response(user.id)


@auth_router.post("/logout")
async def logout():
    """Logout and clear auth token cookie"""
    response = JSONResponse(content={"ok": True, "message": "Logged out successfully"})
    response.set_cookie(
        key="auth_token",
        value="",
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=0
    )
    return response


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency returning the authenticated user, or raising 401.
    """
    return await _resolve_user(_extract_token(auth_token, authorization), db)


async def get_optional_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> Optional[dict]:
    """
    Dependency returning the authenticated user, or None for anonymous callers.
    """
    try:
        return await _resolve_user(_extract_token(auth_token, authorization), db)
    except HTTPException:
        return None


@auth_router.get("/me")
async def get_current_user_info(current_user: dict = Depends(get_current_user)):
    """Get current user information from the session token"""
    return {"ok": True, **current_user}
