"""
Authentication utilities: Password hashing and JWT token management
"""

import jwt
from datetime import datetime, timedelta
from passlib.context import CryptContext
from typing import Optional
from config.settings import settings

# Password hashing context
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# JWT configuration
ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(password, password_hash)


def _encode(user_id: str, expires_at: datetime) -> str:
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")
    payload = {"sub": user_id, "exp": expires_at}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def create_jwt(user_id: str) -> str:
    """Create a session token for a user, valid for JWT_EXPIRE_DAYS"""
    return _encode(user_id, datetime.utcnow() + timedelta(days=settings.jwt_expire_days))


def create_expired_jwt(user_id: str, expired_seconds_ago: int = 1) -> str:
    """Create an already-expired token. Used by tests."""
    return _encode(user_id, datetime.utcnow() - timedelta(seconds=expired_seconds_ago))


def decode_jwt(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns None if invalid or expired."""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def session_max_age() -> int:
    """Cookie max-age in seconds matching the token lifetime"""
    return settings.jwt_expire_days * 24 * 60 * 60
