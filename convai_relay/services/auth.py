"""
Authentication service - JWT tokens and password hashing for admins.

- Password hashing with bcrypt
- HS256 JWT access tokens via python-jose
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel

from convai_relay.config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 1 day


class TokenData(BaseModel):
    """Token payload data"""
    admin_id: int
    email: str
    exp: datetime


def get_password_hash(password: str) -> str:
    """Hash password using bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())
    except ValueError as e:
        logger.warning(f"Password verification failed: {e}")
        return False


def create_access_token(
    admin_id: int,
    email: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create JWT access token.

    Args:
        admin_id: Admin ID, stored as ``sub``
        email: Admin email
        expires_delta: Custom lifetime (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": str(admin_id),
        "email": email,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, get_settings().SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[TokenData]:
    """
    Decode and validate JWT access token.

    Returns:
        TokenData if valid, None if invalid or expired
    """
    try:
        payload = jwt.decode(token, get_settings().SECRET_KEY, algorithms=[ALGORITHM])

        admin_id = int(payload.get("sub"))
        email = payload.get("email")
        exp_raw = payload.get("exp")
        if exp_raw is None or not admin_id or not email:
            return None

        return TokenData(
            admin_id=admin_id,
            email=email,
            exp=datetime.fromtimestamp(float(exp_raw), tz=timezone.utc),
        )
    except JWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None
    except (ValueError, TypeError) as e:
        logger.debug(f"Token payload error: {e}")
        return None
