"""
Authentication dependencies for FastAPI.

- get_current_admin: requires a valid admin JWT
- require_analytics_access: admin JWT only when ANALYTICS_REQUIRE_AUTH is on
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convai_relay.config import get_settings
from convai_relay.database import get_db
from convai_relay.models.admin import Admin
from convai_relay.services.auth import decode_access_token

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Admin:
    """
    Current authenticated admin from the bearer token.

    Raises:
        HTTPException 401: token missing, invalid or expired
        HTTPException 403: admin no longer exists
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_access_token(credentials.credentials)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(Admin).where(Admin.id == token_data.admin_id))
    admin = result.scalar_one_or_none()
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin not found",
        )
    return admin


async def require_analytics_access(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[Admin]:
    """Analytics routes are public unless ANALYTICS_REQUIRE_AUTH is set."""
    if not get_settings().ANALYTICS_REQUIRE_AUTH:
        return None
    return await get_current_admin(credentials, db)
