"""Admin auth API endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convai_relay.database import get_db
from convai_relay.middleware.auth import get_current_admin
from convai_relay.models.admin import Admin
from convai_relay.schemas.auth import AdminInfo, AuthResponse, LoginRequest, RegisterRequest
from convai_relay.services.auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    get_password_hash,
    verify_password,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(admin: Admin) -> AuthResponse:
    return AuthResponse(
        access_token=create_access_token(admin.id, admin.email),
        token_type="bearer",
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        admin=AdminInfo.model_validate(admin),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new admin account.

    - Email must be unique
    - Password must be at least 8 characters
    """
    existing = await db.execute(select(Admin).where(Admin.email == payload.email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    admin = Admin(
        email=payload.email,
        password_hash=get_password_hash(payload.password),
    )
    db.add(admin)
    await db.commit()
    await db.refresh(admin)

    logger.info(f"New admin registered: {admin.email} (id={admin.id})")
    return _auth_response(admin)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Admin).where(Admin.email == payload.email))
    admin = result.scalar_one_or_none()

    if not admin or not verify_password(payload.password, admin.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"Admin logged in: {admin.email}")
    return _auth_response(admin)


@router.get("/me", response_model=AdminInfo)
async def me(admin: Admin = Depends(get_current_admin)):
    return admin
