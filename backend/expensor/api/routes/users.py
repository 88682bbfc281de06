"""API routes for the current user's profile.

The user row is created on first authenticated request (see
``expensor.api.dependencies.get_current_user``), so every route here
works on an existing user.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.api.dependencies import get_current_user, get_db_session
from expensor.models.schemas import UserProfile, UserProfileUpdate
from expensor.models.tables import User
from expensor.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserProfile)
async def read_current_user(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserProfile:
    """Return the authenticated user's profile."""
    return await UserService().get_user_profile(db, user.telegram_id)


@router.patch("/me", response_model=UserProfile)
async def update_current_user(
    payload: UserProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserProfile:
    """Change language and/or preferred currency."""
    updated = await UserService().update_user_profile(
        db, user.telegram_id, language=payload.language, currency=payload.currency
    )
    return UserProfile.model_validate(updated)


@router.post("/me/login", response_model=UserProfile)
async def touch_last_login(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserProfile:
    updated = await UserService().update_last_login(db, user.telegram_id)
    return UserProfile.model_validate(updated)
