"""API routes for receipt categories."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.api.dependencies import get_current_user, get_db_session
from expensor.models.schemas import CategoryCreate, CategoryRef
from expensor.models.tables import User
from expensor.services.cache import invalidate_filter_options
from expensor.services.catalog_service import CatalogService

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=List[CategoryRef])
async def list_categories(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[CategoryRef]:
    return await CatalogService().list_categories(db)


@router.post("", response_model=CategoryRef, status_code=status.HTTP_201_CREATED)
async def add_category(
    payload: CategoryCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CategoryRef:
    """Add a category (name 2-50 characters, one emoji icon)."""
    category = await CatalogService().add_category(db, payload)
    await invalidate_filter_options(user.telegram_id)
    return category
