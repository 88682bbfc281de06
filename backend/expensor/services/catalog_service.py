"""Companies and categories shared by all users."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.core.errors import CategoryExistsError, InvalidCategoryError
from expensor.models.schemas import CategoryCreate, CategoryRef
from expensor.models.tables import Category, Company

logger = logging.getLogger(__name__)


class CatalogService:
    async def get_or_create_company(self, db: AsyncSession, name: str) -> Optional[int]:
        """Return the id of the company called ``name``, inserting it if new.

        Plain lookup-then-insert, flushed but not committed.  Two requests
        creating the same new name at once can both miss the lookup; the
        unique constraint then rejects the second insert.
        """
        name = (name or "").strip()
        if not name:
            return None
        company_id = await db.scalar(select(Company.id).where(Company.name == name).limit(1))
        if company_id is not None:
            return company_id
        company = Company(name=name)
        db.add(company)
        await db.flush()
        logger.info("Created company id=%s name=%r", company.id, name)
        return company.id

    async def ensure_category_exists(self, db: AsyncSession, category_id: Optional[int]) -> Optional[int]:
        if not category_id:
            return None
        found = await db.scalar(select(Category.id).where(Category.id == category_id).limit(1))
        if found is None:
            raise InvalidCategoryError()
        return found

    async def list_categories(self, db: AsyncSession) -> List[CategoryRef]:
        result = await db.execute(select(Category).order_by(Category.name.asc()))
        return [CategoryRef.model_validate(c) for c in result.scalars().all()]

    async def add_category(self, db: AsyncSession, data: CategoryCreate) -> CategoryRef:
        existing = await db.scalar(select(Category.id).where(Category.name == data.name).limit(1))
        if existing is not None:
            raise CategoryExistsError()
        category = Category(name=data.name, icon=data.icon)
        db.add(category)
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise CategoryExistsError() from exc
        await db.refresh(category)
        logger.info("Created category id=%s name=%r", category.id, category.name)
        return CategoryRef.model_validate(category)


__all__ = ["CatalogService"]
