"""Receipt create, update and detail reads.

Writes resolve the company by name (get-or-create), check that a
referenced category exists and store the receipt together with its
items in one transaction.  An update replaces all items of the receipt:
the old rows are deleted and the submitted ones inserted again.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.core.errors import ExpensorError, ReceiptNotFoundError, ReceiptSaveError, StorageError
from expensor.core.observability import sentry_capture
from expensor.models.schemas import (
    CategoryRef,
    CompanyRef,
    ItemIn,
    ItemRead,
    OperationResult,
    ReceiptCreate,
    ReceiptDetail,
    ReceiptRow,
    ReceiptUpdate,
)
from expensor.models.tables import Category, Company, Item, Receipt
from expensor.services.catalog_service import CatalogService
from expensor.services.user_service import UserService

logger = logging.getLogger(__name__)


def _item_rows(receipt_id: int, items: List[ItemIn]) -> List[Item]:
    return [
        Item(
            receipt_id=receipt_id,
            name=item.name.strip(),
            quantity=item.quantity,
            unit_price=item.unit_price,
            total=item.total,
            currency=item.currency,
        )
        for item in items
        if item.is_saveable
    ]


class ReceiptService:
    def __init__(self, catalog: CatalogService | None = None, users: UserService | None = None):
        self.catalog = catalog or CatalogService()
        self.users = users or UserService()

    async def create_receipt(self, db: AsyncSession, telegram_id: int, data: ReceiptCreate) -> OperationResult:
        user = await self.users.get_user(db, telegram_id)
        try:
            company_id = await self.catalog.get_or_create_company(db, data.company_name)
            category_id = await self.catalog.ensure_category_exists(db, data.category_id)
            receipt = Receipt(
                owner_id=user.id,
                company_id=company_id,
                category_id=category_id,
                date=data.date,
                total=data.total,
                currency=user.preferred_currency or "EUR",
                paid_cash=data.paid_cash or None,
                paid_card=data.paid_card or None,
                created_at=dt.datetime.utcnow(),
            )
            db.add(receipt)
            await db.flush()
            db.add_all(_item_rows(receipt.id, data.items))
            await db.commit()
        except ExpensorError:
            await db.rollback()
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Error adding receipt for telegram_id=%s", telegram_id)
            sentry_capture(exc)
            raise ReceiptSaveError() from exc
        logger.info("Added receipt id=%s owner_id=%s", receipt.id, user.id)
        return OperationResult(success=True, message="Receipt added successfully", receipt_id=receipt.id)

    async def update_receipt(
        self, db: AsyncSession, telegram_id: int, receipt_id: int, data: ReceiptUpdate
    ) -> OperationResult:
        user = await self.users.get_user(db, telegram_id)
        try:
            receipt = await db.scalar(
                select(Receipt).where(Receipt.id == receipt_id, Receipt.owner_id == user.id).limit(1)
            )
            if receipt is None:
                raise ReceiptNotFoundError("Receipt not found or access denied")
            receipt.company_id = await self.catalog.get_or_create_company(db, data.company_name)
            receipt.category_id = await self.catalog.ensure_category_exists(db, data.category_id)
            receipt.date = data.date
            receipt.total = data.total
            receipt.currency = data.currency.value
            receipt.paid_cash = data.paid_cash or None
            receipt.paid_card = data.paid_card or None

            await db.execute(delete(Item).where(Item.receipt_id == receipt_id))
            db.add_all(_item_rows(receipt_id, data.items))
            await db.commit()
        except ExpensorError:
            await db.rollback()
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Error updating receipt id=%s", receipt_id)
            sentry_capture(exc)
            raise ReceiptSaveError("Failed to update receipt") from exc
        return OperationResult(success=True, message="Receipt updated successfully", receipt_id=receipt_id)

    async def get_receipt(self, db: AsyncSession, telegram_id: int, receipt_id: int) -> ReceiptDetail:
        user = await self.users.get_user(db, telegram_id)
        try:
            row = (
                await db.execute(
                    select(Receipt, Company, Category)
                    .outerjoin(Company, Receipt.company_id == Company.id)
                    .outerjoin(Category, Receipt.category_id == Category.id)
                    .where(Receipt.id == receipt_id, Receipt.owner_id == user.id)
                    .limit(1)
                )
            ).first()
            if row is None:
                raise ReceiptNotFoundError()
            items = await self.get_receipt_items(db, receipt_id)
        except SQLAlchemyError as exc:
            logger.exception("Error fetching receipt id=%s", receipt_id)
            sentry_capture(exc)
            raise StorageError("Failed to fetch receipt") from exc

        receipt, company, category = row
        return ReceiptDetail(
            receipt=ReceiptRow(
                id=receipt.id,
                date=receipt.date,
                total=receipt.total,
                currency=receipt.currency,
                paid_cash=receipt.paid_cash,
                paid_card=receipt.paid_card,
                created_at=receipt.created_at,
                company=CompanyRef.model_validate(company) if company is not None else None,
                category=CategoryRef.model_validate(category) if category is not None else None,
            ),
            items=items,
        )

    async def get_receipt_items(self, db: AsyncSession, receipt_id: int) -> List[ItemRead]:
        try:
            result = await db.execute(select(Item).where(Item.receipt_id == receipt_id).order_by(Item.id.asc()))
        except SQLAlchemyError as exc:
            logger.exception("Error fetching items of receipt id=%s", receipt_id)
            sentry_capture(exc)
            raise StorageError("Failed to fetch receipt items") from exc
        return [ItemRead.model_validate(item) for item in result.scalars().all()]


__all__ = ["ReceiptService"]
