"""Receipt list query: filtering, sorting and offset pagination.

The list view and the dashboard both read receipts through
``ReceiptQueryService``.  A query is resolved in a fixed order:

1. the Telegram id is mapped to the internal user id.  An unknown user is
   not an error, it simply has no receipts;
2. one predicate per supplied filter is accumulated by
   ``ReceiptFilterBuilder`` and the predicates are ANDed;
3. ``total_count`` is computed over the same
   ``receipts LEFT JOIN companies LEFT JOIN categories`` relation and
   predicate as the page query;
4. the page is ordered by the requested key, then newest ``created_at``
   first, then highest id, and cut with ``OFFSET``/``LIMIT``.

Pagination is offset based.  Rows inserted or deleted between two page
requests shift later pages; callers accept that.

The service performs no writes.  Any ``SQLAlchemyError`` is logged and
re-raised as a storage fault with a generic message.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.core.errors import FilterOptionsFetchError, ReceiptsFetchError
from expensor.core.observability import sentry_breadcrumb, sentry_capture
from expensor.models.enums import PaymentMethod, SortDirection, SortField
from expensor.models.schemas import (
    CategoryRef,
    CompanyRef,
    FilterOptions,
    PaginatedReceipts,
    ReceiptFilters,
    ReceiptQueryParams,
    ReceiptRow,
    ReceiptSort,
)
from expensor.models.tables import Category, Company, Receipt, User

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    SortField.DATE: Receipt.date,
    SortField.TOTAL: Receipt.total,
    SortField.COMPANY: Company.name,
    SortField.CATEGORY: Category.name,
}


class ReceiptFilterBuilder:
    """Accumulates independent receipt predicates for one owner.

    The owner constraint is always the first condition.  ``where_clause``
    conjoins everything collected so far.
    """

    def __init__(self, owner_id: int):
        self._conditions: list[Any] = [Receipt.owner_id == owner_id]

    def add(self, condition: Any) -> "ReceiptFilterBuilder":
        self._conditions.append(condition)
        return self

    def apply(self, filters: ReceiptFilters) -> "ReceiptFilterBuilder":
        if filters.category_id is not None:
            self.add(Receipt.category_id == filters.category_id)
        if filters.company_id is not None:
            self.add(Receipt.company_id == filters.company_id)
        # ISO dates order lexicographically, so the range works on text storage too
        if filters.date_from is not None:
            self.add(Receipt.date >= filters.date_from)
        if filters.date_to is not None:
            self.add(Receipt.date <= filters.date_to)
        if filters.min_amount is not None:
            self.add(Receipt.total >= filters.min_amount)
        if filters.max_amount is not None:
            self.add(Receipt.total <= filters.max_amount)

        if filters.payment_method == PaymentMethod.CASH:
            self.add(
                and_(
                    Receipt.paid_cash == Receipt.total,
                    or_(Receipt.paid_card == 0, Receipt.paid_card.is_(None)),
                )
            )
        elif filters.payment_method == PaymentMethod.CARD:
            self.add(
                and_(
                    Receipt.paid_card == Receipt.total,
                    or_(Receipt.paid_cash == 0, Receipt.paid_cash.is_(None)),
                )
            )
        elif filters.payment_method == PaymentMethod.BOTH:
            # TODO: decide whether "both" should mean paid_cash > 0 AND paid_card > 0
            logger.info("payment_method=both has no predicate; receipts are not narrowed by payment split")

        if filters.search:
            self.add(
                or_(
                    Company.name.contains(filters.search, autoescape=True),
                    Category.name.contains(filters.search, autoescape=True),
                )
            )
        return self

    @property
    def conditions(self) -> tuple:
        return tuple(self._conditions)

    def where_clause(self):
        return and_(*self._conditions)


def build_order_by(sort: ReceiptSort) -> tuple:
    """Primary key from ``sort``, then ``created_at`` desc and ``id`` desc.

    Receipts without a company or category sort last in either direction.
    """
    column = _SORT_COLUMNS.get(sort.field, Receipt.date)
    primary = column.asc() if sort.direction == SortDirection.ASC else column.desc()
    primary = primary.nulls_last()
    return (primary, Receipt.created_at.desc(), Receipt.id.desc())


def _with_joins(stmt: Select) -> Select:
    return (
        stmt.select_from(Receipt)
        .outerjoin(Company, Receipt.company_id == Company.id)
        .outerjoin(Category, Receipt.category_id == Category.id)
    )


def _to_row(receipt: Receipt, company: Optional[Company], category: Optional[Category]) -> ReceiptRow:
    return ReceiptRow(
        id=receipt.id,
        date=receipt.date,
        total=receipt.total,
        currency=receipt.currency,
        paid_cash=receipt.paid_cash,
        paid_card=receipt.paid_card,
        created_at=receipt.created_at,
        company=CompanyRef(id=company.id, name=company.name) if company is not None else None,
        category=(
            CategoryRef(id=category.id, name=category.name, icon=category.icon)
            if category is not None
            else None
        ),
    )


async def resolve_owner_id(db: AsyncSession, telegram_id: int) -> Optional[int]:
    """Map a Telegram id to the internal user id, ``None`` when unknown."""
    return await db.scalar(select(User.id).where(User.telegram_id == telegram_id).limit(1))


class ReceiptQueryService:
    """Read path for receipt lists and the per-user filter facets."""

    async def get_user_receipts_paginated(self, db: AsyncSession, params: ReceiptQueryParams) -> PaginatedReceipts:
        try:
            owner_id = await resolve_owner_id(db, params.telegram_id)
            if owner_id is None:
                logger.debug("No user for telegram_id=%s; returning empty page", params.telegram_id)
                return PaginatedReceipts.empty()

            where = ReceiptFilterBuilder(owner_id).apply(params.filters).where_clause()

            count_stmt = _with_joins(select(func.count(Receipt.id))).where(where)
            total_count = int(await db.scalar(count_stmt) or 0)

            page_stmt = (
                _with_joins(select(Receipt, Company, Category))
                .where(where)
                .order_by(*build_order_by(params.sort))
                .offset(params.offset)
                .limit(params.limit)
            )
            rows = (await db.execute(page_stmt)).all()
        except SQLAlchemyError as exc:
            logger.exception("Error fetching receipts for telegram_id=%s", params.telegram_id)
            sentry_capture(exc)
            raise ReceiptsFetchError() from exc

        receipts = [_to_row(receipt, company, category) for receipt, company, category in rows]
        has_more = params.offset + len(receipts) < total_count
        sentry_breadcrumb(
            category="receipts",
            message="receipts.page",
            data={"page": params.page, "limit": params.limit, "returned": len(receipts), "total": total_count},
        )
        return PaginatedReceipts(
            receipts=receipts,
            has_more=has_more,
            total_count=total_count,
            next_page=params.page + 1 if has_more else None,
        )

    async def get_filter_options(self, db: AsyncSession, telegram_id: int) -> FilterOptions:
        """Distinct categories and companies used by this user's receipts, by name."""
        try:
            owner_id = await resolve_owner_id(db, telegram_id)
            if owner_id is None:
                return FilterOptions()

            category_rows = (
                await db.execute(
                    select(Category.id, Category.name, Category.icon)
                    .distinct()
                    .join(Receipt, Receipt.category_id == Category.id)
                    .where(Receipt.owner_id == owner_id)
                    .order_by(Category.name.asc())
                )
            ).all()
            company_rows = (
                await db.execute(
                    select(Company.id, Company.name)
                    .distinct()
                    .join(Receipt, Receipt.company_id == Company.id)
                    .where(Receipt.owner_id == owner_id)
                    .order_by(Company.name.asc())
                )
            ).all()
        except SQLAlchemyError as exc:
            logger.exception("Error fetching filter options for telegram_id=%s", telegram_id)
            sentry_capture(exc)
            raise FilterOptionsFetchError() from exc

        return FilterOptions(
            categories=[CategoryRef(id=r.id, name=r.name, icon=r.icon) for r in category_rows],
            companies=[CompanyRef(id=r.id, name=r.name) for r in company_rows],
        )


__all__ = ["ReceiptQueryService", "ReceiptFilterBuilder", "build_order_by", "resolve_owner_id"]
