"""Spending summary for the home screen.

Aggregates the 100 most recent receipts of a user (bounded window, no
filters, newest first) into totals, per-category spending and a six
month spending series.  Receipts outside the window do not count.
"""

from __future__ import annotations

import datetime as dt
from collections import OrderedDict
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from expensor.models.enums import SortDirection, SortField
from expensor.models.schemas import (
    CategorySpending,
    DashboardSummary,
    MonthlySpending,
    ReceiptQueryParams,
    ReceiptSort,
)
from expensor.services.receipt_query import ReceiptQueryService
from expensor.utils.helpers import last_months, month_key

ANALYTICS_WINDOW = 100
MONTHS_SHOWN = 6


class DashboardService:
    def __init__(self, queries: ReceiptQueryService | None = None):
        self.queries = queries or ReceiptQueryService()

    async def build_dashboard(
        self, db: AsyncSession, telegram_id: int, today: Optional[dt.date] = None
    ) -> DashboardSummary:
        today = today or dt.date.today()
        page = await self.queries.get_user_receipts_paginated(
            db,
            ReceiptQueryParams(
                telegram_id=telegram_id,
                page=1,
                limit=ANALYTICS_WINDOW,
                sort=ReceiptSort(field=SortField.DATE, direction=SortDirection.DESC),
            ),
        )
        options = await self.queries.get_filter_options(db, telegram_id)
        receipts = page.receipts

        per_category = OrderedDict((c.id, CategorySpending(id=c.id, name=c.name, icon=c.icon, value=0.0)) for c in options.categories)
        months = OrderedDict((key, MonthlySpending(month=key, name=name, total=0.0)) for key, name in last_months(today, MONTHS_SHOWN))

        total_spending = 0.0
        for receipt in receipts:
            total_spending += receipt.total
            if receipt.category is not None and receipt.category.id in per_category:
                per_category[receipt.category.id].value += receipt.total
            bucket = months.get(month_key(receipt.date))
            if bucket is not None:
                bucket.total += receipt.total

        categories = sorted(
            (c for c in per_category.values() if c.value > 0),
            key=lambda c: c.value,
            reverse=True,
        )
        for c in categories:
            c.value = round(c.value, 2)
        for m in months.values():
            m.total = round(m.total, 2)

        count = len(receipts)
        return DashboardSummary(
            total_spending=round(total_spending, 2),
            average_amount=round(total_spending / count, 2) if count else 0.0,
            receipt_count=count,
            categories=categories,
            months=list(months.values()),
        )


__all__ = ["DashboardService", "ANALYTICS_WINDOW"]
