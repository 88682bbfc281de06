"""API routes for the receipt list, facets and receipt editing."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.api.dependencies import get_current_user, get_db_session, get_telegram_identity
from expensor.core.config import settings
from expensor.core.errors import QueryTimeoutError
from expensor.core.observability import sentry_breadcrumb
from expensor.core.security import TelegramIdentity
from expensor.models.enums import PaymentMethod, SortDirection, SortField
from expensor.models.schemas import (
    FilterOptions,
    ItemRead,
    OperationResult,
    PaginatedReceipts,
    ReceiptCreate,
    ReceiptDetail,
    ReceiptFilters,
    ReceiptQueryParams,
    ReceiptSort,
    ReceiptUpdate,
)
from expensor.models.tables import User
from expensor.services.cache import (
    cache_get_json,
    cache_set_json,
    filter_options_cache_key,
    invalidate_filter_options,
)
from expensor.services.receipt_query import ReceiptQueryService
from expensor.services.receipt_service import ReceiptService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])


async def _with_timeout(awaitable):
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.QUERY_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as exc:
        logger.warning("Receipt query exceeded %ss", settings.QUERY_TIMEOUT_SECONDS)
        raise QueryTimeoutError() from exc


@router.get("", response_model=PaginatedReceipts)
async def list_receipts(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    category_id: Optional[int] = Query(None, alias="categoryId", ge=1),
    company_id: Optional[int] = Query(None, alias="companyId", ge=1),
    date_from: Optional[dt.date] = Query(None, alias="dateFrom"),
    date_to: Optional[dt.date] = Query(None, alias="dateTo"),
    min_amount: Optional[float] = Query(None, alias="minAmount", ge=0),
    max_amount: Optional[float] = Query(None, alias="maxAmount", ge=0),
    payment_method: Optional[PaymentMethod] = Query(None, alias="paymentMethod"),
    search: Optional[str] = Query(None, max_length=100),
    sort_field: SortField = Query(SortField.DATE, alias="sortField"),
    sort_direction: SortDirection = Query(SortDirection.DESC, alias="sortDirection"),
    identity: TelegramIdentity = Depends(get_telegram_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PaginatedReceipts:
    """One page of the caller's receipts, filtered and sorted."""
    params = ReceiptQueryParams(
        telegram_id=identity.id,
        page=page,
        limit=limit or settings.DEFAULT_PAGE_SIZE,
        filters=ReceiptFilters(
            category_id=category_id,
            company_id=company_id,
            date_from=date_from,
            date_to=date_to,
            min_amount=min_amount,
            max_amount=max_amount,
            payment_method=payment_method,
            search=search,
        ),
        sort=ReceiptSort(field=sort_field, direction=sort_direction),
    )
    return await _with_timeout(ReceiptQueryService().get_user_receipts_paginated(db, params))


@router.get("/filter-options", response_model=FilterOptions)
async def get_filter_options(
    identity: TelegramIdentity = Depends(get_telegram_identity),
    db: AsyncSession = Depends(get_db_session),
) -> FilterOptions:
    """Categories and companies present in the caller's receipts."""
    key = filter_options_cache_key(identity.id)
    cached = await cache_get_json(key)
    if cached is not None:
        return FilterOptions.model_validate(cached)
    options = await _with_timeout(ReceiptQueryService().get_filter_options(db, identity.id))
    await cache_set_json(key, options.model_dump(mode="json"), settings.FILTER_OPTIONS_CACHE_TTL)
    return options


@router.post("", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def create_receipt(
    payload: ReceiptCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> OperationResult:
    result = await ReceiptService().create_receipt(db, user.telegram_id, payload)
    await invalidate_filter_options(user.telegram_id)
    sentry_breadcrumb(category="receipts", message="receipt.created", data={"receipt_id": result.receipt_id})
    return result


@router.get("/{receipt_id}", response_model=ReceiptDetail)
async def get_receipt(
    receipt_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ReceiptDetail:
    return await ReceiptService().get_receipt(db, user.telegram_id, receipt_id)


@router.put("/{receipt_id}", response_model=OperationResult)
async def update_receipt(
    receipt_id: int,
    payload: ReceiptUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> OperationResult:
    result = await ReceiptService().update_receipt(db, user.telegram_id, receipt_id, payload)
    await invalidate_filter_options(user.telegram_id)
    return result


@router.get("/{receipt_id}/items", response_model=List[ItemRead])
async def get_receipt_items(
    receipt_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[ItemRead]:
    """Line items of one of the caller's receipts."""
    # scoped to the owner; someone else's receipt is a 404
    detail = await ReceiptService().get_receipt(db, user.telegram_id, receipt_id)
    return detail.items
