"""API route for the home screen spending summary."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.api.dependencies import get_db_session, get_telegram_identity
from expensor.core.config import settings
from expensor.core.errors import QueryTimeoutError
from expensor.core.security import TelegramIdentity
from expensor.models.schemas import DashboardSummary
from expensor.services.dashboard_service import DashboardService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardSummary)
async def get_dashboard(
    identity: TelegramIdentity = Depends(get_telegram_identity),
    db: AsyncSession = Depends(get_db_session),
) -> DashboardSummary:
    try:
        return await asyncio.wait_for(
            DashboardService().build_dashboard(db, identity.id),
            timeout=settings.QUERY_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("Dashboard for telegram_id=%s timed out", identity.id)
        raise QueryTimeoutError() from exc
