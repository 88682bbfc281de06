from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from expensor.api.dependencies import get_current_user
from expensor.core.observability import sentry_set_tags
from expensor.models.schemas import CheckoutRequest, CheckoutResponse, TokenPackage
from expensor.models.tables import User
from expensor.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/packages", response_model=List[TokenPackage])
async def list_packages() -> List[TokenPackage]:
    """Token packages on sale, cheapest first."""
    return BillingService().list_packages()


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    payload: CheckoutRequest,
    user: User = Depends(get_current_user),
) -> CheckoutResponse:
    """Create a Stripe Checkout Session for a token package.

    The tokens are credited by the ``checkout.session.completed`` webhook,
    not here.
    """
    sentry_set_tags({"billing.package_id": payload.package_id})
    # the Stripe SDK is blocking
    url = await run_in_threadpool(BillingService().create_checkout_session, user.telegram_id, payload.package_id)
    logger.info("Checkout session created telegram_id=%s package=%s", user.telegram_id, payload.package_id)
    return CheckoutResponse(url=url)
