from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict

import redis
import stripe
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from expensor.core.config import get_webhook_secret_list, settings
from expensor.core.database import AsyncSessionLocal
from expensor.core.observability import sentry_breadcrumb, sentry_capture, sentry_metric_inc, sentry_set_tags
from expensor.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

DEDUP_TTL_SECONDS = 7 * 24 * 3600


@lru_cache(maxsize=1)
def _get_redis_client():
    """Return a cached Redis client used for webhook de-duplication.

    Failures are non-fatal: without Redis every delivery is processed.
    """
    try:
        return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    except Exception as e:  # pragma: no cover
        logger.warning("[stripe] redis unavailable for dedup: %s", e)
        return None


def _dedup_key(event_id: str) -> str:
    return f"stripe:webhook:{event_id}"


def _forget_event(event_id: str | None) -> None:
    """Drop the dedup marker so a Stripe retry is processed again."""
    if not event_id:
        return
    try:
        r = _get_redis_client()
        if r is not None:
            r.delete(_dedup_key(event_id))
    except Exception as e:  # pragma: no cover
        logger.warning("[stripe] redis dedup cleanup failed: %s", e)


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events.

    Verifies the Stripe-Signature header against every configured secret.
    ``checkout.session.completed`` credits the purchased tokens; other
    event types are acknowledged and ignored.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    endpoint_secrets = get_webhook_secret_list()

    if not endpoint_secrets:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return JSONResponse(status_code=500, content={"error": "Webhook not configured"})

    last_sig_error: Exception | None = None
    event = None
    for secret in endpoint_secrets:
        try:
            event = stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
            break
        except stripe.SignatureVerificationError as e:
            last_sig_error = e
        except ValueError as e:
            # malformed payload; no other secret will help
            last_sig_error = e
            break
    if event is None:
        logger.warning("Invalid Stripe signature after trying %d secrets: %s", len(endpoint_secrets), last_sig_error)
        sentry_metric_inc("stripe.webhook.invalid_signature")
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    # Redis-based de-duplication; Stripe delivers at least once
    event_id = event.get("id")
    if event_id:
        try:
            r = _get_redis_client()
            if r is not None and not r.set(name=_dedup_key(event_id), value="1", nx=True, ex=DEDUP_TTL_SECONDS):
                logger.info("[stripe] duplicate webhook event ignored id=%s", event_id)
                sentry_metric_inc("stripe.webhook.duplicate")
                return JSONResponse(status_code=200, content={"received": True, "duplicate": True, "id": event_id})
        except Exception as dedup_ex:
            logger.warning("[stripe] redis dedup check failed: %s", dedup_ex)

    event_type: str = event.get("type", "")
    data_object: Dict[str, Any] = event.get("data", {}).get("object", {}) or {}
    sentry_metric_inc("stripe.webhook.received", tags={"event_type": event_type})
    sentry_set_tags({"stripe.event_type": event_type})
    if data_object.get("id"):
        sentry_breadcrumb(
            category="stripe",
            message=f"webhook:{event_type}",
            data={"object": data_object.get("object"), "id": data_object.get("id")},
        )

    if event_type != "checkout.session.completed":
        logger.debug("[stripe] unhandled event type=%s", event_type)
        return JSONResponse(status_code=200, content={"received": True, "type": event_type})

    try:
        async with AsyncSessionLocal() as session:
            balance = await BillingService().fulfil_checkout_session(session, data_object)
    except Exception as e:
        logger.exception("[stripe] failed to fulfil checkout id=%s", data_object.get("id"))
        sentry_capture(e)
        _forget_event(event_id)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    logger.info(
        "[stripe] checkout.session.completed id=%s credited=%s new_balance=%s",
        data_object.get("id"), balance is not None, balance,
    )
    return JSONResponse(
        status_code=200,
        content={"received": True, "type": event_type, "credited": balance is not None, "newBalance": balance},
    )
