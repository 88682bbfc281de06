"""Token packages and Stripe Checkout for buying them.

Tokens are bought in fixed packages with one-off Stripe Checkout
payments.  The Telegram id and the token quantity travel in the session
metadata; the ``checkout.session.completed`` webhook reads them back and
credits the user.  Prices are in euro cents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.core.config import is_stripe_configured, settings
from expensor.core.errors import (
    BillingNotConfiguredError,
    InvalidTokenAmountError,
    PaymentGatewayError,
    UnknownPackageError,
    UserNotFoundError,
)
from expensor.core.observability import sentry_breadcrumb, sentry_metric_inc
from expensor.models.schemas import TokenPackage
from expensor.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Package:
    id: str
    quantity: int
    amount: int
    popular: bool = False

    @property
    def label(self) -> str:
        return f"🎟️ {self.quantity} Tokens"

    @property
    def price_id(self) -> str:
        return f"price_{self.amount}"


TOKEN_PACKAGES: Dict[str, _Package] = {
    p.id: p
    for p in (
        _Package(id="tokens_10", quantity=10, amount=299),
        _Package(id="tokens_20", quantity=20, amount=499),
        _Package(id="tokens_50", quantity=50, amount=999, popular=True),
        _Package(id="tokens_70", quantity=70, amount=1299),
        _Package(id="tokens_100", quantity=100, amount=1599),
    )
}


class BillingService:
    """Package catalogue, checkout creation and payment fulfilment."""

    def __init__(self, users: UserService | None = None):
        self.users = users or UserService()

    def list_packages(self) -> List[TokenPackage]:
        return [
            TokenPackage(id=p.id, label=p.label, quantity=p.quantity, price_id=p.price_id, amount=p.amount, popular=p.popular)
            for p in TOKEN_PACKAGES.values()
        ]

    def get_package(self, package_id: str) -> _Package:
        package = TOKEN_PACKAGES.get(package_id)
        if package is None:
            raise UnknownPackageError()
        return package

    def create_checkout_session(self, telegram_id: int, package_id: str) -> str:
        """Create a one-off Checkout Session and return its hosted URL."""
        package = self.get_package(package_id)
        if not is_stripe_configured():
            logger.error("Cannot create checkout session: Stripe is not configured")
            raise BillingNotConfiguredError()

        stripe.api_key = settings.STRIPE_API_KEY
        bot_url = f"https://t.me/{settings.BOT_USERNAME}"
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": settings.STRIPE_CHECKOUT_CURRENCY,
                            "product_data": {
                                "name": f"{package.label} for {settings.PROJECT_NAME} Bot",
                                "description": f"Purchase of {package.quantity} tokens",
                            },
                            "unit_amount": package.amount,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{bot_url}?start=payment_done",
                cancel_url=f"{bot_url}?start=payment_cancelled",
                client_reference_id=str(telegram_id),
                metadata={"telegramId": str(telegram_id), "tokens": str(package.quantity)},
            )
        except Exception as e:
            logger.exception("Failed to create checkout session: %s", e)
            raise PaymentGatewayError() from e

        sentry_breadcrumb(
            category="stripe",
            message="checkout.session.created",
            data={"package_id": package.id, "session_id": session.get("id")},
        )
        sentry_metric_inc("stripe.checkout.session.created", tags={"package_id": package.id})
        url = session.get("url")
        if not url:
            raise PaymentGatewayError()
        return url

    async def fulfil_checkout_session(self, db: AsyncSession, session_obj: Dict[str, Any]) -> Optional[int]:
        """Credit the tokens of a paid Checkout Session.

        Returns the new balance, or ``None`` when the session is not paid or
        does not describe a known user.  Never raises for bad payloads:
        the webhook has to acknowledge them anyway.
        """
        if session_obj.get("payment_status") != "paid":
            logger.info("[stripe] checkout %s not paid (status=%s)", session_obj.get("id"), session_obj.get("payment_status"))
            return None
        metadata = session_obj.get("metadata") or {}
        try:
            telegram_id = int(metadata.get("telegramId"))
            tokens = int(metadata.get("tokens"))
        except (TypeError, ValueError):
            logger.warning("[stripe] checkout %s has no usable metadata: %s", session_obj.get("id"), metadata)
            return None
        try:
            balance = await self.users.add_tokens(db, telegram_id, tokens)
        except (UserNotFoundError, InvalidTokenAmountError):
            logger.warning("[stripe] checkout %s could not be credited telegram_id=%s tokens=%s", session_obj.get("id"), telegram_id, tokens)
            return None
        sentry_metric_inc("stripe.checkout.fulfilled", tags={"tokens": tokens})
        return balance


__all__ = ["BillingService", "TOKEN_PACKAGES"]
