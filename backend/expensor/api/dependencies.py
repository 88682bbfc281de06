"""Common dependencies for FastAPI routes.

Database access and Telegram authentication shared by the routers.
Verification of the Mini App ``initData`` lives in
``expensor.core.security``; this module only pulls it off the request.
"""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.core.config import settings
from expensor.core.database import get_db
from expensor.core.errors import AuthenticationError
from expensor.core.observability import sentry_set_tags
from expensor.core.security import TelegramIdentity, extract_init_data, verify_init_data
from expensor.models.tables import User
from expensor.services.user_service import UserService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


def get_telegram_identity(request: Request) -> TelegramIdentity:
    """Verify the caller's Telegram initData and return who they are.

    Accepts ``Authorization: tma <initData>`` or ``X-Telegram-Init-Data``.
    """
    if settings.DEV_AUTH_BYPASS:
        return TelegramIdentity(id=settings.DEV_TELEGRAM_ID, username="dev", first_name="Dev", language_code="en")
    init_data = extract_init_data(
        request.headers.get("Authorization"),
        request.headers.get("X-Telegram-Init-Data"),
    )
    if not init_data:
        raise AuthenticationError("Missing Telegram init data")
    identity = verify_init_data(init_data)
    sentry_set_tags({"telegram_id": identity.id})
    return identity


async def get_current_user(
    identity: TelegramIdentity = Depends(get_telegram_identity),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Return the local user for the caller, creating it on first sight."""
    return await UserService().get_or_create_user(db, identity)
