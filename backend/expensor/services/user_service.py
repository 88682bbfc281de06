"""User profile, preferences and token balance.

Users are created the first time their Telegram identity is seen and
never hard-deleted.  The token balance only grows through purchases.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expensor.core.config import settings
from expensor.core.errors import InvalidTokenAmountError, UserNotFoundError
from expensor.core.security import TelegramIdentity
from expensor.models.enums import Currency, Language
from expensor.models.schemas import UserProfile
from expensor.models.tables import User
from expensor.utils.helpers import normalise_locale

logger = logging.getLogger(__name__)


class UserService:
    async def find_user(self, db: AsyncSession, telegram_id: int) -> Optional[User]:
        return await db.scalar(select(User).where(User.telegram_id == telegram_id).limit(1))

    async def get_user(self, db: AsyncSession, telegram_id: int) -> User:
        user = await self.find_user(db, telegram_id)
        if user is None:
            raise UserNotFoundError()
        return user

    async def get_or_create_user(self, db: AsyncSession, identity: TelegramIdentity) -> User:
        """Fast path on ``telegram_id``; create the row on first sighting."""
        user = await self.find_user(db, identity.id)
        if user is not None:
            return user
        user = User(
            telegram_id=identity.id,
            username=identity.username,
            first_name=identity.first_name,
            last_name=identity.last_name,
            language=normalise_locale(identity.language_code),
            preferred_currency=settings.DEFAULT_CURRENCY,
            tokens=0,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info("Created user id=%s telegram_id=%s", user.id, user.telegram_id)
        return user

    async def get_user_profile(self, db: AsyncSession, telegram_id: int) -> UserProfile:
        return UserProfile.model_validate(await self.get_user(db, telegram_id))

    async def update_last_login(self, db: AsyncSession, telegram_id: int) -> User:
        user = await self.get_user(db, telegram_id)
        user.last_login_at = dt.datetime.utcnow()
        await db.commit()
        await db.refresh(user)
        return user

    async def update_user_profile(
        self,
        db: AsyncSession,
        telegram_id: int,
        language: Optional[Language] = None,
        currency: Optional[Currency] = None,
    ) -> User:
        user = await self.get_user(db, telegram_id)
        if language is not None:
            user.language = language.value
        if currency is not None:
            user.preferred_currency = currency.value
        await db.commit()
        await db.refresh(user)
        return user

    async def add_tokens(self, db: AsyncSession, telegram_id: int, amount: int) -> int:
        """Credit ``amount`` tokens and return the new balance.

        The increment runs in SQL so concurrent credits never overwrite
        each other.
        """
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidTokenAmountError()
        balance = await db.scalar(
            update(User)
            .where(User.telegram_id == telegram_id)
            .values(tokens=User.tokens + amount)
            .returning(User.tokens)
            .execution_options(synchronize_session="fetch")
        )
        if balance is None:
            await db.rollback()
            raise UserNotFoundError()
        await db.commit()
        logger.info("Credited %s tokens to telegram_id=%s balance=%s", amount, telegram_id, balance)
        return balance


__all__ = ["UserService"]
