from __future__ import annotations

import pytest
from sqlalchemy import func, select

from expensor.core.errors import InvalidTokenAmountError, UserNotFoundError
from expensor.core.security import TelegramIdentity
from expensor.models.enums import Currency, Language
from expensor.models.tables import User
from expensor.services.user_service import UserService
from expensor.utils.helpers import normalise_locale


@pytest.mark.asyncio
async def test_get_or_create_user_creates_once(db):
    svc = UserService()
    identity = TelegramIdentity(id=77, username="ana", first_name="Ana", language_code="ro-RO")
    created = await svc.get_or_create_user(db, identity)
    again = await svc.get_or_create_user(db, identity)

    assert created.id == again.id
    assert created.language == "ro"
    assert created.preferred_currency == "EUR"
    assert created.tokens == 0
    assert await db.scalar(select(func.count(User.id))) == 1


@pytest.mark.asyncio
async def test_update_profile_and_last_login(db):
    svc = UserService()
    await svc.get_or_create_user(db, TelegramIdentity(id=1))

    user = await svc.update_user_profile(db, 1, language=Language.RO, currency=Currency.GBP)
    assert (user.language, user.preferred_currency) == ("ro", "GBP")

    # omitted fields stay as they are
    user = await svc.update_user_profile(db, 1, currency=Currency.USD)
    assert (user.language, user.preferred_currency) == ("ro", "USD")

    assert user.last_login_at is None
    user = await svc.update_last_login(db, 1)
    assert user.last_login_at is not None


@pytest.mark.asyncio
async def test_add_tokens_accumulates(db):
    svc = UserService()
    await svc.get_or_create_user(db, TelegramIdentity(id=1))
    assert await svc.add_tokens(db, 1, 10) == 10
    assert await svc.add_tokens(db, 1, 50) == 60


@pytest.mark.asyncio
async def test_overlapping_credits_from_two_sessions_both_land(session_factory):
    svc = UserService()
    async with session_factory() as a, session_factory() as b:
        await svc.get_or_create_user(a, TelegramIdentity(id=7))
        # both sessions hold the same stale balance before crediting
        assert (await svc.get_user(a, 7)).tokens == 0
        assert (await svc.get_user(b, 7)).tokens == 0

        assert await svc.add_tokens(a, 7, 10) == 10
        assert await svc.add_tokens(b, 7, 20) == 30

    async with session_factory() as fresh:
        assert (await svc.get_user(fresh, 7)).tokens == 30


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, 2.5])
async def test_add_tokens_rejects_non_positive_or_fractional(db, amount):
    svc = UserService()
    await svc.get_or_create_user(db, TelegramIdentity(id=1))
    with pytest.raises(InvalidTokenAmountError):
        await svc.add_tokens(db, 1, amount)


@pytest.mark.asyncio
async def test_add_tokens_for_unknown_user(db):
    with pytest.raises(UserNotFoundError):
        await UserService().add_tokens(db, 999, 10)


@pytest.mark.parametrize(
    "raw, expected",
    [("en-US", "en"), ("ro", "ro"), ("Romanian", "ro"), ("de", "en"), (None, "en"), ("RO_ro", "ro")],
)
def test_normalise_locale(raw, expected):
    assert normalise_locale(raw) == expected


@pytest.mark.asyncio
async def test_get_user_profile(db):
    svc = UserService()
    await svc.get_or_create_user(db, TelegramIdentity(id=3, username="bob"))
    profile = await svc.get_user_profile(db, 3)
    assert profile.telegram_id == 3
    assert profile.username == "bob"
    assert profile.model_dump(by_alias=True)["preferredCurrency"] == "EUR"
    with pytest.raises(UserNotFoundError):
        await svc.get_user_profile(db, 4)
