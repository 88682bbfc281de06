"""Verification of Telegram Mini App launch data.

The chat client hands the mini app a signed ``initData`` query string.
The frontend forwards it verbatim (``Authorization: tma <initData>``) and
the backend checks it as described in Telegram's Web Apps documentation:

* every field except ``hash`` is sorted by key and joined as
  ``key=value`` lines (the data-check-string);
* the secret key is ``HMAC_SHA256(key="WebAppData", msg=bot_token)``;
* ``hash`` must equal ``hex(HMAC_SHA256(secret_key, data_check_string))``.

``auth_date`` older than ``INIT_DATA_MAX_AGE_SECONDS`` is rejected so a
leaked string cannot be replayed forever.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode

from expensor.core.config import settings
from expensor.core.errors import AuthenticationError


@dataclass(frozen=True)
class TelegramIdentity:
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language_code: Optional[str] = None


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()


def _data_check_string(fields: Dict[str, str]) -> str:
    return "\n".join(f"{k}={fields[k]}" for k in sorted(fields))


def sign_init_data(fields: Dict[str, str], bot_token: str) -> str:
    """Build a signed initData string, as the Telegram client would."""
    digest = hmac.new(_secret_key(bot_token), _data_check_string(fields).encode(), hashlib.sha256).hexdigest()
    return urlencode({**fields, "hash": digest})


def verify_init_data(
    init_data: str,
    bot_token: Optional[str] = None,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> TelegramIdentity:
    """Validate ``init_data`` and return the Telegram user it describes.

    Raises:
        AuthenticationError: missing bot token, bad signature, stale
            ``auth_date`` or a payload without a user.
    """
    bot_token = bot_token or settings.TELEGRAM_BOT_TOKEN
    if not bot_token:
        raise AuthenticationError("Telegram bot token is not configured")
    if not init_data:
        raise AuthenticationError("Missing Telegram init data")

    fields = dict(parse_qsl(init_data, keep_blank_values=True))
    received_hash = fields.pop("hash", None)
    if not received_hash:
        raise AuthenticationError("Telegram init data is not signed")

    expected = hmac.new(_secret_key(bot_token), _data_check_string(fields).encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received_hash):
        raise AuthenticationError("Invalid Telegram init data signature")

    max_age = settings.INIT_DATA_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds
    try:
        auth_date = int(fields.get("auth_date", "0"))
    except ValueError:
        raise AuthenticationError("Invalid auth_date in Telegram init data")
    current = time.time() if now is None else now
    if max_age > 0 and current - auth_date > max_age:
        raise AuthenticationError("Telegram init data has expired")

    try:
        user = json.loads(fields.get("user") or "")
        return TelegramIdentity(
            id=int(user["id"]),
            username=user.get("username"),
            first_name=user.get("first_name"),
            last_name=user.get("last_name"),
            language_code=user.get("language_code"),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthenticationError("Telegram init data has no user") from exc


def extract_init_data(authorization: Optional[str], header_init_data: Optional[str] = None) -> Optional[str]:
    """Pull initData from ``Authorization: tma ...`` or a dedicated header."""
    if authorization and authorization.lower().startswith("tma "):
        return authorization.split(" ", 1)[1].strip()
    return header_init_data
