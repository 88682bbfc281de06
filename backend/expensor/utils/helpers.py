"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Tuple

from expensor.models.enums import Language

_LANGUAGE_ALIASES = {
    "en": Language.EN,
    "english": Language.EN,
    "ro": Language.RO,
    "romanian": Language.RO,
}

_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def normalise_locale(language: Optional[str]) -> str:
    """Map a user language (code or English name) to a supported locale.

    Telegram sends IETF tags such as ``en-US``; only the primary subtag is
    considered.  Unknown languages fall back to English.
    """
    if not language:
        return Language.EN.value
    primary = language.strip().lower().replace("_", "-").split("-", 1)[0]
    return _LANGUAGE_ALIASES.get(primary, Language.EN).value


def month_key(value: dt.date) -> str:
    return f"{value.year}-{value.month:02d}"


def last_months(today: dt.date, count: int = 6) -> List[Tuple[str, str]]:
    """``(YYYY-MM, short name)`` for the ``count`` months ending with ``today``'s, oldest first."""
    months: List[Tuple[str, str]] = []
    for back in range(count - 1, -1, -1):
        index = today.year * 12 + (today.month - 1) - back
        year, month = divmod(index, 12)
        months.append((f"{year}-{month + 1:02d}", _MONTH_ABBR[month]))
    return months
