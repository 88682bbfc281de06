"""Enumeration types used throughout the Expensor API.

Enumerations constrain the values accepted for sorting, filtering and
user preferences.  When modifying these enums update any Pydantic
validators or query-building code that switches on them.
"""

from enum import Enum


class SortField(str, Enum):
    """Columns the receipt list can be ordered by."""

    DATE = "date"
    TOTAL = "total"
    COMPANY = "company"
    CATEGORY = "category"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PaymentMethod(str, Enum):
    """How a receipt was settled.

    ``BOTH`` is accepted by the receipt list filter but adds no predicate.
    """

    CASH = "cash"
    CARD = "card"
    BOTH = "both"


class Language(str, Enum):
    """Interface languages with translations available in the client."""

    EN = "en"
    RO = "ro"


class Currency(str, Enum):
    """Currencies a user can pick as preferred currency."""

    EUR = "EUR"
    USD = "USD"
    GBP = "GBP"
    RON = "RON"
