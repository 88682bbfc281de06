"""Pydantic schemas for request and response models.

Pydantic models validate and serialise data that crosses the boundary of
the API.  Field names are snake_case in Python and camelCase on the wire
(``paidCash``, ``hasMore`` ...) through a shared alias generator; inputs
accept either spelling.

The receipt form rules live here as well: a receipt needs a store name,
a positive total and a date, and when cash and card amounts are given
they must add up to the total.  Keeping them on the models means the API
rejects a bad receipt before any row is written.
"""

from __future__ import annotations

import datetime as dt
import unicodedata
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from expensor.core.config import settings
from .enums import Currency, Language, PaymentMethod, SortDirection, SortField

# Allowed difference between cash + card and the receipt total.
PAYMENT_SPLIT_TOLERANCE = 0.01


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Receipt list query


class ReceiptFilters(CamelModel):
    """Optional, independently combinable filters for the receipt list."""

    category_id: Optional[int] = Field(default=None, ge=1)
    company_id: Optional[int] = Field(default=None, ge=1)
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    min_amount: Optional[float] = Field(default=None, ge=0)
    max_amount: Optional[float] = Field(default=None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    search: Optional[str] = None

    @field_validator("search")
    @classmethod
    def _blank_search_is_no_search(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ReceiptSort(CamelModel):
    field: SortField = SortField.DATE
    direction: SortDirection = SortDirection.DESC


class ReceiptQueryParams(CamelModel):
    """Input of the receipt list query: who, which page and how filtered."""

    telegram_id: int
    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1)
    filters: ReceiptFilters = Field(default_factory=ReceiptFilters)
    sort: ReceiptSort = Field(default_factory=ReceiptSort)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class CompanyRef(CamelModel):
    id: int
    name: str


class CategoryRef(CamelModel):
    id: int
    name: str
    icon: str


class ReceiptRow(CamelModel):
    """Receipt enriched with its resolved company and category."""

    id: int
    date: dt.date
    total: float
    currency: str
    paid_cash: Optional[float] = None
    paid_card: Optional[float] = None
    created_at: Optional[dt.datetime] = None
    company: Optional[CompanyRef] = None
    category: Optional[CategoryRef] = None


class PaginatedReceipts(CamelModel):
    receipts: List[ReceiptRow] = Field(default_factory=list)
    has_more: bool = False
    total_count: int = 0
    next_page: Optional[int] = None

    @classmethod
    def empty(cls) -> "PaginatedReceipts":
        return cls(receipts=[], has_more=False, total_count=0, next_page=None)


class FilterOptions(CamelModel):
    """Categories and companies that appear in one user's receipts."""

    categories: List[CategoryRef] = Field(default_factory=list)
    companies: List[CompanyRef] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Receipt create / update


class ItemIn(CamelModel):
    """Line item as entered in the receipt form.

    Rows with a blank name are accepted here and dropped when saving.
    """

    name: str = ""
    quantity: float = 1
    unit_price: float = 0
    total: Optional[float] = None
    currency: str = Field(default="EUR", min_length=3, max_length=3)

    @model_validator(mode="after")
    def _check_named_row(self) -> "ItemIn":
        if self.name.strip():
            if self.quantity <= 0:
                raise ValueError("Quantity must be greater than zero")
            if self.unit_price <= 0:
                raise ValueError("Unit price must be greater than zero")
        if self.total is None:
            self.total = round(self.quantity * self.unit_price, 2)
        return self

    @property
    def is_saveable(self) -> bool:
        return bool(self.name.strip()) and self.quantity > 0 and self.unit_price > 0


class ReceiptCreate(CamelModel):
    company_name: str
    category_id: Optional[int] = None
    date: dt.date
    total: float
    paid_cash: Optional[float] = Field(default=None, ge=0)
    paid_card: Optional[float] = Field(default=None, ge=0)
    items: List[ItemIn] = Field(default_factory=list)

    @field_validator("company_name")
    @classmethod
    def _store_name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Store name is required")
        return value

    @field_validator("total")
    @classmethod
    def _total_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Total must be greater than zero")
        return value

    @model_validator(mode="after")
    def _payment_split_matches_total(self):
        cash = self.paid_cash or 0
        card = self.paid_card or 0
        if cash + card > 0 and abs(cash + card - self.total) > PAYMENT_SPLIT_TOLERANCE:
            raise ValueError("Cash and card amounts must add up to the total")
        return self


class ReceiptUpdate(ReceiptCreate):
    currency: Currency


class ItemRead(CamelModel):
    id: int
    receipt_id: int
    name: str
    quantity: float
    unit_price: float
    total: float
    currency: str


class ReceiptDetail(CamelModel):
    receipt: ReceiptRow
    items: List[ItemRead] = Field(default_factory=list)


class OperationResult(CamelModel):
    success: bool = True
    message: str
    receipt_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Categories


class CategoryCreate(CamelModel):
    name: str
    icon: str

    @field_validator("name")
    @classmethod
    def _name_length(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category name is required")
        if len(value) < 2:
            raise ValueError("Category name must be at least 2 characters")
        if len(value) > 50:
            raise ValueError("Category name must be at most 50 characters")
        return value

    @field_validator("icon")
    @classmethod
    def _single_emoji(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category icon is required")
        # one glyph: at most two UTF-16 code units, starting with a symbol
        if len(value.encode("utf-16-le")) // 2 > 2 or unicodedata.category(value[0]) != "So":
            raise ValueError("Category icon must be a single emoji")
        return value


# ---------------------------------------------------------------------------
# Users


class UserProfile(CamelModel):
    id: int
    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language: str
    preferred_currency: str
    is_active: bool
    created_at: dt.datetime
    tokens: int
    last_login_at: Optional[dt.datetime] = None


class UserProfileUpdate(CamelModel):
    language: Optional[Language] = None
    currency: Optional[Currency] = None


class TokenBalance(CamelModel):
    success: bool = True
    new_balance: int


# ---------------------------------------------------------------------------
# Billing


class TokenPackage(CamelModel):
    id: str
    label: str
    quantity: int
    price_id: str
    amount: int  # minor units (cents)
    popular: bool = False


class CheckoutRequest(CamelModel):
    package_id: str


class CheckoutResponse(CamelModel):
    url: str


# ---------------------------------------------------------------------------
# Dashboard


class CategorySpending(CamelModel):
    id: int
    name: str
    icon: str
    value: float


class MonthlySpending(CamelModel):
    month: str  # YYYY-MM
    name: str  # short month label
    total: float


class DashboardSummary(CamelModel):
    total_spending: float
    average_amount: float
    receipt_count: int
    categories: List[CategorySpending] = Field(default_factory=list)
    months: List[MonthlySpending] = Field(default_factory=list)
