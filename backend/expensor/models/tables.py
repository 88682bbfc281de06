"""SQLAlchemy ORM models for the Expensor API.

These models define the relational schema: users identified by their
Telegram id, globally unique companies and categories, receipts owned by
a user, and the line items of each receipt.

Receipts keep a nullable reference to their company and category; when a
company or category row is deleted the reference is set to NULL rather
than deleting the receipt.  Deleting a user or a receipt cascades down to
its children.

If you extend or modify these models call the ``init_db`` helper during
development to recreate the tables.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from expensor.core.database import Base

# Amounts are returned as floats; the API works with plain JSON numbers.
Money = Numeric(12, 2, asdecimal=False)


class User(Base):
    """Chat platform user of the mini app."""

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("tokens >= 0", name="ck_users_tokens_non_negative"),)

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False)
    username = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    language = Column(String, nullable=False, default="en")
    preferred_currency = Column(String, nullable=False, default="EUR")
    is_active = Column(Boolean, nullable=False, default=True)
    tokens = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    receipts = relationship("Receipt", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)


class Company(Base):
    """Merchant name, deduplicated across all users."""

    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)

    receipts = relationship("Receipt", back_populates="company", passive_deletes=True)


class Category(Base):
    """Spending label with an emoji icon (global, not per user)."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    icon = Column(String, nullable=False)

    receipts = relationship("Receipt", back_populates="category", passive_deletes=True)


class Receipt(Base):
    """A single purchase owned by a user."""

    __tablename__ = "receipts"
    __table_args__ = (
        Index("ix_receipts_owner_date_created_at", "owner_id", "date", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    total = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    paid_cash = Column(Money, nullable=True)
    paid_card = Column(Money, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="receipts")
    company = relationship("Company", back_populates="receipts")
    category = relationship("Category", back_populates="receipts")
    items = relationship("Item", back_populates="receipt", cascade="all, delete-orphan", passive_deletes=True)


class Item(Base):
    """Line item of a receipt.  ``quantity`` may be fractional (weighed goods)."""

    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Numeric(12, 3, asdecimal=False), nullable=False)
    unit_price = Column(Money, nullable=False)
    total = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")

    receipt = relationship("Receipt", back_populates="items")
