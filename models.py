import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def cents_to_amount(cents: int) -> Decimal:
    return Decimal(cents) / 100


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    cashback_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    monthly_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)
    color: Mapped[Optional[str]] = mapped_column(String(9))
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "cashback_percent >= 0 AND cashback_percent <= 100",
            name="ck_categories_percent_range",
        ),
        CheckConstraint(
            "monthly_limit_cents IS NULL OR monthly_limit_cents >= 0",
            name="ck_categories_limit_positive",
        ),
    )

    @property
    def monthly_limit(self) -> Optional[Decimal]:
        if self.monthly_limit_cents is None:
            return None
        return cents_to_amount(self.monthly_limit_cents)


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # Not a foreign key: restored backups may carry expenses whose category
    # is gone, and those must survive as zero-cashback rows.
    category_id: Mapped[str] = mapped_column(String(36), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_category_date", "category_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


class AppSetting(Base, TimestampMixin):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
