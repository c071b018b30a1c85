from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


def _json_number(value: Decimal) -> Union[int, float]:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# Decimal in Python, a plain JSON number on the wire (pydantic emits strings
# for Decimal by default).
Money = Annotated[
    Decimal,
    PlainSerializer(_json_number, return_type=Union[int, float], when_used="json"),
]

# Upper bound for any amount; values are stored as cents in a 64-bit INTEGER.
MAX_MONEY = Decimal("1000000000000")


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    cashback_percent: float = Field(..., ge=0, le=100)
    monthly_limit: Optional[Decimal] = Field(
        default=None, ge=0, le=MAX_MONEY, decimal_places=2
    )
    color: Optional[str] = Field(default=None, max_length=9)
    order: Optional[int] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    cashback_percent: float
    monthly_limit: Optional[Money]
    color: Optional[str]


class ExpenseIn(BaseModel):
    category_id: str = Field(..., min_length=1, max_length=36)
    amount: Decimal = Field(..., gt=0, le=MAX_MONEY, decimal_places=2)
    date: date
    note: Optional[str] = Field(default=None, max_length=200)


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category_id: str
    amount: Money
    date: date
    note: Optional[str]


class SettingsIn(BaseModel):
    billing_cycle_start: int = Field(..., ge=1, le=28)
    currency: str = Field(..., min_length=1, max_length=8)


class SettingsOut(BaseModel):
    billing_cycle_start: int
    currency: str


class _BackupModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BackupCategory(_BackupModel):
    id: str = Field(..., min_length=1, max_length=36)
    name: str = Field(..., min_length=1, max_length=100)
    cashback_percent: float = Field(..., ge=0, le=100)
    monthly_limit: Optional[Money] = Field(default=None, ge=0, le=MAX_MONEY)
    color: Optional[str] = Field(default=None, max_length=9)


class BackupExpense(_BackupModel):
    id: str = Field(..., min_length=1, max_length=36)
    category_id: str = Field(..., min_length=1, max_length=36)
    amount: Money = Field(..., ge=0, le=MAX_MONEY)
    date: date
    note: Optional[str] = None


class BackupSettings(_BackupModel):
    billing_cycle_start: int = Field(..., ge=1, le=28)
    currency: str = Field(..., min_length=1, max_length=8)


class BackupPayload(_BackupModel):
    categories: Optional[list[BackupCategory]] = None
    expenses: Optional[list[BackupExpense]] = None
    settings: Optional[BackupSettings] = None
    exported_at: Optional[datetime] = None


class ImportResult(BaseModel):
    success: bool
    error: Optional[str] = None
