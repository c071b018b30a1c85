from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cashback import (
    CategoryCycleStats,
    CycleGroup,
    ExpenseCashback,
    GroupFilters,
    OverallSummary,
    all_time_grouped,
    category_cycle_stats,
    expenses_with_cashback,
    overall_summary,
)
from config import get_settings
from models import AppSetting, Category, Expense
from periods import BillingCycle, DateLike, resolve_cycle
from schemas import (
    BackupCategory,
    BackupExpense,
    BackupPayload,
    BackupSettings,
    CategoryIn,
    ExpenseIn,
    ImportResult,
    SettingsIn,
    SettingsOut,
)

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
SEEDED_KEY = "categories_seeded"

DEFAULT_CATEGORIES = (
    CategoryIn(
        name="Airtel Payment",
        cashback_percent=25,
        monthly_limit=Decimal("250"),
        color="#FF5722",
    ),
    CategoryIn(
        name="Other Utilities",
        cashback_percent=10,
        monthly_limit=Decimal("250"),
        color="#2196F3",
    ),
    CategoryIn(
        name="Swiggy / Zomato / BigBasket",
        cashback_percent=10,
        monthly_limit=Decimal("500"),
        color="#4CAF50",
    ),
)


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def optional_cents(amount: Optional[Decimal]) -> Optional[int]:
    if amount is None:
        return None
    return amount_to_cents(amount)


class KeyValueStore:
    """JSON values stored under string keys in ``app_settings``.

    Writes are flushed, not committed; the calling service owns the commit.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: str, default: Any = None) -> Any:
        row = self.session.get(AppSetting, key)
        if row is None:
            return default
        return json.loads(row.value)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, ensure_ascii=False)
        row = self.session.get(AppSetting, key)
        if row is None:
            self.session.add(AppSetting(key=key, value=encoded))
        else:
            row.value = encoded
        self.session.flush()

    def delete(self, key: str) -> None:
        self.session.execute(delete(AppSetting).where(AppSetting.key == key))


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.order, Category.created_at)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        return category

    def _next_order(self) -> int:
        current = self.session.scalar(select(func.max(Category.order)))
        return 0 if current is None else current + 1

    def create(self, data: CategoryIn, *, commit: bool = True) -> Category:
        category = Category(
            name=data.name.strip(),
            cashback_percent=data.cashback_percent,
            monthly_limit_cents=optional_cents(data.monthly_limit),
            color=data.color,
            order=self._next_order() if data.order is None else data.order,
        )
        self.session.add(category)
        if commit:
            self.session.commit()
            self.session.refresh(category)
        else:
            self.session.flush()
        return category

    def update(self, category_id: str, data: CategoryIn) -> Category:
        category = self.get(category_id)
        category.name = data.name.strip()
        category.cashback_percent = data.cashback_percent
        category.monthly_limit_cents = optional_cents(data.monthly_limit)
        category.color = data.color
        self.session.commit()
        return category

    def delete(self, category_id: str) -> int:
        """Delete a category together with all of its expenses.

        Returns the number of expenses removed.
        """
        category = self.get(category_id)
        result = self.session.execute(
            delete(Expense).where(Expense.category_id == category.id)
        )
        self.session.delete(category)
        self.session.commit()
        removed = result.rowcount or 0
        logger.info(
            f"category_deleted: id={category_id} expenses_removed={removed}"
        )
        return removed

    def ensure_defaults(self) -> bool:
        """Seed the default categories the first time the store is used.

        Seeding happens once per initialization: deleting every category
        afterwards does not bring the defaults back, clearing all data does.
        """
        store = KeyValueStore(self.session)
        if store.get(SEEDED_KEY, False):
            return False
        has_categories = self.session.scalar(select(func.count(Category.id))) or 0
        if not has_categories:
            for order, data in enumerate(DEFAULT_CATEGORIES):
                self.create(data.model_copy(update={"order": order}), commit=False)
            logger.info(f"categories_seeded: count={len(DEFAULT_CATEGORIES)}")
        store.set(SEEDED_KEY, True)
        self.session.commit()
        return not has_categories


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Expense]:
        stmt = select(Expense).order_by(Expense.date, Expense.created_at)
        return list(self.session.scalars(stmt).all())

    def get(self, expense_id: str) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise ValueError("Expense not found")
        return expense

    def _require_category(self, category_id: str) -> None:
        if not self.session.get(Category, category_id):
            raise ValueError("Category not found")

    def create(self, data: ExpenseIn) -> Expense:
        self._require_category(data.category_id)
        expense = Expense(
            category_id=data.category_id,
            date=data.date,
            amount_cents=amount_to_cents(data.amount),
            note=(data.note or "").strip() or None,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: str, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        self._require_category(data.category_id)
        expense.category_id = data.category_id
        expense.date = data.date
        expense.amount_cents = amount_to_cents(data.amount)
        expense.note = (data.note or "").strip() or None
        self.session.commit()
        return expense

    def delete(self, expense_id: str) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()


class SettingsService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = KeyValueStore(session)

    def defaults(self) -> SettingsOut:
        config = get_settings()
        return SettingsOut(
            billing_cycle_start=config.default_cycle_start,
            currency=config.default_currency,
        )

    def get(self) -> SettingsOut:
        stored = self.store.get(SETTINGS_KEY)
        if not stored:
            return self.defaults()
        return SettingsOut(**stored)

    def save(self, data: SettingsIn, *, commit: bool = True) -> SettingsOut:
        self.store.set(SETTINGS_KEY, data.model_dump())
        if commit:
            self.session.commit()
        return SettingsOut(**data.model_dump())


class BackupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def export_data(self) -> BackupPayload:
        categories = CategoryService(self.session).list_all()
        expenses = ExpenseService(self.session).list_all()
        settings = SettingsService(self.session).get()
        return BackupPayload(
            categories=[
                BackupCategory(
                    id=c.id,
                    name=c.name,
                    cashback_percent=c.cashback_percent,
                    monthly_limit=c.monthly_limit,
                    color=c.color,
                )
                for c in categories
            ],
            expenses=[
                BackupExpense(
                    id=e.id,
                    category_id=e.category_id,
                    amount=e.amount,
                    date=e.date,
                    note=e.note,
                )
                for e in expenses
            ],
            settings=BackupSettings(**settings.model_dump()),
            exported_at=datetime.now(timezone.utc),
        )

    def export_json(self) -> str:
        return self.export_data().model_dump_json(by_alias=True, indent=2)

    def import_json(self, text: str) -> ImportResult:
        """Replace stored data with the collections present in ``text``.

        Collections missing from the payload are left untouched. Nothing is
        written unless the whole payload parses and validates.
        """
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning(f"backup_import_rejected: reason=invalid_json error={exc}")
            return ImportResult(success=False, error=f"Invalid JSON: {exc}")
        if not isinstance(raw, dict):
            return ImportResult(
                success=False, error="Backup must be a JSON object"
            )
        try:
            payload = BackupPayload.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                f"backup_import_rejected: reason=invalid_payload errors={exc.error_count()}"
            )
            return ImportResult(success=False, error=f"Invalid backup: {exc}")

        try:
            self._replace(payload)
            self.session.commit()
        except (SQLAlchemyError, OverflowError) as exc:
            self.session.rollback()
            logger.exception("backup_import_failed")
            return ImportResult(success=False, error=f"Import failed: {exc}")

        logger.info(
            "backup_imported: "
            f"categories={_count(payload.categories)} "
            f"expenses={_count(payload.expenses)} "
            f"settings={payload.settings is not None}"
        )
        return ImportResult(success=True)

    def _replace(self, payload: BackupPayload) -> None:
        if payload.categories is not None:
            self.session.execute(delete(Category))
            for order, item in enumerate(payload.categories):
                self.session.add(
                    Category(
                        id=item.id,
                        name=item.name,
                        cashback_percent=item.cashback_percent,
                        monthly_limit_cents=optional_cents(item.monthly_limit),
                        color=item.color,
                        order=order,
                    )
                )
            KeyValueStore(self.session).set(SEEDED_KEY, True)
        if payload.expenses is not None:
            self.session.execute(delete(Expense))
            for item in payload.expenses:
                self.session.add(
                    Expense(
                        id=item.id,
                        category_id=item.category_id,
                        date=item.date,
                        amount_cents=amount_to_cents(item.amount),
                        note=item.note,
                    )
                )
        if payload.settings is not None:
            SettingsService(self.session).save(
                SettingsIn(**payload.settings.model_dump()), commit=False
            )
        self.session.flush()

    def clear_all(self) -> None:
        self.session.execute(delete(Expense))
        self.session.execute(delete(Category))
        self.session.execute(delete(AppSetting))
        self.session.commit()
        logger.info("data_cleared")


def _count(items: Optional[list]) -> Optional[int]:
    return None if items is None else len(items)


class CashbackService:
    """Runs the cashback engine over one consistent snapshot of the store."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.categories = CategoryService(session)
        self.expenses = ExpenseService(session)
        self.settings = SettingsService(session)

    def cycle_start_day(self) -> int:
        return self.settings.get().billing_cycle_start

    def current_cycle(self, today: Optional[DateLike] = None) -> BillingCycle:
        return resolve_cycle(self.cycle_start_day(), today)

    def overview(self, today: Optional[DateLike] = None) -> OverallSummary:
        return overall_summary(
            self.expenses.list_all(),
            self.categories.list_all(),
            self.cycle_start_day(),
            today=today,
        )

    def category_stats(
        self, category_id: str, today: Optional[DateLike] = None
    ) -> CategoryCycleStats:
        category = self.categories.get(category_id)
        return category_cycle_stats(
            self.expenses.list_all(), category, self.cycle_start_day(), today=today
        )

    def expense_rows(
        self, *, current_only: bool = False, today: Optional[DateLike] = None
    ) -> list[ExpenseCashback]:
        start_day = self.cycle_start_day()
        cycle = resolve_cycle(start_day, today) if current_only else None
        return expenses_with_cashback(
            self.expenses.list_all(),
            self.categories.list_all(),
            start_day,
            cycle=cycle,
        )

    def cycles(
        self,
        *,
        cycle_key: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[str, CycleGroup]:
        filters = None
        if cycle_key or start or end:
            filters = GroupFilters(
                cycle_key=cycle_key.strip().upper() if cycle_key else None,
                start=start,
                end=end,
            )
        return all_time_grouped(
            self.expenses.list_all(),
            self.categories.list_all(),
            self.cycle_start_day(),
            filters,
        )
