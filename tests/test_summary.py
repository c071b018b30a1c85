from datetime import date
from decimal import Decimal
from typing import Optional

from cashback import (
    GroupFilters,
    all_time_grouped,
    category_cycle_stats,
    expenses_with_cashback,
    overall_summary,
)
from models import Category, Expense
from periods import resolve_cycle

TODAY = date(2026, 1, 25)


def _category(
    category_id: str, percent: float, limit: Optional[int] = None
) -> Category:
    return Category(
        id=category_id,
        name=category_id.title(),
        cashback_percent=percent,
        monthly_limit_cents=None if limit is None else limit * 100,
    )


def _expense(expense_id: str, category_id: str, amount: str, on: date) -> Expense:
    return Expense(
        id=expense_id,
        category_id=category_id,
        amount_cents=int(Decimal(amount) * 100),
        date=on,
    )


def _airtel_history() -> tuple[list[Category], list[Expense]]:
    categories = [_category("airtel", 25, limit=250), _category("misc", 10)]
    expenses = [
        _expense("a1", "airtel", "500", date(2026, 1, 1)),
        _expense("a2", "airtel", "600", date(2026, 1, 10)),
        _expense("a3", "airtel", "100", date(2026, 1, 20)),
        _expense("m1", "misc", "942", date(2026, 1, 12)),
        _expense("old", "airtel", "400", date(2025, 12, 28)),
        _expense("next", "airtel", "400", date(2026, 2, 3)),
    ]
    return categories, expenses


def test_category_stats_for_capped_category() -> None:
    categories, expenses = _airtel_history()

    stats = category_cycle_stats(expenses, categories[0], 1, today=TODAY)

    assert stats.total_spent == 1200
    assert stats.raw_cashback == 300
    assert stats.effective_cashback == 250
    assert stats.has_limit
    assert stats.monthly_limit == 250
    assert stats.limit_used_percent == 100
    assert stats.remaining_limit == 0
    assert stats.is_limit_reached
    assert stats.expense_count == 3


def test_category_stats_below_cap() -> None:
    category = _category("food", 10, limit=500)
    expenses = [_expense("f1", "food", "1000", date(2026, 1, 3))]

    stats = category_cycle_stats(expenses, category, 1, today=TODAY)

    assert stats.effective_cashback == 100
    assert stats.limit_used_percent == 20
    assert stats.remaining_limit == 400
    assert not stats.is_limit_reached


def test_category_stats_for_uncapped_category() -> None:
    categories, expenses = _airtel_history()

    stats = category_cycle_stats(expenses, categories[1], 1, today=TODAY)

    assert stats.raw_cashback == 94
    assert stats.effective_cashback == 94
    assert not stats.has_limit
    assert stats.monthly_limit is None
    assert stats.limit_used_percent == 0
    assert stats.remaining_limit is None
    assert not stats.is_limit_reached


def test_overall_summary_for_current_cycle() -> None:
    categories, expenses = _airtel_history()

    summary = overall_summary(expenses, categories, 1, today=TODAY)

    assert summary.total_spent == 1200 + 942
    assert summary.total_potential_cashback == 300 + 94
    assert summary.total_cashback == 250 + 94
    assert summary.lost_to_capping == 50
    assert summary.expense_count == 4
    assert summary.billing_cycle == resolve_cycle(1, TODAY)
    assert [entry.category.id for entry in summary.category_stats] == [
        "airtel",
        "misc",
    ]


def test_overall_summary_ignores_orphaned_expenses() -> None:
    categories = [_category("misc", 10)]
    expenses = [
        _expense("m1", "misc", "100", date(2026, 1, 2)),
        _expense("gone", "deleted", "5000", date(2026, 1, 2)),
    ]

    summary = overall_summary(expenses, categories, 1, today=TODAY)

    assert summary.total_spent == 100
    assert summary.total_cashback == 10
    assert summary.expense_count == 1


def test_empty_inputs_give_zero_summaries() -> None:
    summary = overall_summary([], [], 1, today=TODAY)
    assert summary.total_spent == 0
    assert summary.total_cashback == 0
    assert summary.lost_to_capping == 0
    assert summary.expense_count == 0
    assert summary.category_stats == []

    assert all_time_grouped([], [], 1) == {}


def test_current_cycle_rows_are_newest_first() -> None:
    categories, expenses = _airtel_history()

    rows = expenses_with_cashback(
        expenses, categories, 1, cycle=resolve_cycle(1, TODAY)
    )

    assert [row.expense.id for row in rows] == ["a3", "m1", "a2", "a1"]
    assert rows[0].cashback.lost == 25
    assert rows[0].cycle_key == "JAN 26"
    assert rows[0].category.id == "airtel"


def test_all_time_grouped_orders_cycles_and_expenses() -> None:
    categories, expenses = _airtel_history()

    groups = all_time_grouped(expenses, categories, 1)

    assert list(groups) == ["FEB 26", "JAN 26", "DEC 25"]
    jan = groups["JAN 26"]
    assert [row.expense.id for row in jan.expenses] == ["a3", "m1", "a2", "a1"]
    assert jan.cycle.start_date == date(2026, 1, 1)
    assert jan.summary.total_spent == 2142
    assert jan.summary.total_potential_cashback == 394
    assert jan.summary.total_cashback == 344
    assert jan.summary.lost_to_capping == 50
    assert jan.summary.expense_count == 4

    feb = groups["FEB 26"]
    assert feb.summary.total_cashback == 100
    assert feb.summary.lost_to_capping == 0


def test_orphaned_expense_is_listed_with_zero_cashback() -> None:
    expenses = [_expense("gone", "deleted", "700", date(2026, 1, 9))]

    groups = all_time_grouped(expenses, [], 1)

    row = groups["JAN 26"].expenses[0]
    assert row.category is None
    assert row.cashback.raw == 0
    assert groups["JAN 26"].summary.total_spent == 700
    assert groups["JAN 26"].summary.total_cashback == 0


def test_single_cycle_filter() -> None:
    categories, expenses = _airtel_history()

    groups = all_time_grouped(
        expenses, categories, 1, GroupFilters(cycle_key="DEC 25")
    )

    assert list(groups) == ["DEC 25"]
    assert groups["DEC 25"].summary.total_cashback == 100


def test_date_range_filter_keeps_full_history_apportionment() -> None:
    categories, expenses = _airtel_history()

    groups = all_time_grouped(
        expenses,
        categories,
        1,
        GroupFilters(start=date(2026, 1, 10), end=date(2026, 1, 31)),
    )

    assert list(groups) == ["JAN 26"]
    jan = groups["JAN 26"]
    assert [row.expense.id for row in jan.expenses] == ["a3", "m1", "a2"]
    # a1 is filtered out but still consumed the first 125 of the cap
    assert jan.summary.total_spent == 1642
    assert jan.summary.total_potential_cashback == 150 + 25 + 94
    assert jan.summary.total_cashback == 125 + 0 + 94
    assert jan.summary.lost_to_capping == 50
    assert jan.summary.expense_count == 3


def test_filter_that_matches_nothing_returns_no_groups() -> None:
    categories, expenses = _airtel_history()

    groups = all_time_grouped(
        expenses,
        categories,
        1,
        GroupFilters(start=date(2024, 1, 1), end=date(2024, 12, 31)),
    )

    assert groups == {}


def test_groups_a_century_apart_stay_separate() -> None:
    categories = [_category("airtel", 25, limit=250)]
    expenses = [
        _expense("old", "airtel", "1000", date(1926, 1, 5)),
        _expense("new", "airtel", "1000", date(2026, 1, 5)),
    ]

    groups = all_time_grouped(expenses, categories, 1)

    assert list(groups) == ["JAN 26", "JAN 1926"]
    assert [row.expense.id for row in groups["JAN 26"].expenses] == ["new"]
    assert groups["JAN 26"].cycle.start_date == date(2026, 1, 1)
    assert groups["JAN 1926"].cycle.start_date == date(1926, 1, 1)
    assert groups["JAN 26"].summary.total_cashback == 250
    assert groups["JAN 1926"].summary.total_cashback == 250
