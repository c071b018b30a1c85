from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Iterable, Optional, Sequence

from periods import (
    BillingCycle,
    DateLike,
    cycle_key,
    cycle_start_date,
    resolve_cycle,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps floats such as 2.3 exact instead of their binary expansion
    return Decimal(str(value))


def raw_cashback(amount: Any, percent: Any) -> Decimal:
    """Cashback for one expense ignoring caps, floored to the whole unit.

    ``raw_cashback(942, 25) == 235``: the half unit is never rounded up.
    """
    value = to_decimal(amount) * to_decimal(percent) / HUNDRED
    return value.to_integral_value(rounding=ROUND_FLOOR)


def monthly_limit_of(category: Any) -> Optional[Decimal]:
    limit = getattr(category, "monthly_limit", None)
    if limit is None:
        return None
    limit = to_decimal(limit)
    if limit <= ZERO:
        return None
    return limit


@dataclass(frozen=True)
class CashbackResult:
    raw: Decimal = ZERO
    eligible: Decimal = ZERO
    lost: Decimal = ZERO


NO_CASHBACK = CashbackResult()


def _chronological(expenses: Iterable[Any]) -> list[Any]:
    # sorted() is stable, so same-day expenses keep their input order
    return sorted(expenses, key=lambda e: e.date)


def apportion_cashback(
    expenses: Iterable[Any],
    categories: Iterable[Any],
    cycle_start_day: int,
) -> dict[str, CashbackResult]:
    """Split each expense's raw cashback into eligible and lost parts.

    Expenses are walked oldest first; within a (cycle, category) pair the
    earliest transactions consume the monthly cap. The running total grows
    by the raw amount, so once the cap is exhausted every later expense in
    that cycle loses its whole cashback.
    """
    by_id = {c.id: c for c in categories}
    consumed: dict[tuple[date, str], Decimal] = {}
    results: dict[str, CashbackResult] = {}

    for expense in _chronological(expenses):
        category = by_id.get(expense.category_id)
        if category is None:
            results[expense.id] = NO_CASHBACK
            continue

        raw = raw_cashback(expense.amount, category.cashback_percent)
        limit = monthly_limit_of(category)
        if limit is None:
            results[expense.id] = CashbackResult(raw=raw, eligible=raw, lost=ZERO)
            continue

        key = (cycle_start_date(cycle_start_day, expense.date), category.id)
        so_far = consumed.get(key, ZERO)
        remaining = max(ZERO, limit - so_far)
        eligible = min(raw, remaining)
        results[expense.id] = CashbackResult(
            raw=raw, eligible=eligible, lost=raw - eligible
        )
        consumed[key] = so_far + raw

    return results


@dataclass(frozen=True)
class CategoryCycleStats:
    total_spent: Decimal
    raw_cashback: Decimal
    effective_cashback: Decimal
    has_limit: bool
    monthly_limit: Optional[Decimal]
    limit_used_percent: Decimal
    remaining_limit: Optional[Decimal]
    is_limit_reached: bool
    expense_count: int


def category_cycle_stats(
    expenses: Iterable[Any],
    category: Any,
    cycle_start_day: int,
    *,
    today: Optional[DateLike] = None,
) -> CategoryCycleStats:
    cycle = resolve_cycle(cycle_start_day, today)
    total_spent = ZERO
    raw_total = ZERO
    count = 0
    for expense in expenses:
        if expense.category_id != category.id or not cycle.contains(expense.date):
            continue
        total_spent += to_decimal(expense.amount)
        raw_total += raw_cashback(expense.amount, category.cashback_percent)
        count += 1

    limit = monthly_limit_of(category)
    has_limit = limit is not None
    if has_limit:
        effective = min(raw_total, limit)
        used_percent = min(raw_total / limit * HUNDRED, HUNDRED)
        remaining: Optional[Decimal] = max(limit - raw_total, ZERO)
    else:
        effective = raw_total
        used_percent = ZERO
        remaining = None

    return CategoryCycleStats(
        total_spent=total_spent,
        raw_cashback=raw_total,
        effective_cashback=effective,
        has_limit=has_limit,
        monthly_limit=limit,
        limit_used_percent=used_percent,
        remaining_limit=remaining,
        is_limit_reached=has_limit and raw_total >= limit,
        expense_count=count,
    )


@dataclass(frozen=True)
class CategoryStatsEntry:
    category: Any
    stats: CategoryCycleStats


@dataclass(frozen=True)
class OverallSummary:
    total_spent: Decimal
    total_cashback: Decimal
    total_potential_cashback: Decimal
    lost_to_capping: Decimal
    expense_count: int
    category_stats: list[CategoryStatsEntry]
    billing_cycle: BillingCycle


def overall_summary(
    expenses: Iterable[Any],
    categories: Iterable[Any],
    cycle_start_day: int,
    *,
    today: Optional[DateLike] = None,
) -> OverallSummary:
    expenses = list(expenses)
    cycle = resolve_cycle(cycle_start_day, today)
    total_spent = ZERO
    total_cashback = ZERO
    total_potential = ZERO
    count = 0
    entries: list[CategoryStatsEntry] = []
    for category in categories:
        stats = category_cycle_stats(
            expenses, category, cycle_start_day, today=cycle.start
        )
        total_spent += stats.total_spent
        total_cashback += stats.effective_cashback
        total_potential += stats.raw_cashback
        count += stats.expense_count
        entries.append(CategoryStatsEntry(category=category, stats=stats))

    return OverallSummary(
        total_spent=total_spent,
        total_cashback=total_cashback,
        total_potential_cashback=total_potential,
        lost_to_capping=total_potential - total_cashback,
        expense_count=count,
        category_stats=entries,
        billing_cycle=cycle,
    )


@dataclass(frozen=True)
class ExpenseCashback:
    expense: Any
    category: Optional[Any]
    cycle_key: str
    cashback: CashbackResult


def expenses_with_cashback(
    expenses: Iterable[Any],
    categories: Iterable[Any],
    cycle_start_day: int,
    *,
    cycle: Optional[BillingCycle] = None,
) -> list[ExpenseCashback]:
    """Every expense with its apportioned cashback, newest first.

    Apportionment always runs over the full history; ``cycle`` only narrows
    which rows are returned.
    """
    expenses = list(expenses)
    categories = list(categories)
    results = apportion_cashback(expenses, categories, cycle_start_day)
    by_id = {c.id: c for c in categories}
    rows = [
        ExpenseCashback(
            expense=e,
            category=by_id.get(e.category_id),
            cycle_key=cycle_key(cycle_start_day, e.date),
            cashback=results[e.id],
        )
        for e in expenses
        if cycle is None or cycle.contains(e.date)
    ]
    rows.sort(key=lambda row: row.expense.date, reverse=True)
    return rows


@dataclass(frozen=True)
class CycleSummary:
    total_spent: Decimal = ZERO
    total_cashback: Decimal = ZERO
    total_potential_cashback: Decimal = ZERO
    lost_to_capping: Decimal = ZERO
    expense_count: int = 0


def summarize_rows(rows: Sequence[ExpenseCashback]) -> CycleSummary:
    total_spent = sum((to_decimal(r.expense.amount) for r in rows), ZERO)
    eligible = sum((r.cashback.eligible for r in rows), ZERO)
    raw = sum((r.cashback.raw for r in rows), ZERO)
    return CycleSummary(
        total_spent=total_spent,
        total_cashback=eligible,
        total_potential_cashback=raw,
        lost_to_capping=raw - eligible,
        expense_count=len(rows),
    )


@dataclass(frozen=True)
class CycleGroup:
    key: str
    cycle: BillingCycle
    expenses: list[ExpenseCashback] = field(default_factory=list)
    summary: CycleSummary = field(default_factory=CycleSummary)


@dataclass(frozen=True)
class GroupFilters:
    cycle_key: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None

    def matches(self, row: ExpenseCashback) -> bool:
        if self.cycle_key and row.cycle_key != self.cycle_key:
            return False
        expense_date = row.expense.date
        if self.start and expense_date < self.start:
            return False
        if self.end and expense_date > self.end:
            return False
        return True


def all_time_grouped(
    expenses: Iterable[Any],
    categories: Iterable[Any],
    cycle_start_day: int,
    filters: Optional[GroupFilters] = None,
) -> dict[str, CycleGroup]:
    """Group the whole expense history by billing cycle, newest cycle first.

    Filters are applied after cap apportionment, so a date range never
    changes how much of a cap earlier expenses already consumed. Groups left
    empty by a filter are dropped.
    """
    rows = expenses_with_cashback(expenses, categories, cycle_start_day)

    buckets: dict[date, list[ExpenseCashback]] = {}
    for row in rows:
        if filters is not None and not filters.matches(row):
            continue
        start = cycle_start_date(cycle_start_day, row.expense.date)
        buckets.setdefault(start, []).append(row)

    groups: dict[str, CycleGroup] = {}
    for start in sorted(buckets, reverse=True):
        cycle = resolve_cycle(cycle_start_day, start)
        groups[cycle.key] = CycleGroup(
            key=cycle.key,
            cycle=cycle,
            expenses=buckets[start],
            summary=summarize_rows(buckets[start]),
        )
    return groups
