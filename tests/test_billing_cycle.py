from datetime import date, datetime, time, timedelta

from periods import END_OF_DAY, add_months, cycle_key, local_today, resolve_cycle


def test_cycle_starting_on_first_covers_calendar_month() -> None:
    cycle = resolve_cycle(1, date(2026, 1, 15))
    assert cycle.start == datetime(2026, 1, 1, 0, 0, 0)
    assert cycle.end == datetime(2026, 1, 31, 23, 59, 59, 999000)
    assert cycle.key == "JAN 26"


def test_reference_before_start_day_uses_previous_month() -> None:
    cycle = resolve_cycle(15, date(2026, 1, 10))
    assert cycle.start_date == date(2025, 12, 15)
    assert cycle.end_date == date(2026, 1, 14)
    assert cycle.key == "DEC 25"


def test_reference_on_start_day_opens_new_cycle() -> None:
    cycle = resolve_cycle(15, date(2026, 1, 15))
    assert cycle.start_date == date(2026, 1, 15)
    assert cycle.end_date == date(2026, 2, 14)


def test_cycle_spanning_february() -> None:
    cycle = resolve_cycle(28, date(2026, 3, 1))
    assert cycle.start_date == date(2026, 2, 28)
    assert cycle.end_date == date(2026, 3, 27)

    leap = resolve_cycle(1, date(2024, 2, 10))
    assert leap.end_date == date(2024, 2, 29)


def test_datetime_reference_is_accepted() -> None:
    cycle = resolve_cycle(5, datetime(2026, 4, 4, 22, 30))
    assert cycle.start_date == date(2026, 3, 5)


def test_contains_uses_inclusive_bounds() -> None:
    cycle = resolve_cycle(10, date(2026, 6, 20))
    assert cycle.contains(date(2026, 6, 10))
    assert cycle.contains(date(2026, 7, 9))
    assert cycle.contains(datetime.combine(date(2026, 7, 9), END_OF_DAY))
    assert not cycle.contains(date(2026, 6, 9))
    assert not cycle.contains(date(2026, 7, 10))


def test_every_day_belongs_to_exactly_one_stable_cycle() -> None:
    days = [date(2024, 1, 1) + timedelta(days=i) for i in range(400)]
    for start_day in range(1, 29):
        for day in days:
            cycle = resolve_cycle(start_day, day)
            assert cycle.contains(day)
            assert resolve_cycle(start_day, cycle.start) == cycle
            assert resolve_cycle(start_day, cycle.end) == cycle
            following = resolve_cycle(start_day, cycle.end_date + timedelta(days=1))
            assert following.start_date == cycle.end_date + timedelta(days=1)


def test_cycle_key_matches_iff_same_start() -> None:
    assert cycle_key(15, date(2026, 1, 14)) == cycle_key(15, date(2025, 12, 20))
    assert cycle_key(15, date(2026, 1, 14)) != cycle_key(15, date(2026, 1, 15))
    assert cycle_key(1, date(2026, 10, 19)) == "OCT 26"
    assert cycle_key(20, date(2026, 1, 5)) == "DEC 25"


def test_cycle_key_keeps_centuries_apart() -> None:
    assert cycle_key(1, date(1926, 1, 5)) == "JAN 1926"
    assert cycle_key(1, date(2126, 1, 5)) == "JAN 2126"
    assert cycle_key(1, date(2099, 12, 31)) == "DEC 99"
    assert cycle_key(1, date(1926, 1, 5)) != cycle_key(1, date(2026, 1, 5))


def test_add_months_crosses_year_boundaries() -> None:
    assert add_months(date(2025, 12, 15), 1) == date(2026, 1, 15)
    assert add_months(date(2026, 1, 15), -1) == date(2025, 12, 15)
    assert add_months(date(2026, 1, 28), 13) == date(2027, 2, 28)


def test_default_reference_is_local_today() -> None:
    cycle = resolve_cycle(1)
    assert cycle.contains(local_today())
    assert cycle.start.time() == time.min
