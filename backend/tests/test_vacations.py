from __future__ import annotations

import datetime as dt

from driverlog.calculations import recalculate_vacations

from conftest import make_day


def _vacations(year: int, count: int, start_day: int = 1):
    return [make_day(f"v{year}-{i}", dt.date(year, 3, start_day + i), type="VACATION") for i in range(count)]


def _amounts(days):
    return {day.id: day.total_amount for day in days}


def test_earliest_days_use_old_rate(payroll) -> None:
    result = recalculate_vacations(_vacations(2024, 6), payroll)
    amounts = _amounts(result)
    assert [amounts[f"v2024-{i}"] for i in range(6)] == [210.0] * 4 + [230.0] * 2


def test_result_is_newest_first(payroll) -> None:
    days = _vacations(2024, 3) + [make_day("w1", dt.date(2024, 1, 2))]
    result = recalculate_vacations(days, payroll)
    dates = [day.date for day in result]
    assert dates == sorted(dates, reverse=True)
    assert len(result) == 4


def test_recalculation_is_idempotent(payroll) -> None:
    first = recalculate_vacations(_vacations(2024, 6), payroll)
    second = recalculate_vacations(first, payroll)
    assert _amounts(first) == _amounts(second)
    assert all(a is b for a, b in zip(first, second))


def test_removing_an_early_day_shifts_tiers(payroll) -> None:
    days = recalculate_vacations(_vacations(2024, 6), payroll)
    remaining = [day for day in days if day.id != "v2024-1"]
    amounts = _amounts(recalculate_vacations(remaining, payroll))
    assert amounts["v2024-4"] == 210.0
    assert amounts["v2024-5"] == 230.0


def test_each_year_has_its_own_pool(payroll) -> None:
    days = _vacations(2023, 5) + _vacations(2024, 2)
    amounts = _amounts(recalculate_vacations(days, payroll))
    assert amounts["v2023-4"] == 230.0
    assert amounts["v2024-0"] == 210.0
    assert amounts["v2024-1"] == 210.0


def test_empty_old_pool_pays_new_rate(payroll) -> None:
    settings = payroll.model_copy(update={"total_vacation_days": 26, "vacation_days_limit": 26})
    amounts = _amounts(recalculate_vacations(_vacations(2024, 3), settings))
    assert set(amounts.values()) == {230.0}


def test_limit_above_total_is_treated_as_empty_pool(payroll) -> None:
    settings = payroll.model_copy(update={"total_vacation_days": 20, "vacation_days_limit": 26})
    assert settings.old_vacation_pool == 0
    amounts = _amounts(recalculate_vacations(_vacations(2024, 2), settings))
    assert set(amounts.values()) == {230.0}


def test_fewer_days_than_pool_all_old(payroll) -> None:
    amounts = _amounts(recalculate_vacations(_vacations(2024, 3), payroll))
    assert set(amounts.values()) == {210.0}


def test_same_date_keeps_input_order(payroll) -> None:
    settings = payroll.model_copy(update={"total_vacation_days": 27, "vacation_days_limit": 26})
    first = make_day("a", dt.date(2024, 7, 1), type="VACATION")
    second = make_day("b", dt.date(2024, 7, 1), type="VACATION")
    amounts = _amounts(recalculate_vacations([first, second], settings))
    assert amounts == {"a": 210.0, "b": 230.0}


def test_non_vacation_days_untouched(payroll) -> None:
    work = make_day("w1", dt.date(2024, 3, 1), total_amount=42.0)
    sick = make_day("s1", dt.date(2024, 3, 2), type="SICK_LEAVE", total_amount=150.0)
    result = recalculate_vacations([work, sick] + _vacations(2024, 1, start_day=5), payroll)
    by_id = {day.id: day for day in result}
    assert by_id["w1"] is work
    assert by_id["s1"] is sick
