"""Earnings engine.

Trip fees, per-day totals, the yearly vacation-rate tiers and the
reconciliation of recent trips against the current rate table. Every
function here works on in-memory records and returns new ones; nothing
reads configuration or touches storage. Payroll settings are always
passed in explicitly.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from .schemas import Day, LocationRate, PayrollSettings, Trip
from .utils import normalize_location_name

logger = logging.getLogger(__name__)

WORK = "WORK"
VACATION = "VACATION"
SICK_LEAVE = "SICK_LEAVE"

FUEL_BONUS_FRACTION = 0.20

# Default value of an untouched end-time field; a shift ending at it earns no hourly bonus.
END_TIME_SENTINEL = "04:00"

RATE_EPSILON = 0.001
MONEY_EPSILON = 0.01


class TripAmounts(NamedTuple):
    amount: float
    bonus: float


@dataclass
class ReconcileResult:
    days: List[Day]
    changed_count: int = 0
    changed_days: List[Day] = field(default_factory=list)


def calculate_trip(weight: float, rate: float) -> TripAmounts:
    amount = weight * rate
    return TripAmounts(amount=amount, bonus=amount * FUEL_BONUS_FRACTION)


def _clock_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def shift_hours(start: Optional[str], end: Optional[str]) -> float:
    """Length of a shift in hours; an end before the start wraps past midnight."""
    if not start or not end:
        return 0.0
    diff = _clock_minutes(end) - _clock_minutes(start)
    if diff < 0:
        diff += 24 * 60
    return diff / 60


def _zeroed() -> Dict[str, object]:
    return {
        "trips": [],
        "workshop_hours": 0.0,
        "waiting_hours": 0.0,
        "extra_hourly_hours": 0.0,
        "total_bonus": 0.0,
        "total_hourly_bonus": 0.0,
        "total_workshop": 0.0,
        "total_waiting": 0.0,
        "total_extra_hourly": 0.0,
        "total_weight": 0.0,
    }


def calculate_day_totals(day: Day, settings: PayrollSettings) -> Day:
    if day.type == VACATION:
        # An amount already assigned by the vacation allocator survives a re-save.
        amount = day.total_amount or settings.vacation_rate_new
        return day.model_copy(update={**_zeroed(), "total_amount": amount})
    if day.type == SICK_LEAVE:
        return day.model_copy(update={**_zeroed(), "total_amount": settings.sick_leave_rate})

    total_hourly_bonus = 0.0
    if day.start_time and day.end_time and day.end_time != END_TIME_SENTINEL:
        total_hourly_bonus = shift_hours(day.start_time, day.end_time) * settings.hourly_rate

    total_workshop = (day.workshop_hours or 0) * settings.workshop_rate
    total_waiting = (day.waiting_hours or 0) * settings.waiting_rate
    total_extra_hourly = (day.extra_hourly_hours or 0) * settings.extra_hourly_rate

    total_amount = 0.0
    total_bonus = 0.0
    total_weight = 0.0
    trips: List[Trip] = []
    for trip in day.trips:
        amount, bonus = calculate_trip(trip.weight, trip.rate)
        total_amount += amount
        total_bonus += bonus
        total_weight += trip.weight
        trips.append(trip.model_copy(update={"amount": amount, "bonus": bonus}))

    return day.model_copy(
        update={
            "trips": trips,
            "total_amount": total_amount,
            "total_bonus": total_bonus,
            "total_hourly_bonus": total_hourly_bonus,
            "total_workshop": total_workshop,
            "total_waiting": total_waiting,
            "total_extra_hourly": total_extra_hourly,
            "total_weight": total_weight,
        }
    )


def sort_newest_first(days: Iterable[Day]) -> List[Day]:
    return sorted(days, key=lambda day: day.date, reverse=True)


def recalculate_vacations(days: Sequence[Day], settings: PayrollSettings) -> List[Day]:
    """Re-assign old/new vacation rates for every year present in ``days``.

    Within a calendar year the earliest ``settings.old_vacation_pool``
    vacation days are paid ``vacation_rate_old`` and the remaining ones
    ``vacation_rate_new``. Days sharing a date keep their input order.
    The whole collection is returned, newest first.
    """
    old_pool = settings.old_vacation_pool
    by_year: Dict[int, List[Day]] = defaultdict(list)
    for day in days:
        if day.type == VACATION:
            by_year[day.date.year].append(day)

    amounts: Dict[str, float] = {}
    for vacation_days in by_year.values():
        ordered = sorted(vacation_days, key=lambda day: day.date)
        for index, day in enumerate(ordered):
            amounts[day.id] = settings.vacation_rate_old if index < old_pool else settings.vacation_rate_new

    updated: List[Day] = []
    changed = 0
    for day in days:
        amount = amounts.get(day.id)
        if amount is not None and day.total_amount != amount:
            day = day.model_copy(update={"total_amount": amount})
            changed += 1
        updated.append(day)

    if changed:
        logger.info("Vacation tiers reassigned for %d day(s) across %d year(s)", changed, len(by_year))
    return sort_newest_first(updated)


def reconcile_cutoff(today: dt.date) -> dt.date:
    """First day of the month preceding ``today``."""
    last_of_previous = today.replace(day=1) - dt.timedelta(days=1)
    return last_of_previous.replace(day=1)


def _match_location(
    trip: Trip,
    by_id: Dict[str, LocationRate],
    by_name: Dict[str, LocationRate],
) -> Optional[LocationRate]:
    location = by_id.get(trip.location_id) if trip.location_id else None
    if location is None:
        name_key = normalize_location_name(trip.location_name)
        if name_key:
            location = by_name.get(name_key)
    return location


def _reconcile_trip(trip: Trip, location: LocationRate) -> Optional[Trip]:
    amount, bonus = calculate_trip(trip.weight, location.rate)
    stale = (
        abs(location.rate - (trip.rate or 0)) > RATE_EPSILON
        or location.name != trip.location_name
        or location.id != trip.location_id
        or abs(amount - trip.amount) > MONEY_EPSILON
        or abs(bonus - trip.bonus) > MONEY_EPSILON
    )
    if not stale:
        return None
    return trip.model_copy(
        update={
            "location_id": location.id,
            "location_name": location.name,
            "rate": location.rate,
            "amount": amount,
            "bonus": bonus,
        }
    )


def update_recent_history_rates(
    days: Sequence[Day],
    rate_table: Sequence[LocationRate],
    settings: PayrollSettings,
    today: Optional[dt.date] = None,
) -> ReconcileResult:
    """Re-bind trips of the current and previous month to the rate table.

    Trips are matched by location id first and by case-insensitive name
    when the id is unknown. Days before the cutoff and non-work days are
    returned untouched, as are trips without a matching location.
    """
    cutoff = reconcile_cutoff(today or dt.date.today())
    by_id: Dict[str, LocationRate] = {location.id: location for location in rate_table}
    by_name: Dict[str, LocationRate] = {}
    for location in rate_table:
        name_key = normalize_location_name(location.name)
        if name_key:
            by_name.setdefault(name_key, location)

    result = ReconcileResult(days=[])
    for day in days:
        if day.date < cutoff or day.type != WORK:
            result.days.append(day)
            continue

        modified = False
        trips: List[Trip] = []
        for trip in day.trips:
            location = _match_location(trip, by_id, by_name)
            replacement = _reconcile_trip(trip, location) if location is not None else None
            if replacement is not None:
                modified = True
                trips.append(replacement)
            else:
                trips.append(trip)

        if not modified:
            result.days.append(day)
            continue

        updated = calculate_day_totals(day.model_copy(update={"trips": trips}), settings)
        result.days.append(updated)
        result.changed_days.append(updated)
        result.changed_count += 1

    if result.changed_count:
        logger.info("Reconciled trips on %d day(s) since %s", result.changed_count, cutoff.isoformat())
    return result
