from __future__ import annotations

import datetime as dt
import io
import logging
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.orm import Session

from .calculations import VACATION, calculate_day_totals, recalculate_vacations, update_recent_history_rates
from .config import settings
from .models import DriverRecord, LocationRateRecord, WorkDayRecord
from .remote import MirrorError, RemoteMirror
from .reports import summarize_month, write_summary_pdf, write_summary_xlsx
from .schemas import (
    BackupDocument,
    Day,
    DayDraft,
    Driver,
    DriverCreateRequest,
    LocationCreateRequest,
    LocationRate,
    LocationUpdateRequest,
    MonthlySummary,
    PayrollSettings,
    SyncPullResponse,
    Trip,
)
from .state import PayrollSettingsStore
from .utils import new_id, normalize_location_name, parse_decimal

logger = logging.getLogger(__name__)

LOCAL_TZ = ZoneInfo(settings.timezone)

EXPORT_FORMATS = {"pdf", "xlsx"}

NAME_HEADER_HINTS = ("miejscow", "nazwa", "cel", "name", "location")
RATE_HEADER_HINTS = ("stawk", "cena", "przelicz", "rate")

# Rate-table entries above this are a fixed price per trip, booked with a weight of 1
FLAT_PRICE_THRESHOLD = 10.0

DAY_FIELDS = (
    "date",
    "type",
    "start_time",
    "end_time",
    "workshop_hours",
    "waiting_hours",
    "waiting_note",
    "extra_hourly_hours",
    "total_amount",
    "total_bonus",
    "total_hourly_bonus",
    "total_workshop",
    "total_waiting",
    "total_extra_hourly",
    "total_weight",
    "note",
)

settings_store = PayrollSettingsStore(settings)


def _today() -> dt.date:
    return dt.datetime.now(LOCAL_TZ).date()


def _mirror(operation: Callable[..., Any], *args: Any) -> None:
    """Run a remote push; local data stays authoritative when it fails."""
    try:
        operation(*args)
    except MirrorError as exc:
        logger.warning("Remote mirror call %s failed: %s", operation.__name__, exc)


def _parse_month(value: str) -> Tuple[int, int]:
    try:
        year_text, month_text = value.split("-")
        year, month = int(year_text), int(month_text)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Month must use the YYYY-MM format") from exc
    _validate_month(month)
    return year, month


def _validate_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Month must be between 1 and 12")


# ----------------------------------------------------------------------
# Work days
# ----------------------------------------------------------------------
def _apply_day(record: WorkDayRecord, day: Day) -> None:
    for field in DAY_FIELDS:
        setattr(record, field, getattr(day, field))
    record.trips = [trip.model_dump(mode="json") for trip in day.trips]


def load_days(db: Session, driver_id: str) -> List[Day]:
    records = (
        db.query(WorkDayRecord)
        .filter(WorkDayRecord.driver_id == driver_id)
        .order_by(WorkDayRecord.date.desc())
        .all()
    )
    return [Day.model_validate(record) for record in records]


def _owned_day_records(db: Session, driver_id: str, days: Sequence[Day]) -> Dict[str, WorkDayRecord]:
    """Stored records for ``days`` keyed by id; 409 when any id belongs to another driver."""
    ids = [day.id for day in days]
    if not ids:
        return {}
    existing = {
        record.id: record
        for record in db.query(WorkDayRecord).filter(WorkDayRecord.id.in_(ids)).all()
    }
    if any(record.driver_id != driver_id for record in existing.values()):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Day id belongs to another driver")
    return existing


def save_all_days(db: Session, mirror: RemoteMirror, driver_id: str, days: Sequence[Day], sync: bool) -> None:
    """Upsert ``days`` by id; ``sync`` mirrors the whole batch to the remote store."""
    existing = _owned_day_records(db, driver_id, days)
    for day in days:
        record = existing.get(day.id)
        if record is None:
            record = WorkDayRecord(id=day.id, driver_id=driver_id)
            db.add(record)
        _apply_day(record, day.model_copy(update={"driver_id": driver_id}))
    db.commit()
    if sync:
        _mirror(mirror.upsert_days, driver_id, list(days))


def list_days(db: Session, driver_id: str, month: Optional[str] = None) -> List[Day]:
    days = load_days(db, driver_id)
    if not month:
        return days
    year, month_number = _parse_month(month)
    return [day for day in days if day.date.year == year and day.date.month == month_number]


def get_day(db: Session, driver_id: str, day_id: str) -> Day:
    record = (
        db.query(WorkDayRecord)
        .filter(WorkDayRecord.driver_id == driver_id, WorkDayRecord.id == day_id)
        .one_or_none()
    )
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Day not found")
    return Day.model_validate(record)


def _find_location(
    locations: Sequence[LocationRate], location_id: Optional[str], location_name: Optional[str]
) -> Optional[LocationRate]:
    if location_id:
        for location in locations:
            if location.id == location_id:
                return location
    name_key = normalize_location_name(location_name)
    if name_key:
        for location in locations:
            if normalize_location_name(location.name) == name_key:
                return location
    return None


def _draft_to_day(db: Session, driver_id: str, draft: DayDraft, existing: Optional[Day]) -> Day:
    locations: Optional[List[LocationRate]] = None
    trips: List[Trip] = []
    for trip in draft.trips:
        location_id = trip.location_id
        location_name = trip.location_name
        weight = trip.weight
        rate = trip.rate
        if rate is None:
            # Snapshot the rate in effect when the trip is entered
            if locations is None:
                locations = list_locations(db)
            location = _find_location(locations, trip.location_id, trip.location_name)
            if location is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown location for trip")
            location_id = location.id
            location_name = location.name
            rate = location.rate
            if rate > FLAT_PRICE_THRESHOLD:
                weight = 1.0
        trips.append(
            Trip(
                id=trip.id or new_id(),
                location_id=location_id,
                location_name=location_name,
                weight=weight,
                rate=rate,
            )
        )

    total_amount = 0.0
    if existing is not None and existing.type == VACATION:
        total_amount = existing.total_amount
    return Day(
        id=draft.id or new_id(),
        driver_id=driver_id,
        date=draft.date,
        type=draft.type,
        start_time=draft.start_time,
        end_time=draft.end_time,
        trips=trips,
        workshop_hours=draft.workshop_hours or 0.0,
        waiting_hours=draft.waiting_hours or 0.0,
        waiting_note=draft.waiting_note,
        extra_hourly_hours=draft.extra_hourly_hours or 0.0,
        total_amount=total_amount,
        note=draft.note,
    )


def save_day(db: Session, mirror: RemoteMirror, driver_id: str, draft: DayDraft) -> Day:
    payroll = settings_store.load(db, driver_id)
    days = load_days(db, driver_id)
    existing = next((day for day in days if draft.id and day.id == draft.id), None)
    day = calculate_day_totals(_draft_to_day(db, driver_id, draft, existing), payroll)

    if existing is not None:
        days = [day if item.id == day.id else item for item in days]
    else:
        days.append(day)

    if day.type == VACATION or any(item.type == VACATION for item in days):
        days = recalculate_vacations(days, payroll)
        save_all_days(db, mirror, driver_id, days, sync=True)
        return next(item for item in days if item.id == day.id)

    save_all_days(db, mirror, driver_id, [day], sync=False)
    _mirror(mirror.upsert_day, driver_id, day)
    return day


def delete_day(db: Session, mirror: RemoteMirror, driver_id: str, day_id: str) -> None:
    record = (
        db.query(WorkDayRecord)
        .filter(WorkDayRecord.driver_id == driver_id, WorkDayRecord.id == day_id)
        .one_or_none()
    )
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Day not found")
    payroll = settings_store.load(db, driver_id)
    remaining = [day for day in load_days(db, driver_id) if day.id != day_id]
    before = {day.id: day for day in remaining}
    updated = recalculate_vacations(remaining, payroll)
    changed = [day for day in updated if before.get(day.id) is not day]

    db.delete(record)
    save_all_days(db, mirror, driver_id, changed, sync=False)
    _mirror(mirror.delete_day, driver_id, day_id)
    if changed:
        _mirror(mirror.upsert_days, driver_id, updated)


def reconcile_recent_rates(
    db: Session, mirror: RemoteMirror, driver_id: str, today: Optional[dt.date] = None
) -> int:
    payroll = settings_store.load(db, driver_id)
    result = update_recent_history_rates(
        load_days(db, driver_id), list_locations(db), payroll, today or _today()
    )
    if result.changed_count:
        save_all_days(db, mirror, driver_id, result.changed_days, sync=False)
        _mirror(mirror.upsert_days, driver_id, result.changed_days)
    return result.changed_count


# ----------------------------------------------------------------------
# Payroll settings
# ----------------------------------------------------------------------
def get_payroll_settings(db: Session, driver_id: str) -> PayrollSettings:
    return settings_store.load(db, driver_id)


def update_payroll_settings(
    db: Session, mirror: RemoteMirror, driver_id: str, updates: Dict[str, Any]
) -> PayrollSettings:
    settings_store.persist(db, driver_id, updates)
    payroll = settings_store.load(db, driver_id)
    _mirror(mirror.push_settings, driver_id, payroll)

    # Stored vacation amounts depend on the pool size and the tier rates
    days = load_days(db, driver_id)
    before = {day.id: day for day in days}
    updated = recalculate_vacations(days, payroll)
    changed = [day for day in updated if before.get(day.id) is not day]
    if changed:
        save_all_days(db, mirror, driver_id, changed, sync=True)
    return payroll


# ----------------------------------------------------------------------
# Rate table
# ----------------------------------------------------------------------
def list_locations(db: Session) -> List[LocationRate]:
    records = db.query(LocationRateRecord).order_by(LocationRateRecord.name).all()
    return [LocationRate.model_validate(record) for record in records]


def _get_location_record(db: Session, location_id: str) -> LocationRateRecord:
    record = db.get(LocationRateRecord, location_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
    return record


def create_location(db: Session, mirror: RemoteMirror, payload: LocationCreateRequest) -> LocationRate:
    record = LocationRateRecord(id=new_id(), name=payload.name.strip(), rate=payload.rate)
    db.add(record)
    db.commit()
    db.refresh(record)
    _mirror(mirror.push_locations, list_locations(db))
    return LocationRate.model_validate(record)


def update_location(
    db: Session, mirror: RemoteMirror, location_id: str, payload: LocationUpdateRequest
) -> LocationRate:
    record = _get_location_record(db, location_id)
    if payload.name is not None:
        record.name = payload.name.strip()
    if payload.rate is not None:
        record.rate = payload.rate
    db.add(record)
    db.commit()
    db.refresh(record)
    _mirror(mirror.push_locations, list_locations(db))
    return LocationRate.model_validate(record)


def delete_location(db: Session, mirror: RemoteMirror, location_id: str) -> None:
    record = _get_location_record(db, location_id)
    db.delete(record)
    db.commit()
    _mirror(mirror.push_locations, list_locations(db))


def _store_locations(db: Session, locations: Sequence[LocationRate], replace: bool) -> None:
    if replace:
        db.query(LocationRateRecord).delete()
    for location in locations:
        record = db.get(LocationRateRecord, location.id)
        if record is None:
            db.add(LocationRateRecord(id=location.id, name=location.name, rate=location.rate))
        else:
            record.name = location.name
            record.rate = location.rate
    db.commit()


def replace_locations(db: Session, mirror: RemoteMirror, locations: Sequence[LocationRate]) -> List[LocationRate]:
    _store_locations(db, locations, replace=True)
    stored = list_locations(db)
    _mirror(mirror.push_locations, stored)
    return stored


def _header_index(headers: Sequence[str], hints: Sequence[str]) -> int:
    for index, header in enumerate(headers):
        if any(hint in header for hint in hints):
            return index
    return -1


def parse_rate_sheet(content: bytes) -> List[LocationRate]:
    """Read a rate table from the first sheet of an XLSX workbook.

    The header row must contain a name column and a rate column; rows
    without a name or a numeric rate are skipped.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is not a valid XLSX workbook") from exc
    rows = list(workbook.active.iter_rows(values_only=True))
    workbook.close()
    if len(rows) < 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Spreadsheet is empty")

    headers = [str(cell).lower() if cell is not None else "" for cell in rows[0]]
    name_index = _header_index(headers, NAME_HEADER_HINTS)
    rate_index = _header_index(headers, RATE_HEADER_HINTS)
    if name_index == -1 or rate_index == -1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Spreadsheet needs a name column and a rate column",
        )

    locations: List[LocationRate] = []
    for row in rows[1:]:
        if len(row) <= max(name_index, rate_index):
            continue
        name = row[name_index]
        rate = parse_decimal(row[rate_index])
        if name is None or not str(name).strip() or rate is None:
            continue
        locations.append(LocationRate(id=new_id(), name=str(name).strip(), rate=rate))
    return locations


def import_locations_xlsx(db: Session, mirror: RemoteMirror, content: bytes, append: bool) -> List[LocationRate]:
    imported = parse_rate_sheet(content)
    if not imported:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No rows could be imported")
    _store_locations(db, imported, replace=not append)
    stored = list_locations(db)
    _mirror(mirror.push_locations, stored)
    logger.info("Imported %d location(s) from spreadsheet (append=%s)", len(imported), append)
    return stored


# ----------------------------------------------------------------------
# Drivers
# ----------------------------------------------------------------------
def list_drivers(db: Session) -> List[Driver]:
    records = db.query(DriverRecord).order_by(DriverRecord.name).all()
    return [Driver.model_validate(record) for record in records]


def create_driver(db: Session, mirror: RemoteMirror, payload: DriverCreateRequest) -> Driver:
    code = payload.code.strip()
    if db.query(DriverRecord).filter(DriverRecord.code == code).one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Driver code already in use")
    record = DriverRecord(id=new_id(), name=payload.name.strip(), code=code)
    db.add(record)
    db.commit()
    db.refresh(record)
    _mirror(mirror.push_drivers, list_drivers(db))
    return Driver.model_validate(record)


def delete_driver(db: Session, mirror: RemoteMirror, driver_id: str) -> None:
    record = db.get(DriverRecord, driver_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Driver not found")
    db.delete(record)
    db.commit()
    _mirror(mirror.push_drivers, list_drivers(db))


def _store_drivers(db: Session, drivers: Sequence[Driver]) -> None:
    for driver in drivers:
        record = db.get(DriverRecord, driver.id)
        if record is None:
            db.add(DriverRecord(id=driver.id, name=driver.name, code=driver.code))
        else:
            record.name = driver.name
            record.code = driver.code
    db.commit()


def login(db: Session, mirror: RemoteMirror, code: str) -> Driver:
    code = code.strip()
    if not code:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid driver code")
    record = db.query(DriverRecord).filter(DriverRecord.code == code).one_or_none()
    if record is None and mirror.enabled:
        # The roster is managed centrally; refresh it before rejecting the code
        try:
            remote_drivers = mirror.fetch_drivers()
        except MirrorError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Remote store unavailable") from exc
        _store_drivers(db, remote_drivers)
        record = db.query(DriverRecord).filter(DriverRecord.code == code).one_or_none()
    if record is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid driver code")
    return Driver.model_validate(record)


# ----------------------------------------------------------------------
# Remote profile and backups
# ----------------------------------------------------------------------
def _recompute_all(days: Sequence[Day], payroll: PayrollSettings, driver_id: str) -> List[Day]:
    recomputed = [
        calculate_day_totals(day.model_copy(update={"driver_id": driver_id}), payroll) for day in days
    ]
    return recalculate_vacations(recomputed, payroll)


def pull_remote_profile(db: Session, mirror: RemoteMirror, driver_id: str) -> SyncPullResponse:
    try:
        remote_settings = mirror.fetch_settings(driver_id)
        remote_days = mirror.fetch_days(driver_id)
    except MirrorError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Remote store unavailable") from exc
    try:
        locations = mirror.fetch_locations()
    except MirrorError as exc:
        logger.warning("Remote rate table unavailable, keeping local rates: %s", exc)
        locations = []

    merged: Dict[str, Day] = {day.id: day for day in remote_days}
    for day in load_days(db, driver_id):
        merged.setdefault(day.id, day)
    _owned_day_records(db, driver_id, list(merged.values()))

    if locations:
        _store_locations(db, locations, replace=True)
    if remote_settings is not None:
        settings_store.persist(db, driver_id, remote_settings.model_dump())

    days = _recompute_all(list(merged.values()), settings_store.load(db, driver_id), driver_id)
    save_all_days(db, mirror, driver_id, days, sync=False)
    logger.info("Pulled %d remote day(s) for driver %s, %d after merge", len(remote_days), driver_id, len(days))
    return SyncPullResponse(days=len(days), locations=len(locations), settings_loaded=remote_settings is not None)


def export_backup(db: Session, driver_id: str) -> BackupDocument:
    return BackupDocument(
        settings=settings_store.load(db, driver_id),
        locations=list_locations(db),
        days=load_days(db, driver_id),
        export_date=dt.datetime.now(dt.timezone.utc),
    )


def import_backup(db: Session, mirror: RemoteMirror, driver_id: str, document: BackupDocument) -> BackupDocument:
    if document.days is not None:
        _owned_day_records(db, driver_id, document.days)
    if document.settings is not None:
        settings_store.persist(db, driver_id, document.settings.model_dump())
        _mirror(mirror.push_settings, driver_id, settings_store.load(db, driver_id))
    if document.locations is not None:
        replace_locations(db, mirror, document.locations)
    if document.days is not None:
        days = _recompute_all(document.days, settings_store.load(db, driver_id), driver_id)
        save_all_days(db, mirror, driver_id, days, sync=True)
    return export_backup(db, driver_id)


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------
def monthly_summary(db: Session, driver_id: str, year: int, month: int) -> MonthlySummary:
    _validate_month(month)
    return summarize_month(load_days(db, driver_id), year, month)


def export_monthly_report(db: Session, driver_id: str, year: int, month: int, fmt: str) -> Path:
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export format")
    summary = monthly_summary(db, driver_id, year, month)
    path = settings.export_dir / f"report_{driver_id}_{year}-{month:02d}.{fmt}"
    if fmt == "pdf":
        write_summary_pdf(path, f"Monthly report {month:02d}/{year}", summary, settings.currency)
    else:
        write_summary_xlsx(path, summary, settings.currency)
    return path
