from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

DayType = Literal["WORK", "VACATION", "SICK_LEAVE"]

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class LocationRate(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    rate: float


class Trip(BaseModel):
    """One load-and-deliver leg; ``rate`` and ``location_name`` are snapshots."""

    model_config = ConfigDict(from_attributes=True)
    id: str
    location_id: Optional[str] = None
    location_name: str = ""
    weight: float = 0.0
    rate: float = 0.0
    amount: float = 0.0
    bonus: float = 0.0


class Day(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    driver_id: Optional[str] = None
    date: dt.date
    type: DayType = "WORK"
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    trips: List[Trip] = Field(default_factory=list)
    workshop_hours: Optional[float] = 0.0
    waiting_hours: Optional[float] = 0.0
    waiting_note: Optional[str] = None
    extra_hourly_hours: Optional[float] = 0.0
    total_amount: float = 0.0
    total_bonus: float = 0.0
    total_hourly_bonus: float = 0.0
    total_workshop: float = 0.0
    total_waiting: float = 0.0
    total_extra_hourly: float = 0.0
    total_weight: float = 0.0
    note: Optional[str] = None


class PayrollSettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    vacation_rate_old: float
    vacation_rate_new: float
    sick_leave_rate: float
    hourly_rate: float
    extra_hourly_rate: float = 0.0
    workshop_rate: float
    waiting_rate: float
    total_vacation_days: int
    vacation_days_limit: int
    driver_id: Optional[str] = None

    @property
    def old_vacation_pool(self) -> int:
        return max(0, self.total_vacation_days - self.vacation_days_limit)


class PayrollSettingsUpdateRequest(BaseModel):
    vacation_rate_old: Optional[float] = Field(default=None, ge=0)
    vacation_rate_new: Optional[float] = Field(default=None, ge=0)
    sick_leave_rate: Optional[float] = Field(default=None, ge=0)
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    extra_hourly_rate: Optional[float] = Field(default=None, ge=0)
    workshop_rate: Optional[float] = Field(default=None, ge=0)
    waiting_rate: Optional[float] = Field(default=None, ge=0)
    total_vacation_days: Optional[int] = Field(default=None, ge=0)
    vacation_days_limit: Optional[int] = Field(default=None, ge=0)


class TripDraft(BaseModel):
    id: Optional[str] = None
    location_id: Optional[str] = None
    location_name: str = ""
    weight: float = Field(ge=0)
    rate: Optional[float] = Field(default=None, ge=0)


class DayDraft(BaseModel):
    """Day as submitted by a client. Derived totals are never accepted."""

    id: Optional[str] = None
    date: dt.date
    type: DayType = "WORK"
    start_time: Optional[str] = Field(default=None, pattern=CLOCK_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=CLOCK_PATTERN)
    trips: List[TripDraft] = Field(default_factory=list)
    workshop_hours: Optional[float] = Field(default=None, ge=0)
    waiting_hours: Optional[float] = Field(default=None, ge=0)
    waiting_note: Optional[str] = None
    extra_hourly_hours: Optional[float] = Field(default=None, ge=0)
    note: Optional[str] = None

    @field_validator("start_time", "end_time", "waiting_note", "note", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


class LocationCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    rate: float = Field(ge=0)


class LocationUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    rate: Optional[float] = Field(default=None, ge=0)


class Driver(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    code: str


class DriverCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)


class LoginRequest(BaseModel):
    code: str


class ReconcileResponse(BaseModel):
    changed_count: int


class SyncPullResponse(BaseModel):
    days: int
    locations: int
    settings_loaded: bool


class LocationStat(BaseModel):
    name: str
    rate: float
    count: int
    weight: float
    amount: float


class ExtraEntry(BaseModel):
    date: dt.date
    kind: Literal["WORKSHOP", "WAITING", "EXTRA_HOURLY"]
    note: str
    hours: float
    amount: float


class MonthlySummary(BaseModel):
    year: int
    month: int
    base_earnings: float = 0.0
    fuel_bonus: float = 0.0
    hourly_bonus: float = 0.0
    workshop_hours: float = 0.0
    workshop_money: float = 0.0
    waiting_hours: float = 0.0
    waiting_money: float = 0.0
    extra_hourly_hours: float = 0.0
    extra_hourly_money: float = 0.0
    total_earnings: float = 0.0
    total_weight: float = 0.0
    total_trips: int = 0
    days_worked: int = 0
    vacation_days: int = 0
    sick_days: int = 0
    locations: List[LocationStat] = Field(default_factory=list)
    extras: List[ExtraEntry] = Field(default_factory=list)


class BackupDocument(BaseModel):
    settings: Optional[PayrollSettings] = None
    locations: Optional[List[LocationRate]] = None
    days: Optional[List[Day]] = None
    export_date: Optional[dt.datetime] = None

    @model_serializer(mode="wrap", when_used="json")
    def _serialize(self, handler) -> dict[str, Any]:
        data = handler(self)
        if self.export_date is not None:
            data["export_date"] = _serialize_datetime(self.export_date)
        return data
