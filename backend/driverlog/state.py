from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.orm import Session

from .config import Settings
from .models import AppSetting
from .schemas import PayrollSettings


PAYROLL_FIELDS = (
    "vacation_rate_old",
    "vacation_rate_new",
    "sick_leave_rate",
    "hourly_rate",
    "extra_hourly_rate",
    "workshop_rate",
    "waiting_rate",
    "total_vacation_days",
    "vacation_days_limit",
)

INT_FIELDS = {"total_vacation_days", "vacation_days_limit"}


def _decode(key: str, raw: str) -> Any:
    if key in INT_FIELDS:
        return int(float(raw)) if raw else 0
    return float(raw) if raw else 0.0


class PayrollSettingsStore:
    """Per-driver payroll settings kept as key/value rows, with configured defaults."""

    def __init__(self, base_settings: Settings):
        self._base = base_settings

    def defaults(self, driver_id: str) -> PayrollSettings:
        base = self._base
        return PayrollSettings(
            vacation_rate_old=base.default_vacation_rate_old,
            vacation_rate_new=base.default_vacation_rate_new,
            sick_leave_rate=base.default_sick_leave_rate,
            hourly_rate=base.default_hourly_rate,
            extra_hourly_rate=base.default_extra_hourly_rate,
            workshop_rate=base.default_workshop_rate,
            waiting_rate=base.default_waiting_rate,
            total_vacation_days=base.default_total_vacation_days,
            vacation_days_limit=base.default_vacation_days_limit,
            driver_id=driver_id,
        )

    def load(self, session: Session, driver_id: str) -> PayrollSettings:
        current = self.defaults(driver_id)
        records = session.query(AppSetting).filter(AppSetting.driver_id == driver_id).all()
        decoded: Dict[str, Any] = {}
        for record in records:
            if record.key in PAYROLL_FIELDS:
                decoded[record.key] = _decode(record.key, record.value)
        if not decoded:
            return current
        return current.model_copy(update=decoded)

    def persist(self, session: Session, driver_id: str, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key not in PAYROLL_FIELDS or value is None:
                continue
            value = str(int(value)) if key in INT_FIELDS else str(float(value))
            record = (
                session.query(AppSetting)
                .filter(AppSetting.driver_id == driver_id, AppSetting.key == key)
                .one_or_none()
            )
            if record:
                record.value = value
            else:
                session.add(AppSetting(driver_id=driver_id, key=key, value=value))
        session.commit()
