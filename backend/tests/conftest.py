from __future__ import annotations

import datetime as dt
import tempfile
from pathlib import Path
from typing import Any, Generator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from driverlog import models
from driverlog.database import get_db
from driverlog.main import app, get_mirror
from driverlog.remote import MirrorError
from driverlog.schemas import Day, Driver, LocationRate, PayrollSettings, Trip


class FakeMirror:
    """Records every push instead of talking to a remote store."""

    enabled = True

    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []
        self.remote_days: List[Day] = []
        self.remote_settings: Optional[PayrollSettings] = None
        self.remote_locations: List[LocationRate] = []
        self.remote_drivers: List[Driver] = []

    def upsert_day(self, driver_id: str, day: Day) -> None:
        self.calls.append(("upsert_day", driver_id, day.id))

    def delete_day(self, driver_id: str, day_id: str) -> None:
        self.calls.append(("delete_day", driver_id, day_id))

    def upsert_days(self, driver_id: str, days: List[Day]) -> int:
        self.calls.append(("upsert_days", driver_id, [day.id for day in days]))
        return 1

    def push_settings(self, driver_id: str, settings: PayrollSettings) -> None:
        self.calls.append(("push_settings", driver_id))

    def push_locations(self, locations: List[LocationRate]) -> None:
        self.calls.append(("push_locations", len(locations)))

    def push_drivers(self, drivers: List[Driver]) -> None:
        self.calls.append(("push_drivers", len(drivers)))

    def fetch_days(self, driver_id: str) -> List[Day]:
        return list(self.remote_days)

    def fetch_settings(self, driver_id: str) -> Optional[PayrollSettings]:
        return self.remote_settings

    def fetch_locations(self) -> List[LocationRate]:
        return list(self.remote_locations)

    def fetch_drivers(self) -> List[Driver]:
        return list(self.remote_drivers)

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]


class BrokenMirror(FakeMirror):
    def _fail(self, *args: Any) -> None:
        raise MirrorError("remote store offline")

    upsert_day = _fail
    delete_day = _fail
    upsert_days = _fail
    push_settings = _fail
    push_locations = _fail
    push_drivers = _fail
    fetch_days = _fail
    fetch_settings = _fail
    fetch_locations = _fail
    fetch_drivers = _fail


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def mirror() -> FakeMirror:
    return FakeMirror()


@pytest.fixture(scope="function")
def client(session: Session, mirror: FakeMirror) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mirror] = lambda: mirror
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    from driverlog.config import settings

    return {"X-Admin-Pin": settings.admin_pin}


@pytest.fixture()
def payroll() -> PayrollSettings:
    return PayrollSettings(
        vacation_rate_old=210.0,
        vacation_rate_new=230.0,
        sick_leave_rate=150.0,
        hourly_rate=4.5,
        extra_hourly_rate=15.0,
        workshop_rate=10.0,
        waiting_rate=8.0,
        total_vacation_days=30,
        vacation_days_limit=26,
        driver_id="driver-1",
    )


def make_trip(weight: float, rate: float, **overrides: Any) -> Trip:
    data = {
        "id": overrides.pop("id", f"trip-{weight}-{rate}"),
        "location_id": "loc-1",
        "location_name": "Siemianowice DOMBUD",
        "weight": weight,
        "rate": rate,
    }
    data.update(overrides)
    return Trip(**data)


def make_day(day_id: str, date: dt.date, type: str = "WORK", **overrides: Any) -> Day:
    return Day(id=day_id, driver_id="driver-1", date=date, type=type, **overrides)
