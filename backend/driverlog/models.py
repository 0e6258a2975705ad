from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, Date, DateTime, Float, String, Text
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class WorkDayRecord(Base):
    __tablename__ = "work_days"

    id = Column(String(64), primary_key=True)
    driver_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    type = Column(String(20), nullable=False, default="WORK", index=True)
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)
    trips = Column(SQLiteJSON, nullable=False, default=list)
    workshop_hours = Column(Float, nullable=False, default=0)
    waiting_hours = Column(Float, nullable=False, default=0)
    waiting_note = Column(Text, nullable=True)
    extra_hourly_hours = Column(Float, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0)
    total_bonus = Column(Float, nullable=False, default=0)
    total_hourly_bonus = Column(Float, nullable=False, default=0)
    total_workshop = Column(Float, nullable=False, default=0)
    total_waiting = Column(Float, nullable=False, default=0)
    total_extra_hourly = Column(Float, nullable=False, default=0)
    total_weight = Column(Float, nullable=False, default=0)
    note = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class LocationRateRecord(Base):
    __tablename__ = "location_rates"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    rate = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class DriverRecord(Base):
    __tablename__ = "drivers"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AppSetting(Base):
    __tablename__ = "app_settings"

    driver_id = Column(String(64), primary_key=True)
    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
