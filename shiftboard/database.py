from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.types import Time


DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'shiftboard.db').as_posix()}"
DATABASE_URL = os.getenv("SHIFTBOARD_DATABASE_URL", DEFAULT_DATABASE_URL)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def normalize_week_start(date_value: datetime.date) -> datetime.date:
    """Return the Monday for the provided date."""
    if isinstance(date_value, datetime.datetime):
        date_value = date_value.date()
    weekday = date_value.weekday()
    if weekday == 0:
        return date_value
    return date_value - datetime.timedelta(days=weekday)


def format_week_label(week_start: datetime.date) -> str:
    iso_year, iso_week, _ = week_start.isocalendar()
    end = week_start + datetime.timedelta(days=6)
    start_str = week_start.strftime("%b %d")
    end_str = end.strftime("%b %d")
    if week_start.year != end.year:
        start_str = week_start.strftime("%b %d %Y")
        end_str = end.strftime("%b %d %Y")
    return f"{iso_year} W{iso_week:02d} ({start_str} - {end_str})"


class Base(DeclarativeBase):
    """Metadata for every scheduling table."""

    pass


class StaffMember(Base):
    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    area: Mapped[str] = mapped_column(String(8), nullable=False, default="Front")
    email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    claimed_by_uid: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @property
    def is_claimed(self) -> bool:
        return bool(self.claimed_by_uid)


class Profile(Base):
    __tablename__ = "profiles"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    area: Mapped[str] = mapped_column(String(8), nullable=False, default="Front")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_start: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    start: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    area: Mapped[str] = mapped_column(String(8), nullable=False)
    role: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    employee_uid: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    employee_name: Mapped[str] = mapped_column(String(120), nullable=False)
    employee_email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    note: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class ShiftRequest(Base):
    __tablename__ = "shift_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="PENDING_TARGET")
    week_start: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    area: Mapped[str] = mapped_column(String(8), nullable=False)
    requester_uid: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    requester_name: Mapped[str] = mapped_column(String(120), nullable=False)
    requester_email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    target_uid: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    target_name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_email: Mapped[str] = mapped_column(String(160), nullable=False)
    target_shift_id: Mapped[int] = mapped_column(Integer, nullable=False)
    requester_shift_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class TimeOffRequest(Base):
    __tablename__ = "timeoff_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    employee_name: Mapped[str] = mapped_column(String(120), nullable=False)
    employee_email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False, default="FULL")
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="PENDING")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    decided_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(160), nullable=True)


class AvailabilityRequest(Base):
    __tablename__ = "availability_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(128), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(120), nullable=False)
    employee_email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    manager_email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    proposedJSON: Mapped[str] = mapped_column(String(1000), nullable=False, default="{}")
    summary: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="PENDING")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    decided_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(160), nullable=True)

    def proposed_days(self) -> Dict[str, str]:
        try:
            value = json.loads(self.proposedJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class EffectiveAvailability(Base):
    __tablename__ = "availability_effective"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    daysJSON: Mapped[str] = mapped_column(String(1000), nullable=False, default="{}")
    updated_by: Mapped[str] = mapped_column(String(160), nullable=False, default="manager")
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def days(self) -> Dict[str, str]:
        try:
            value = json.loads(self.daysJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AppConfigRecord(Base):
    __tablename__ = "app_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(40), nullable=False, default="main")
    paramsJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(160), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_app_config_name"),)

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(160), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Shift")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


engine = create_engine(DATABASE_URL, echo=False, future=True, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    if bind is None:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind or engine)


def get_app_config_record(session, name: str = "main") -> Optional[AppConfigRecord]:
    stmt = select(AppConfigRecord).where(AppConfigRecord.name == name)
    return session.scalars(stmt).first()


def upsert_app_config_record(
    session, params_dict: Dict, *, edited_by: str = "system", name: str = "main"
) -> AppConfigRecord:
    payload = params_dict if isinstance(params_dict, dict) else {}
    existing = get_app_config_record(session, name)
    if existing:
        merged = existing.params_dict()
        merged.update(payload)
        existing.paramsJSON = json.dumps(merged)
        existing.lastEditedBy = edited_by
        existing.lastEditedAt = utcnow()
        session.commit()
        session.refresh(existing)
        return existing
    record = AppConfigRecord(
        name=name,
        paramsJSON=json.dumps(payload),
        lastEditedBy=edited_by,
        lastEditedAt=utcnow(),
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Shift",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id or "system",
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
