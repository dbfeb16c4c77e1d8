from __future__ import annotations

import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shiftboard.config import AppConfig
from shiftboard.database import Shift, init_database
from shiftboard.mailer import RecordingMailer
from shiftboard.notifications import NotificationDispatcher, Notifier

WEEK = datetime.date(2025, 3, 3)
MANAGER_EMAIL = "boss@example.com"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_database(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(app_url="https://shifts.example.com", manager_email=MANAGER_EMAIL, timeoff_min_days=7)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def notifier(session, mailer, config) -> Notifier:
    return Notifier(NotificationDispatcher(session, mailer), config)


@pytest.fixture
def add_shift(session):
    """Insert a shift row directly, bypassing the workflow layer."""

    def _add(
        name: str,
        email: str = "",
        *,
        uid: str = "",
        day: int = 0,
        start: str = "11:00",
        end: str = "17:00",
        area: str = "Front",
        status: str = "PUBLISHED",
        week: datetime.date = WEEK,
        role: str = "Server",
    ) -> Shift:
        shift = Shift(
            week_start=week,
            date=week + datetime.timedelta(days=day),
            start=datetime.time.fromisoformat(start),
            end=datetime.time.fromisoformat(end),
            area=area,
            role=role,
            employee_uid=uid,
            employee_name=name,
            employee_email=email,
            note="",
            status=status,
        )
        session.add(shift)
        session.commit()
        session.refresh(shift)
        return shift

    return _add
