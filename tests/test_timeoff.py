from __future__ import annotations

import datetime

import pytest

from conftest import MANAGER_EMAIL
from shiftboard.errors import PermissionDeniedError, StateConflictError, ValidationError
from shiftboard.identity import Identity
from shiftboard.timeoff import (
    approved_timeoff_for,
    cancel_timeoff_request,
    create_timeoff_request,
    decide_timeoff_request,
    earliest_allowed_date,
    list_timeoff_requests,
)

TODAY = datetime.date(2025, 3, 1)
ALICE = Identity(uid="u-alice", name="Alice", email="alice@example.com")
BOB = Identity(uid="u-bob", name="Bob", email="bob@example.com")


def _request(session, employee=ALICE, days=10, **kwargs):
    return create_timeoff_request(
        session,
        employee,
        TODAY + datetime.timedelta(days=days),
        min_days=7,
        today=TODAY,
        **kwargs,
    )


def test_minimum_notice_boundary(session):
    assert earliest_allowed_date(7, TODAY) == datetime.date(2025, 3, 8)
    with pytest.raises(ValidationError):
        _request(session, days=6)
    request = _request(session, days=7)
    assert request.status == "PENDING"
    assert request.date == datetime.date(2025, 3, 8)


def test_half_day_types(session):
    request = _request(session, type="half_am", note=" dentist ")
    assert request.type == "HALF_AM"
    assert request.note == "dentist"
    with pytest.raises(ValidationError):
        _request(session, type="EVENING")


def test_pending_request_notifies_manager(session, notifier, mailer):
    _request(session, manager_email=MANAGER_EMAIL, notifier=notifier)
    assert mailer.messages[-1]["to"] == [MANAGER_EMAIL]
    assert "time-off" in mailer.messages[-1]["subject"]


def test_decision_is_final(session, notifier, mailer):
    request = _request(session)
    request = decide_timeoff_request(session, request.id, True, MANAGER_EMAIL, notifier=notifier)
    assert request.status == "APPROVED"
    assert request.decided_by == MANAGER_EMAIL
    assert request.decided_at is not None
    assert mailer.messages[-1]["to"] == [ALICE.email]

    with pytest.raises(StateConflictError):
        decide_timeoff_request(session, request.id, False, MANAGER_EMAIL)
    with pytest.raises(StateConflictError):
        cancel_timeoff_request(session, request.id, ALICE)


def test_cancel_owner_only(session):
    request = _request(session)
    with pytest.raises(PermissionDeniedError):
        cancel_timeoff_request(session, request.id, BOB)
    assert cancel_timeoff_request(session, request.id, ALICE).status == "CANCELLED"


def test_approved_lookup_and_listing(session):
    first = _request(session, days=10)
    _request(session, employee=BOB, days=10)
    decide_timeoff_request(session, first.id, True, MANAGER_EMAIL)

    day = TODAY + datetime.timedelta(days=10)
    assert approved_timeoff_for(session, ALICE, day).id == first.id
    assert approved_timeoff_for(session, BOB, day) is None
    assert len(list_timeoff_requests(session, status="pending")) == 1
    assert [r.employee_name for r in list_timeoff_requests(session, employee=BOB)] == ["Bob"]
