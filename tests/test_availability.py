from __future__ import annotations

import datetime

import pytest

from conftest import MANAGER_EMAIL
from shiftboard.availability import (
    approve_availability_request,
    cancel_availability_request,
    create_availability_request,
    day_status,
    get_effective_availability,
    list_availability_requests,
    normalize_days,
    reject_availability_request,
    summarize_days,
)
from shiftboard.errors import PermissionDeniedError, StateConflictError, ValidationError
from shiftboard.identity import Identity

ALICE = Identity(uid="u-alice", name="Alice", email="alice@example.com")
BOB = Identity(uid="u-bob", name="Bob", email="bob@example.com")


def test_normalize_fills_missing_days():
    days = normalize_days({"mon": "unavailable", "fri": {"status": "OPEN"}})
    assert days["mon"] == "UNAVAILABLE"
    assert days["sun"] == "OPEN"
    assert len(days) == 7
    with pytest.raises(ValidationError):
        normalize_days({"funday": "OPEN"})
    with pytest.raises(ValidationError):
        normalize_days({"mon": "MAYBE"})


def test_summary_lists_unavailable_days():
    assert summarize_days(normalize_days({})) == "All days OPEN"
    assert summarize_days(normalize_days({"sat": "UNAVAILABLE", "tue": "UNAVAILABLE"})) == "Unavailable: Tue, Sat"


def test_default_effective_pattern_is_open(session):
    assert set(get_effective_availability(session, ALICE.uid).values()) == {"OPEN"}


def test_approval_replaces_effective_pattern(session, notifier, mailer):
    first = create_availability_request(session, ALICE, {"mon": "UNAVAILABLE", "tue": "UNAVAILABLE"})
    approve_availability_request(session, first.id, MANAGER_EMAIL)
    second = create_availability_request(session, ALICE, {"sun": "UNAVAILABLE"}, MANAGER_EMAIL, notifier=notifier)
    assert mailer.messages[-1]["to"] == [MANAGER_EMAIL]

    approved = approve_availability_request(session, second.id, MANAGER_EMAIL, notifier=notifier)
    assert approved.status == "APPROVED"
    assert mailer.messages[-1]["to"] == [ALICE.email]

    days = get_effective_availability(session, ALICE.uid)
    assert days["mon"] == "OPEN"
    assert days["tue"] == "OPEN"
    assert days["sun"] == "UNAVAILABLE"
    assert day_status(session, ALICE.uid, datetime.date(2025, 3, 9)) == "UNAVAILABLE"


def test_rejection_keeps_pattern(session):
    request = create_availability_request(session, ALICE, {"mon": "UNAVAILABLE"})
    rejected = reject_availability_request(session, request.id, MANAGER_EMAIL)
    assert rejected.status == "REJECTED"
    assert get_effective_availability(session, ALICE.uid)["mon"] == "OPEN"
    with pytest.raises(StateConflictError):
        approve_availability_request(session, request.id, MANAGER_EMAIL)


def test_requires_signed_in_account(session):
    with pytest.raises(ValidationError):
        create_availability_request(session, Identity(name="Walk-in", email="walk@example.com"), {})


def test_cancel_and_listing(session):
    request = create_availability_request(session, ALICE, {"wed": "UNAVAILABLE"})
    create_availability_request(session, BOB, {})
    with pytest.raises(PermissionDeniedError):
        cancel_availability_request(session, request.id, BOB)
    assert cancel_availability_request(session, request.id, ALICE).status == "CANCELLED"
    assert len(list_availability_requests(session, status="PENDING")) == 1
    assert len(list_availability_requests(session, employee=ALICE)) == 1
