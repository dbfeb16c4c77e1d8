from __future__ import annotations

import datetime

import pytest
from fastapi.testclient import TestClient

from conftest import MANAGER_EMAIL, WEEK
from shiftboard.api import app, get_db, get_mailer, get_security_settings
from shiftboard.availability import set_effective_availability
from shiftboard.config import SecuritySettings, upsert_app_config
from shiftboard.database import TimeOffRequest
from shiftboard.identity import create_identity_token

SETTINGS = SecuritySettings(secret_key="api-test-secret")


def auth(uid: str, email: str) -> dict:
    return {"Authorization": f"Bearer {create_identity_token(uid, email, SETTINGS)}"}


MANAGER = auth("u-boss", MANAGER_EMAIL)
ALICE = auth("u-alice", "alice@example.com")
BOB = auth("u-bob", "bob@example.com")


@pytest.fixture
def client(session, session_factory, mailer):
    upsert_app_config(session, {"appUrl": "https://shifts.example.com", "managerEmail": MANAGER_EMAIL})
    session.commit()

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_security_settings] = lambda: SETTINGS
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_shift(client, name, email, day=0, **extra):
    body = {
        "date": (WEEK + datetime.timedelta(days=day)).isoformat(),
        "start": "11:00",
        "end": "16:00",
        "area": "Front",
        "role": "Server",
        "employeeName": name,
        "employeeEmail": email,
    }
    body.update(extra)
    return client.post("/api/v1/shifts", json=body, headers=MANAGER)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_bearer_token(client):
    response = client.get("/api/v1/session")
    assert response.status_code == 401
    assert response.json()["ok"] is False

    response = client.get("/api/v1/session", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_session_reports_manager_flag(client):
    assert client.get("/api/v1/session", headers=MANAGER).json()["session"]["is_manager"] is True
    assert client.get("/api/v1/session", headers=ALICE).json()["session"]["is_manager"] is False


def test_employee_cannot_use_manager_routes(client):
    response = _create_shift(client, "Alice", "alice@example.com")
    assert response.status_code == 201
    response = client.post(
        "/api/v1/shifts",
        json={"date": WEEK.isoformat(), "start": "11:00", "end": "16:00", "area": "Front", "employeeName": "Alice"},
        headers=ALICE,
    )
    assert response.status_code == 403
    assert client.get("/api/v1/config", headers=BOB).status_code == 403


def test_publish_and_employee_view(client, mailer):
    _create_shift(client, "Alice", "alice@example.com", day=0)
    _create_shift(client, "Alice", "alice@example.com", day=2)

    response = client.post(f"/api/v1/weeks/{WEEK.isoformat()}/publish", json={"area": "Front"}, headers=MANAGER)
    body = response.json()
    assert response.status_code == 200
    assert (body["ok"], body["published"], body["notified"]) == (True, 2, 1)
    assert any(m["to"] == ["alice@example.com"] for m in mailer.messages)

    _create_shift(client, "Alice", "alice@example.com", day=4)
    employee_view = client.get(f"/api/v1/weeks/{WEEK.isoformat()}/shifts", headers=ALICE).json()["shifts"]
    manager_view = client.get(f"/api/v1/weeks/{WEEK.isoformat()}/shifts", headers=MANAGER).json()["shifts"]
    assert len(employee_view) == 2
    assert len(manager_view) == 3
    assert {s["status"] for s in employee_view} == {"PUBLISHED"}


def test_publish_without_drafts_is_bad_request(client):
    response = client.post(f"/api/v1/weeks/{WEEK.isoformat()}/publish", json={"area": "Front"}, headers=MANAGER)
    assert response.status_code == 400
    assert "No DRAFT shifts" in response.json()["error"]


def test_shift_on_approved_timeoff_is_blocked(client, session):
    session.add(
        TimeOffRequest(
            uid="u-alice",
            employee_name="Alice",
            employee_email="alice@example.com",
            date=WEEK,
            type="FULL",
            status="APPROVED",
        )
    )
    session.commit()
    response = _create_shift(client, "Alice", "alice@example.com", day=0)
    assert response.status_code == 409
    assert response.json()["advisory"]["blocked_by_timeoff"] is True


def test_unavailable_day_needs_confirmation(client, session):
    set_effective_availability(session, "u-alice", {"mon": "UNAVAILABLE"}, MANAGER_EMAIL)
    session.commit()
    response = _create_shift(client, "Alice", "alice@example.com", employeeUid="u-alice")
    assert response.status_code == 409
    assert response.json()["needsConfirmation"] is True

    response = _create_shift(client, "Alice", "alice@example.com", employeeUid="u-alice", confirm=True)
    assert response.status_code == 201
    assert response.json()["advisory"]["availability_conflict"] is True


def test_take_request_end_to_end(client, mailer):
    _create_shift(client, "Alice", "alice@example.com", day=0, employeeUid="u-alice")
    bob_shift = _create_shift(client, "Bob", "bob@example.com", day=1, employeeUid="u-bob").json()["shift"]
    client.post(f"/api/v1/weeks/{WEEK.isoformat()}/publish", json={"area": "Front"}, headers=MANAGER)

    created = client.post(
        "/api/v1/shift-requests", json={"targetShiftId": bob_shift["id"], "type": "TAKE"}, headers=ALICE
    )
    assert created.status_code == 201
    request_id = created.json()["request"]["id"]

    assert client.post(
        f"/api/v1/shift-requests/{request_id}/manager-decision", json={"approve": True}, headers=MANAGER
    ).status_code == 409
    assert client.post(
        f"/api/v1/shift-requests/{request_id}/target-decision", json={"accept": True}, headers=ALICE
    ).status_code == 403

    accepted = client.post(
        f"/api/v1/shift-requests/{request_id}/target-decision", json={"accept": True}, headers=BOB
    )
    assert accepted.json()["request"]["status"] == "PENDING_MANAGER"
    approved = client.post(
        f"/api/v1/shift-requests/{request_id}/manager-decision", json={"approve": True}, headers=MANAGER
    )
    assert approved.json()["request"]["status"] == "APPROVED_BY_MANAGER"

    shifts = client.get(f"/api/v1/weeks/{WEEK.isoformat()}/shifts", headers=BOB).json()["shifts"]
    taken = next(s for s in shifts if s["id"] == bob_shift["id"])
    assert taken["employeeEmail"] == "alice@example.com"
    assert len(client.get("/api/v1/shift-requests", headers=BOB).json()["requests"]) == 1


def test_timeoff_notice_and_decision(client):
    too_soon = (datetime.date.today() + datetime.timedelta(days=1)).isoformat()
    response = client.post("/api/v1/timeoff", json={"date": too_soon}, headers=ALICE)
    assert response.status_code == 400

    later = (datetime.date.today() + datetime.timedelta(days=30)).isoformat()
    created = client.post("/api/v1/timeoff", json={"date": later, "type": "HALF_PM"}, headers=ALICE)
    assert created.status_code == 201
    request_id = created.json()["request"]["id"]

    decided = client.post(f"/api/v1/timeoff/{request_id}/decision", json={"approve": False}, headers=MANAGER)
    assert decided.json()["request"]["status"] == "REJECTED"
    assert client.post(f"/api/v1/timeoff/{request_id}/cancel", headers=ALICE).status_code == 409


def test_availability_via_api(client):
    created = client.post(
        "/api/v1/availability/requests", json={"proposedDays": {"sun": "UNAVAILABLE"}}, headers=ALICE
    )
    request_id = created.json()["request"]["id"]
    client.post(f"/api/v1/availability/requests/{request_id}/decision", json={"approve": True}, headers=MANAGER)
    effective = client.get("/api/v1/availability/effective", headers=ALICE).json()
    assert effective["days"]["sun"] == "UNAVAILABLE"
    assert effective["summary"] == "Unavailable: Sun"


def test_email_endpoint(client, mailer):
    response = client.post("/api/email", json={"action": "nope", "payload": {}}, headers=ALICE)
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Unknown action"}

    assert client.post("/api/email", json={"action": "timeoff_decision"}).status_code == 401

    response = client.post(
        "/api/email",
        json={"action": "timeoff_decision", "payload": {"employeeEmail": "bob@example.com", "status": "APPROVED"}},
        headers=ALICE,
    )
    assert response.json() == {"ok": True}
    assert mailer.messages[-1]["subject"] == "Your time off was approved"


def test_config_and_staff_claim(client):
    updated = client.put("/api/v1/config", json={"timeoffMinDays": 10}, headers=MANAGER).json()["config"]
    assert updated["timeoffMinDays"] == 10
    assert updated["managerEmail"] == MANAGER_EMAIL

    staff = client.post("/api/v1/staff", json={"name": "Ana", "area": "Back"}, headers=MANAGER).json()["staff"]
    session = client.get(
        "/api/v1/session",
        headers={**auth("u-ana", "ana@example.com"), "X-Pending-Staff-Id": str(staff["id"])},
    ).json()["session"]
    assert (session["staff_id"], session["area"], session["name"]) == (staff["id"], "Back", "Ana")

    listed = client.get("/api/v1/staff", params={"area": "Back"}, headers=MANAGER).json()["staff"]
    assert listed == [{"id": staff["id"], "name": "Ana", "area": "Back", "email": "ana@example.com", "claimed": True}]

    areas = client.get("/api/v1/areas", headers=ALICE).json()["areas"]
    assert [a["name"] for a in areas] == ["Front", "Back"]


def test_email_endpoint_rejects_malformed_payloads(client):
    response = client.post("/api/email", json={"action": "timeoff_decision", "payload": ["x"]}, headers=ALICE)
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "payload must be an object"}

    response = client.post(
        "/api/email",
        json={"action": "schedule_published_week", "payload": {"weekStart": 20250303, "area": "Front"}},
        headers=ALICE,
    )
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "weekStart must be YYYY-MM-DD"}

    response = _create_shift(client, "Alice", "alice@example.com", staffId="abc")
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "staffId must be a number"}


def test_unexpected_errors_return_json(client):
    def broken_mailer():
        raise RuntimeError("mail backend exploded")

    app.dependency_overrides[get_mailer] = broken_mailer
    unguarded = TestClient(app, raise_server_exceptions=False)
    response = unguarded.post("/api/email", json={"action": "timeoff_decision", "payload": {}}, headers=ALICE)
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "mail backend exploded"}
