from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from .database import AvailabilityRequest, EffectiveAvailability, record_audit_log, utcnow
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .identity import Identity
from .notifications import AVAILABILITY_DECISION, AVAILABILITY_PENDING
from .schedule import parse_date
from .states import DECISION_FLOW, DayStatus, DecisionStatus, parse_choice

logger = logging.getLogger(__name__)

DAY_KEYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
DAY_LABEL = {
    "mon": "Mon",
    "tue": "Tue",
    "wed": "Wed",
    "thu": "Thu",
    "fri": "Fri",
    "sat": "Sat",
    "sun": "Sun",
}


def weekday_key(date: datetime.date) -> str:
    return DAY_KEYS[date.weekday()]


def default_days() -> Dict[str, str]:
    return {key: DayStatus.OPEN.value for key in DAY_KEYS}


def normalize_days(days: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Return a full seven-day pattern.

    Accepts either ``{"mon": "OPEN"}`` or ``{"mon": {"status": "OPEN"}}``;
    days that are left out are OPEN.
    """
    if days is None:
        days = {}
    if not isinstance(days, dict):
        raise ValidationError("Availability must map weekdays to OPEN or UNAVAILABLE.")
    unknown = set(days) - set(DAY_KEYS)
    if unknown:
        raise ValidationError(f"Unknown weekdays: {', '.join(sorted(unknown))}.")
    pattern = default_days()
    for key, value in days.items():
        if isinstance(value, dict):
            value = value.get("status")
        pattern[key] = parse_choice(DayStatus, value, key).value
    return pattern


def summarize_days(days: Dict[str, str]) -> str:
    unavailable = [DAY_LABEL[key] for key in DAY_KEYS if days.get(key) == DayStatus.UNAVAILABLE.value]
    if not unavailable:
        return "All days OPEN"
    return f"Unavailable: {', '.join(unavailable)}"


def availability_to_dict(request: AvailabilityRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "uid": request.uid,
        "employeeName": request.employee_name,
        "employeeEmail": request.employee_email,
        "managerEmail": request.manager_email,
        "proposedDays": request.proposed_days(),
        "summary": request.summary,
        "status": request.status,
        "createdAt": request.created_at.isoformat() if request.created_at else None,
        "decidedAt": request.decided_at.isoformat() if request.decided_at else None,
        "decidedBy": request.decided_by,
    }


def get_effective_availability(session, uid: str) -> Dict[str, str]:
    record = session.get(EffectiveAvailability, uid) if uid else None
    if record is None:
        return default_days()
    return normalize_days(record.days())


def set_effective_availability(session, uid: str, days: Dict[str, str], updated_by: str) -> EffectiveAvailability:
    """Overwrite the employee's effective pattern with ``days`` (no merge)."""
    record = session.get(EffectiveAvailability, uid)
    if record is None:
        record = EffectiveAvailability(uid=uid)
        session.add(record)
    record.daysJSON = json.dumps(normalize_days(days))
    record.updated_by = updated_by or "manager"
    return record


def day_status(session, uid: str, date: Any) -> str:
    day = parse_date(date)
    return get_effective_availability(session, uid)[weekday_key(day)]


def get_availability_request(session, request_id: int) -> AvailabilityRequest:
    request = session.get(AvailabilityRequest, request_id)
    if not request:
        raise NotFoundError(f"Availability request {request_id} was not found.")
    return request


def create_availability_request(
    session,
    employee: Identity,
    proposed_days: Dict[str, Any],
    manager_email: str = "",
    *,
    notifier=None,
) -> AvailabilityRequest:
    if not employee.uid:
        raise ValidationError("Availability can only be requested from a signed-in account.")
    employee.require_name()
    days = normalize_days(proposed_days)
    request = AvailabilityRequest(
        uid=employee.uid,
        employee_name=employee.name,
        employee_email=employee.email,
        manager_email=(manager_email or "").strip().lower(),
        proposedJSON=json.dumps(days),
        summary=summarize_days(days),
        status=DecisionStatus.PENDING.value,
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info("Availability request %s created for %s: %s", request.id, employee.name, request.summary)
    if notifier is not None:
        notifier.notify(
            AVAILABILITY_PENDING,
            {
                "employeeName": request.employee_name,
                "employeeEmail": request.employee_email,
                "summary": request.summary,
                "managerEmail": request.manager_email,
            },
        )
    return request


def _decide(session, request_id: int, target: DecisionStatus, manager: str, notifier) -> AvailabilityRequest:
    request = get_availability_request(session, request_id)
    request.status = DECISION_FLOW.ensure(request.status, target).value
    if target is DecisionStatus.APPROVED:
        set_effective_availability(session, request.uid, request.proposed_days(), manager)
    request.decided_at = utcnow()
    request.decided_by = manager or "manager"
    session.commit()
    session.refresh(request)
    logger.info("Availability request %s %s by %s", request.id, request.status, request.decided_by)
    record_audit_log(
        session, request.decided_by, f"AVAILABILITY_{request.status}", "AvailabilityRequest", request.id, {}
    )
    if notifier is not None and request.employee_email:
        notifier.notify(
            AVAILABILITY_DECISION,
            {
                "employeeName": request.employee_name,
                "employeeEmail": request.employee_email,
                "status": request.status,
                "summary": request.summary,
            },
        )
    return request


def approve_availability_request(session, request_id: int, manager: str, *, notifier=None) -> AvailabilityRequest:
    return _decide(session, request_id, DecisionStatus.APPROVED, manager, notifier)


def reject_availability_request(session, request_id: int, manager: str, *, notifier=None) -> AvailabilityRequest:
    return _decide(session, request_id, DecisionStatus.REJECTED, manager, notifier)


def cancel_availability_request(session, request_id: int, employee: Identity) -> AvailabilityRequest:
    request = get_availability_request(session, request_id)
    if not employee.matches(request.uid, request.employee_email):
        raise PermissionDeniedError("Only the employee who asked for the change can cancel it.")
    request.status = DECISION_FLOW.ensure(request.status, DecisionStatus.CANCELLED).value
    session.commit()
    session.refresh(request)
    return request


def list_availability_requests(
    session,
    *,
    status: Optional[str] = None,
    employee: Optional[Identity] = None,
) -> List[AvailabilityRequest]:
    stmt = select(AvailabilityRequest).order_by(AvailabilityRequest.created_at.asc(), AvailabilityRequest.id.asc())
    if status:
        stmt = stmt.where(AvailabilityRequest.status == parse_choice(DecisionStatus, status, "status").value)
    requests = list(session.scalars(stmt))
    if employee is not None:
        requests = [r for r in requests if employee.matches(r.uid, r.employee_email)]
    return requests
