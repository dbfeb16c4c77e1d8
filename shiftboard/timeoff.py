from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from .database import TimeOffRequest, record_audit_log, utcnow
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .identity import Identity
from .notifications import TIMEOFF_DECISION, TIMEOFF_PENDING
from .schedule import parse_date
from .states import DECISION_FLOW, DecisionStatus, TimeOffType, parse_choice

logger = logging.getLogger(__name__)


def earliest_allowed_date(min_days: int, today: Optional[datetime.date] = None) -> datetime.date:
    return (today or datetime.date.today()) + datetime.timedelta(days=max(0, int(min_days)))


def timeoff_to_dict(request: TimeOffRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "uid": request.uid,
        "employeeName": request.employee_name,
        "employeeEmail": request.employee_email,
        "date": request.date.isoformat(),
        "type": request.type,
        "note": request.note,
        "status": request.status,
        "createdAt": request.created_at.isoformat() if request.created_at else None,
        "decidedAt": request.decided_at.isoformat() if request.decided_at else None,
        "decidedBy": request.decided_by,
    }


def get_timeoff_request(session, request_id: int) -> TimeOffRequest:
    request = session.get(TimeOffRequest, request_id)
    if not request:
        raise NotFoundError(f"Time-off request {request_id} was not found.")
    return request


def create_timeoff_request(
    session,
    employee: Identity,
    date: Any,
    type: str = TimeOffType.FULL.value,
    note: Optional[str] = None,
    *,
    min_days: int,
    today: Optional[datetime.date] = None,
    manager_email: str = "",
    notifier=None,
) -> TimeOffRequest:
    employee.require_name()
    requested = parse_date(date)
    kind = parse_choice(TimeOffType, type, "type")
    earliest = earliest_allowed_date(min_days, today)
    if requested < earliest:
        raise ValidationError(
            f"Time off needs at least {min_days} days notice; earliest date is {earliest.isoformat()}."
        )
    request = TimeOffRequest(
        uid=employee.uid,
        employee_name=employee.name,
        employee_email=employee.email,
        date=requested,
        type=kind.value,
        note=(note or "").strip() or None,
        status=DecisionStatus.PENDING.value,
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info("Time-off request %s created for %s on %s", request.id, employee.name, requested)
    if notifier is not None:
        notifier.notify(
            TIMEOFF_PENDING,
            {
                "employeeName": request.employee_name,
                "employeeEmail": request.employee_email,
                "date": request.date.isoformat(),
                "type": request.type,
                "note": request.note,
                "managerEmail": manager_email,
            },
        )
    return request


def decide_timeoff_request(
    session,
    request_id: int,
    approve: bool,
    manager: str,
    *,
    notifier=None,
) -> TimeOffRequest:
    request = get_timeoff_request(session, request_id)
    target = DecisionStatus.APPROVED if approve else DecisionStatus.REJECTED
    request.status = DECISION_FLOW.ensure(request.status, target).value
    request.decided_at = utcnow()
    request.decided_by = manager or "manager"
    session.commit()
    session.refresh(request)
    logger.info("Time-off request %s %s by %s", request.id, request.status, request.decided_by)
    record_audit_log(session, request.decided_by, f"TIMEOFF_{request.status}", "TimeOffRequest", request.id, {})
    if notifier is not None and request.employee_email:
        notifier.notify(
            TIMEOFF_DECISION,
            {
                "employeeName": request.employee_name,
                "employeeEmail": request.employee_email,
                "status": request.status,
                "date": request.date.isoformat(),
                "type": request.type,
                "note": request.note,
            },
        )
    return request


def cancel_timeoff_request(session, request_id: int, employee: Identity) -> TimeOffRequest:
    request = get_timeoff_request(session, request_id)
    if not employee.matches(request.uid, request.employee_email):
        raise PermissionDeniedError("Only the employee who asked for the time off can cancel it.")
    request.status = DECISION_FLOW.ensure(request.status, DecisionStatus.CANCELLED).value
    session.commit()
    session.refresh(request)
    return request


def list_timeoff_requests(
    session,
    *,
    status: Optional[str] = None,
    employee: Optional[Identity] = None,
) -> List[TimeOffRequest]:
    stmt = select(TimeOffRequest).order_by(TimeOffRequest.date.asc(), TimeOffRequest.id.asc())
    if status:
        stmt = stmt.where(TimeOffRequest.status == parse_choice(DecisionStatus, status, "status").value)
    requests = list(session.scalars(stmt))
    if employee is not None:
        requests = [r for r in requests if employee.matches(r.uid, r.employee_email)]
    return requests


def list_approved_timeoff(session, date: Any = None) -> List[TimeOffRequest]:
    stmt = select(TimeOffRequest).where(TimeOffRequest.status == DecisionStatus.APPROVED.value)
    if date is not None:
        stmt = stmt.where(TimeOffRequest.date == parse_date(date))
    return list(session.scalars(stmt.order_by(TimeOffRequest.date.asc())))


def approved_timeoff_for(session, employee: Identity, date: Any) -> Optional[TimeOffRequest]:
    """Approved time-off the employee holds on the given day, if any."""
    for request in list_approved_timeoff(session, date):
        if employee.matches(request.uid, request.employee_email):
            return request
        if not request.uid and not request.employee_email and request.employee_name == employee.name:
            return request
    return None
