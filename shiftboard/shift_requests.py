"""Swap/take requests: peer approval first, then the manager.

A request moves PENDING_TARGET -> PENDING_MANAGER -> APPROVED_BY_MANAGER,
with REJECTED_BY_TARGET, REJECTED_BY_MANAGER and CANCELLED as the other
terminal states (see ``states.SHIFT_REQUEST_FLOW``). Only the manager's
approval touches the shift store: TAKE hands the target shift to the
requester, SWAP exchanges the employees of both shifts. Both shifts are
checked before anything is written so a SWAP never lands half-applied.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select

from .database import Shift, ShiftRequest, record_audit_log
from .errors import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from .identity import Identity
from .notifications import SWAP_MANAGER_DECISION, SWAP_NEEDS_MANAGER, SWAP_REQUESTED
from .schedule import assign_employee, get_shift, shift_identity
from .staff import find_staff_by_name
from .states import SHIFT_REQUEST_FLOW, RequestType, ShiftRequestStatus, ShiftStatus, parse_choice

logger = logging.getLogger(__name__)


def request_to_dict(request: ShiftRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "type": request.type,
        "status": request.status,
        "weekStart": request.week_start.isoformat(),
        "area": request.area,
        "requesterUid": request.requester_uid,
        "requesterName": request.requester_name,
        "requesterEmail": request.requester_email,
        "targetUid": request.target_uid,
        "targetName": request.target_name,
        "targetEmail": request.target_email,
        "targetShiftId": request.target_shift_id,
        "requesterShiftId": request.requester_shift_id,
        "note": request.note,
        "createdAt": request.created_at.isoformat() if request.created_at else None,
        "updatedAt": request.updated_at.isoformat() if request.updated_at else None,
    }


def requester_of(request: ShiftRequest) -> Identity:
    return Identity(uid=request.requester_uid, name=request.requester_name, email=request.requester_email)


def get_shift_request(session, request_id: int) -> ShiftRequest:
    request = session.get(ShiftRequest, request_id)
    if not request:
        raise NotFoundError(f"Shift request {request_id} was not found.")
    return request


def resolve_target(session, shift: Shift) -> Identity:
    """Owner of the shift, with the email filled from the staff directory if missing."""
    owner = shift_identity(shift)
    if owner.email:
        return owner
    staff = find_staff_by_name(session, shift.employee_name, shift.area)
    if staff and staff.email:
        return Identity(uid=owner.uid or staff.claimed_by_uid, name=owner.name, email=staff.email)
    return owner


def _notification_payload(request: ShiftRequest) -> Dict[str, Any]:
    return {
        "type": request.type,
        "status": request.status,
        "requesterName": request.requester_name,
        "requesterEmail": request.requester_email,
        "targetName": request.target_name,
        "targetEmail": request.target_email,
        "note": request.note,
    }


def create_shift_request(
    session,
    requester: Identity,
    target_shift_id: int,
    type: str,
    requester_shift_id: Optional[int] = None,
    note: Optional[str] = None,
    *,
    notifier=None,
) -> ShiftRequest:
    requester.require_name("Requester")
    kind = parse_choice(RequestType, type, "type")
    target_shift = get_shift(session, target_shift_id)
    target = resolve_target(session, target_shift)
    if not target.email:
        raise ValidationError(
            f"{target.name or 'This employee'} has no email yet, so they cannot be asked. Ask the manager."
        )
    if requester.matches(target_shift.employee_uid, target_shift.employee_email):
        raise ValidationError("You already own this shift.")

    if kind is RequestType.SWAP:
        if requester_shift_id is None:
            raise ValidationError("Choose one of your shifts to offer for the swap.")
        offered = get_shift(session, requester_shift_id)
        if not requester.matches(offered.employee_uid, offered.employee_email):
            raise ValidationError("The offered shift is not yours.")
        if offered.id == target_shift.id:
            raise ValidationError("A shift cannot be swapped with itself.")
    elif requester_shift_id is not None:
        raise ValidationError("Only SWAP requests carry an offered shift.")

    request = ShiftRequest(
        type=kind.value,
        status=ShiftRequestStatus.PENDING_TARGET.value,
        week_start=target_shift.week_start,
        area=target_shift.area,
        requester_uid=requester.uid,
        requester_name=requester.name,
        requester_email=requester.email,
        target_uid=target.uid,
        target_name=target.name,
        target_email=target.email,
        target_shift_id=target_shift.id,
        requester_shift_id=requester_shift_id if kind is RequestType.SWAP else None,
        note=(note or "").strip() or None,
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info("%s request %s: %s -> %s", request.type, request.id, requester.name, target.name)
    if notifier is not None:
        notifier.notify(SWAP_REQUESTED, _notification_payload(request))
    return request


def target_decision(
    session,
    request_id: int,
    actor: Identity,
    accept: bool,
    *,
    manager_email: str = "",
    notifier=None,
) -> ShiftRequest:
    request = get_shift_request(session, request_id)
    if not actor.matches(request.target_uid, request.target_email):
        raise PermissionDeniedError("Only the employee who owns the shift can answer this request.")
    if accept:
        target = ShiftRequestStatus.PENDING_MANAGER
    else:
        target = ShiftRequestStatus.REJECTED_BY_TARGET
    request.status = SHIFT_REQUEST_FLOW.ensure(request.status, target).value
    session.commit()
    session.refresh(request)
    logger.info("Shift request %s answered by target: %s", request.id, request.status)
    if accept and notifier is not None:
        payload = _notification_payload(request)
        payload["managerEmail"] = manager_email
        notifier.notify(SWAP_NEEDS_MANAGER, payload)
    return request


def _published_shift(session, shift_id: Optional[int], label: str) -> Shift:
    shift = session.get(Shift, shift_id) if shift_id is not None else None
    if shift is None:
        raise StateConflictError(f"The {label} no longer exists.")
    if shift.status != ShiftStatus.PUBLISHED.value:
        raise StateConflictError(f"The {label} is not published. Publish the week before approving.")
    return shift


def _apply(session, request: ShiftRequest) -> None:
    target_shift = _published_shift(session, request.target_shift_id, "requested shift")
    requester = requester_of(request)
    owner = resolve_target(session, target_shift)
    target = Identity(uid=request.target_uid, name=request.target_name, email=request.target_email)
    if not target.matches(owner.uid, owner.email):
        raise StateConflictError("The requested shift has changed hands since the request was made.")
    if request.type == RequestType.SWAP.value:
        offered = _published_shift(session, request.requester_shift_id, "offered shift")
        if not requester.matches(offered.employee_uid, offered.employee_email):
            raise StateConflictError("The offered shift has changed hands since the request was made.")
        current_target_owner = shift_identity(target_shift)
        assign_employee(target_shift, requester)
        assign_employee(offered, current_target_owner)
    else:
        assign_employee(target_shift, requester)


def manager_decision(
    session,
    request_id: int,
    approve: bool,
    manager: str,
    *,
    notifier=None,
) -> ShiftRequest:
    request = get_shift_request(session, request_id)
    if approve:
        target = ShiftRequestStatus.APPROVED_BY_MANAGER
    else:
        target = ShiftRequestStatus.REJECTED_BY_MANAGER
    SHIFT_REQUEST_FLOW.ensure(request.status, target)
    if approve:
        try:
            _apply(session, request)
        except StateConflictError:
            session.rollback()
            raise
    request.status = target.value
    session.commit()
    session.refresh(request)
    logger.info("Shift request %s %s by %s", request.id, request.status, manager)
    record_audit_log(
        session,
        manager or "manager",
        f"SHIFT_REQUEST_{request.status}",
        "ShiftRequest",
        request.id,
        {"targetShiftId": request.target_shift_id, "requesterShiftId": request.requester_shift_id},
    )
    if notifier is not None:
        notifier.notify(SWAP_MANAGER_DECISION, _notification_payload(request))
    return request


def cancel_shift_request(session, request_id: int, actor: Identity) -> ShiftRequest:
    request = get_shift_request(session, request_id)
    if not actor.matches(request.requester_uid, request.requester_email):
        raise PermissionDeniedError("Only the employee who made the request can cancel it.")
    request.status = SHIFT_REQUEST_FLOW.ensure(request.status, ShiftRequestStatus.CANCELLED).value
    session.commit()
    session.refresh(request)
    logger.info("Shift request %s cancelled", request.id)
    return request


def list_shift_requests(
    session,
    *,
    involving: Optional[Identity] = None,
    status: Optional[str] = None,
) -> List[ShiftRequest]:
    stmt = select(ShiftRequest).order_by(ShiftRequest.created_at.desc(), ShiftRequest.id.desc())
    if status:
        stmt = stmt.where(ShiftRequest.status == parse_choice(ShiftRequestStatus, status, "status").value)
    if involving is not None:
        clauses = []
        if involving.uid:
            clauses += [ShiftRequest.requester_uid == involving.uid, ShiftRequest.target_uid == involving.uid]
        if involving.email:
            clauses += [ShiftRequest.requester_email == involving.email, ShiftRequest.target_email == involving.email]
        if not clauses:
            return []
        stmt = stmt.where(or_(*clauses))
    return list(session.scalars(stmt))
