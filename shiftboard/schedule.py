"""Shift store: drafts, publish-replace, and week duplication."""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select

from .areas import normalize_area, normalize_email
from .database import Shift, normalize_week_start, record_audit_log
from .errors import NotFoundError, StateConflictError, ValidationError
from .identity import Identity
from .notifications import SCHEDULE_PUBLISHED_WEEK
from .states import SHIFT_FLOW, ShiftStatus

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"date", "start", "end", "role", "note", "employee_uid", "employee_name", "employee_email"}


class NothingToPublishError(ValidationError):
    pass


def parse_date(value: Any, field: str = "date") -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value or "").strip())
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD") from None


def parse_time(value: Any, field: str) -> datetime.time:
    if isinstance(value, datetime.time):
        return value
    try:
        return datetime.time.fromisoformat(str(value or "").strip())
    except ValueError:
        raise ValidationError(f"{field} must be HH:MM") from None


def shift_to_dict(shift: Shift) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "weekStart": shift.week_start.isoformat(),
        "date": shift.date.isoformat(),
        "start": shift.start.strftime("%H:%M"),
        "end": shift.end.strftime("%H:%M"),
        "area": shift.area,
        "role": shift.role,
        "employeeUid": shift.employee_uid,
        "employeeName": shift.employee_name,
        "employeeEmail": shift.employee_email,
        "note": shift.note,
        "status": shift.status,
    }


def shift_identity(shift: Shift) -> Identity:
    return Identity(uid=shift.employee_uid, name=shift.employee_name, email=shift.employee_email)


def assign_employee(shift: Shift, employee: Identity) -> None:
    shift.employee_uid = employee.uid
    shift.employee_name = employee.name
    shift.employee_email = employee.email


def get_shift(session, shift_id: int) -> Shift:
    shift = session.get(Shift, shift_id)
    if not shift:
        raise NotFoundError(f"Shift {shift_id} was not found.")
    return shift


def create_draft_shift(
    session,
    *,
    date: Any,
    start: Any,
    end: Any,
    area: str,
    employee: Identity,
    role: str = "",
    note: str = "",
    week_start: Any = None,
    actor: str = "manager",
) -> Shift:
    """Insert a DRAFT shift. Allowed for any week, including future ones."""
    shift_date = parse_date(date)
    start_time = parse_time(start, "start")
    end_time = parse_time(end, "end")
    if start_time == end_time:
        raise ValidationError("Shift start and end cannot be the same time.")
    employee.require_name()
    week = normalize_week_start(parse_date(week_start, "weekStart") if week_start else shift_date)
    shift = Shift(
        week_start=week,
        date=shift_date,
        start=start_time,
        end=end_time,
        area=normalize_area(area),
        role=(role or "").strip(),
        note=(note or "").strip(),
        status=ShiftStatus.DRAFT.value,
    )
    assign_employee(shift, employee)
    session.add(shift)
    session.commit()
    session.refresh(shift)
    record_audit_log(session, actor, "SHIFT_CREATE", "Shift", shift.id, shift_to_dict(shift))
    return shift


def update_shift(session, shift_id: int, patch: Dict[str, Any], *, actor: str = "manager") -> Shift:
    shift = get_shift(session, shift_id)
    if shift.status != ShiftStatus.DRAFT.value:
        raise StateConflictError("Only DRAFT shifts can be edited; publish replaces the live week.")
    unknown = set(patch) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot edit fields: {', '.join(sorted(unknown))}.")
    shift_date = parse_date(patch["date"]) if "date" in patch else shift.date
    start_time = parse_time(patch["start"], "start") if "start" in patch else shift.start
    end_time = parse_time(patch["end"], "end") if "end" in patch else shift.end
    if start_time == end_time:
        raise ValidationError("Shift start and end cannot be the same time.")
    employee = Identity(
        uid=patch.get("employee_uid", shift.employee_uid),
        name=patch.get("employee_name", shift.employee_name),
        email=patch.get("employee_email", shift.employee_email),
    )
    employee.require_name()

    shift.date = shift_date
    shift.week_start = normalize_week_start(shift_date)
    shift.start = start_time
    shift.end = end_time
    if "role" in patch:
        shift.role = (patch["role"] or "").strip()
    if "note" in patch:
        shift.note = (patch["note"] or "").strip()
    assign_employee(shift, employee)
    session.commit()
    session.refresh(shift)
    record_audit_log(session, actor, "SHIFT_EDIT", "Shift", shift.id, patch)
    return shift


def delete_draft_shift(session, shift_id: int, *, actor: str = "manager") -> None:
    shift = session.get(Shift, shift_id)
    if not shift:
        return
    if shift.status != ShiftStatus.DRAFT.value:
        raise StateConflictError("Published shifts can only be replaced by publishing the week again.")
    session.delete(shift)
    session.commit()
    record_audit_log(session, actor, "SHIFT_DELETE", "Shift", shift_id, {})


def list_week_shifts(
    session,
    week_start: Any,
    *,
    area: Optional[str] = None,
    status: Optional[str] = None,
    include_drafts: bool = True,
) -> List[Shift]:
    week = normalize_week_start(parse_date(week_start, "weekStart"))
    stmt = select(Shift).where(Shift.week_start == week)
    if area:
        stmt = stmt.where(Shift.area == normalize_area(area))
    if not include_drafts:
        stmt = stmt.where(Shift.status == ShiftStatus.PUBLISHED.value)
    elif status and status.lower() != "all":
        stmt = stmt.where(Shift.status == status.upper())
    stmt = stmt.order_by(Shift.date, Shift.start, Shift.id)
    return list(session.scalars(stmt))


def list_employee_shifts(session, employee: Identity, week_start: Any) -> List[Shift]:
    """Published shifts in the week that belong to the employee."""
    return [
        shift
        for shift in list_week_shifts(session, week_start, include_drafts=False)
        if employee.matches(shift.employee_uid, shift.employee_email)
    ]


def _count(session, week: datetime.date, area: str, status: ShiftStatus) -> int:
    stmt = select(func.count(Shift.id)).where(
        Shift.week_start == week,
        Shift.area == area,
        Shift.status == status.value,
    )
    return int(session.execute(stmt).scalar() or 0)


def publish_week(
    session,
    week_start: Any,
    area: str,
    *,
    actor: str = "manager",
    notifier=None,
) -> Dict[str, Any]:
    """Replace the live schedule for week+area with its drafts.

    Every PUBLISHED shift already in the week/area is deleted before the
    drafts flip; the previous live schedule cannot be recovered afterwards.
    """
    week = normalize_week_start(parse_date(week_start, "weekStart"))
    area = normalize_area(area)
    drafts = list(
        session.scalars(
            select(Shift).where(
                Shift.week_start == week,
                Shift.area == area,
                Shift.status == ShiftStatus.DRAFT.value,
            )
        )
    )
    if not drafts:
        raise NothingToPublishError(f"No DRAFT shifts to publish for {week.isoformat()} ({area}).")

    replaced = _count(session, week, area, ShiftStatus.PUBLISHED)
    session.execute(
        delete(Shift).where(
            Shift.week_start == week,
            Shift.area == area,
            Shift.status == ShiftStatus.PUBLISHED.value,
        )
    )
    for shift in drafts:
        shift.status = SHIFT_FLOW.ensure(shift.status, ShiftStatus.PUBLISHED).value
    session.commit()
    logger.info("Published %d shifts for %s/%s (replaced %d)", len(drafts), week, area, replaced)
    record_audit_log(
        session,
        actor,
        "WEEK_PUBLISH",
        "Week",
        None,
        {"weekStart": week.isoformat(), "area": area, "published": len(drafts), "replaced": replaced},
    )

    summary: Dict[str, Any] = {
        "weekStart": week.isoformat(),
        "area": area,
        "published": len(drafts),
        "replaced": replaced,
        "employees": len({_employee_key(shift) for shift in drafts}),
        "notified": 0,
    }
    if notifier is not None:
        result = notifier.notify(SCHEDULE_PUBLISHED_WEEK, {"weekStart": week.isoformat(), "area": area})
        if result:
            summary["notified"] = result.get("notified", 0)
    return summary


def _employee_key(shift: Shift) -> str:
    return normalize_email(shift.employee_email) or shift.employee_uid or shift.employee_name


def duplicate_previous_week(session, week_start: Any, area: str, *, actor: str = "manager") -> List[Shift]:
    """Clone last week's shifts (published first, else drafts) as drafts of this week."""
    week = normalize_week_start(parse_date(week_start, "weekStart"))
    area = normalize_area(area)
    previous = week - datetime.timedelta(days=7)
    source: List[Shift] = []
    for status in (ShiftStatus.PUBLISHED, ShiftStatus.DRAFT):
        source = list(
            session.scalars(
                select(Shift)
                .where(
                    Shift.week_start == previous,
                    Shift.area == area,
                    Shift.status == status.value,
                )
                .order_by(Shift.date, Shift.start, Shift.id)
            )
        )
        if source:
            break
    if not source:
        raise ValidationError(f"Nothing to duplicate: no shifts in the week of {previous.isoformat()} ({area}).")

    clones = [_clone_into_week(shift, week) for shift in source]
    session.add_all(clones)
    session.commit()
    for clone in clones:
        session.refresh(clone)
    record_audit_log(
        session,
        actor,
        "WEEK_DUPLICATE",
        "Week",
        None,
        {"from": previous.isoformat(), "to": week.isoformat(), "area": area, "count": len(clones)},
    )
    return clones


def _clone_into_week(shift: Shift, week: datetime.date) -> Shift:
    return Shift(
        week_start=week,
        date=shift.date + datetime.timedelta(days=7),
        start=shift.start,
        end=shift.end,
        area=shift.area,
        role=shift.role,
        note=shift.note,
        employee_uid=shift.employee_uid,
        employee_name=shift.employee_name,
        employee_email=shift.employee_email,
        status=ShiftStatus.DRAFT.value,
    )

