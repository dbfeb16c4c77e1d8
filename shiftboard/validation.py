from __future__ import annotations

import datetime
from typing import Any, Dict, List

from .availability import day_status, weekday_key
from .database import Shift, normalize_week_start
from .identity import Identity
from .schedule import list_week_shifts, parse_date, shift_identity
from .states import DayStatus
from .timeoff import approved_timeoff_for


def check_assignment(session, employee: Identity, date: Any) -> Dict[str, Any]:
    """Advisory checks for putting ``employee`` on a shift that day.

    Approved time-off blocks the normal create path; an UNAVAILABLE day only
    asks the manager to confirm. The store itself accepts either.
    """
    day = parse_date(date)
    timeoff = approved_timeoff_for(session, employee, day)
    status = day_status(session, employee.uid, day) if employee.uid else DayStatus.OPEN.value
    return {
        "date": day.isoformat(),
        "blocked_by_timeoff": timeoff is not None,
        "timeoff_type": timeoff.type if timeoff else None,
        "availability_conflict": status == DayStatus.UNAVAILABLE.value,
        "weekday": weekday_key(day),
    }


def validate_week(session, week_start: Any, area: str | None = None) -> Dict[str, Any]:
    """Return findings a manager should review before publishing a week."""
    normalized_start = normalize_week_start(parse_date(week_start, "weekStart"))
    shifts = list_week_shifts(session, normalized_start, area=area)
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    warnings.extend(_unassigned_account_issues(shifts))
    for shift in shifts:
        advisory = check_assignment(session, shift_identity(shift), shift.date)
        if advisory["blocked_by_timeoff"]:
            issues.append(
                {
                    "type": "timeoff",
                    "severity": "error",
                    "shift_id": shift.id,
                    "message": f"{shift.employee_name} has approved time off on {shift.date.isoformat()}.",
                }
            )
        if advisory["availability_conflict"]:
            warnings.append(
                {
                    "type": "availability",
                    "severity": "warning",
                    "shift_id": shift.id,
                    "message": f"{shift.employee_name} is unavailable on {shift.date.strftime('%A')}s.",
                }
            )
    warnings.extend(_outside_week_warnings(shifts, normalized_start))
    return {
        "week_start": normalized_start.isoformat(),
        "area": area,
        "shift_count": len(shifts),
        "issues": issues,
        "warnings": warnings,
    }


def _unassigned_account_issues(shifts: List[Shift]) -> List[Dict[str, Any]]:
    issues = []
    for shift in shifts:
        if shift.employee_email:
            continue
        issues.append(
            {
                "type": "unassigned_account",
                "severity": "warning",
                "shift_id": shift.id,
                "message": f"{shift.employee_name} has no account email; they will not be notified.",
            }
        )
    return issues


def _outside_week_warnings(shifts: List[Shift], week_start: datetime.date) -> List[Dict[str, Any]]:
    week_end = week_start + datetime.timedelta(days=6)
    return [
        {
            "type": "outside_week",
            "severity": "warning",
            "shift_id": shift.id,
            "message": f"Shift date {shift.date.isoformat()} falls outside the week.",
        }
        for shift in shifts
        if not (week_start <= shift.date <= week_end)
    ]
