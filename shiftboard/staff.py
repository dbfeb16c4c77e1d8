from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import or_, select, update

from .areas import normalize_area, normalize_email
from .database import Shift, StaffMember, utcnow
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def list_staff(session, area: Optional[str] = None) -> List[StaffMember]:
    stmt = select(StaffMember)
    if area:
        stmt = stmt.where(StaffMember.area == normalize_area(area))
    stmt = stmt.order_by(StaffMember.area.asc(), StaffMember.name.asc())
    return list(session.scalars(stmt))


def get_staff(session, staff_id: int) -> StaffMember:
    staff = session.get(StaffMember, staff_id)
    if not staff:
        raise NotFoundError(f"Staff member {staff_id} was not found.")
    return staff


def find_staff_by_email(session, email: str) -> Optional[StaffMember]:
    clean = normalize_email(email)
    if not clean:
        return None
    stmt = select(StaffMember).where(StaffMember.email == clean).limit(1)
    return session.scalars(stmt).first()


def find_staff_by_name(session, name: str, area: str) -> Optional[StaffMember]:
    clean = (name or "").strip()
    if not clean:
        return None
    stmt = (
        select(StaffMember)
        .where(StaffMember.name == clean, StaffMember.area == normalize_area(area))
        .limit(1)
    )
    return session.scalars(stmt).first()


def create_staff(session, name: str, area: str) -> StaffMember:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError("Staff name is required.")
    staff = StaffMember(name=clean, area=normalize_area(area), email="", claimed_by_uid="")
    session.add(staff)
    session.commit()
    session.refresh(staff)
    logger.info("Created staff entry %s (%s)", staff.name, staff.area)
    return staff


def set_staff_email(session, staff_id: int, email: str) -> StaffMember:
    staff = get_staff(session, staff_id)
    staff.email = normalize_email(email)
    session.commit()
    session.refresh(staff)
    return staff


def claim_staff(session, staff_id: int, uid: str) -> bool:
    """Bind an account to an unclaimed entry. First claim wins; returns False otherwise."""
    if not uid:
        raise ValidationError("An account id is required to claim a staff entry.")
    result = session.execute(
        update(StaffMember)
        .where(StaffMember.id == staff_id, StaffMember.claimed_by_uid == "")
        .values(claimed_by_uid=uid, updated_at=utcnow())
    )
    session.commit()
    claimed = bool(result.rowcount)
    if claimed:
        logger.info("Staff entry %s claimed by %s", staff_id, uid)
    return claimed


def remove_staff(session, staff_id: int) -> None:
    staff = session.get(StaffMember, staff_id)
    if not staff:
        return
    session.delete(staff)
    session.commit()


def backfill_shifts_from_name(session, *, name: str, area: str, email: str, uid: str) -> int:
    """Fill in account fields on shifts that were assigned by name only."""
    name = (name or "").strip()
    email = normalize_email(email)
    if not name or not email or not uid:
        return 0
    stmt = select(Shift).where(
        Shift.area == normalize_area(area),
        Shift.employee_name == name,
        or_(Shift.employee_email == "", Shift.employee_uid == ""),
    )
    updated = 0
    for shift in session.scalars(stmt):
        shift.employee_email = email
        shift.employee_uid = uid
        updated += 1
    if updated:
        session.commit()
        logger.info("Back-filled %d shifts for %s", updated, name)
    return updated
