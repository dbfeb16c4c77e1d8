from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from sqlalchemy import select

from .areas import normalize_area, normalize_email
from .config import AppConfig, SecuritySettings
from .database import Profile, StaffMember
from .errors import PermissionDeniedError, ValidationError
from .staff import backfill_shifts_from_name, claim_staff, find_staff_by_email, set_staff_email

logger = logging.getLogger(__name__)


class AuthenticationError(PermissionDeniedError):
    status_code = 401


@dataclass(frozen=True)
class Identity:
    """Who an employee reference points at: uid and email may be empty."""

    uid: str = ""
    name: str = ""
    email: str = ""

    def __post_init__(self):
        object.__setattr__(self, "email", normalize_email(self.email))
        object.__setattr__(self, "name", (self.name or "").strip())

    def matches(self, uid: str = "", email: str = "") -> bool:
        if self.uid and uid and self.uid == uid:
            return True
        email = normalize_email(email)
        return bool(self.email) and self.email == email

    def require_name(self, role: str = "Employee") -> None:
        if not self.name:
            raise ValidationError(f"{role} name is required.")


@dataclass(frozen=True)
class SessionContext:
    uid: str
    email: str
    name: str
    area: str
    is_manager: bool
    staff_id: Optional[int] = None

    @property
    def identity(self) -> Identity:
        return Identity(uid=self.uid, name=self.name, email=self.email)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def create_identity_token(
    uid: str,
    email: str,
    settings: SecuritySettings,
    expires_delta: Optional[datetime.timedelta] = None,
) -> str:
    expire = datetime.datetime.now(datetime.timezone.utc) + (
        expires_delta or datetime.timedelta(minutes=settings.token_expire_minutes)
    )
    claims = {"sub": uid, "email": normalize_email(email), "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_identity_token(token: str, settings: SecuritySettings) -> Identity:
    if not token:
        raise AuthenticationError("Missing Authorization: Bearer <token>")
    if token.lower().startswith("bearer "):
        token = token.split(" ", 1)[1].strip()
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise AuthenticationError("Could not validate credentials") from exc
    uid = claims.get("sub") or ""
    if not uid:
        raise AuthenticationError("Could not validate credentials")
    return Identity(uid=uid, email=claims.get("email") or "")


def _save_profile(session, uid: str, email: str, name: str, area: str) -> Profile:
    profile = session.get(Profile, uid)
    if profile is None:
        profile = Profile(uid=uid)
        session.add(profile)
    profile.email = email
    profile.name = name
    profile.area = area
    session.commit()
    session.refresh(profile)
    return profile


def resolve_session(
    session,
    identity: Identity,
    config: AppConfig,
    *,
    pending_staff_id: Optional[int] = None,
) -> SessionContext:
    """Bind an authenticated account to its profile and staff directory entry."""
    uid = identity.uid
    email = identity.email
    if not uid:
        raise AuthenticationError("Could not validate credentials")
    is_manager = config.is_manager(email)
    staff_id: Optional[int] = None

    profile = session.get(Profile, uid)
    if profile is None:
        staff = find_staff_by_email(session, email) if email else None
        if staff is not None and staff.is_claimed and staff.claimed_by_uid != uid:
            logger.warning("Staff entry %s is already claimed; not linking %s", staff.id, uid)
            staff = None
        name = staff.name if staff else (email.split("@")[0] if email else uid)
        area = staff.area if staff else "Front"
        profile = _save_profile(session, uid, email, name, area)
        if staff is not None and (staff.is_claimed or claim_staff(session, staff.id, uid)):
            staff_id = staff.id

    if pending_staff_id:
        staff = session.get(StaffMember, pending_staff_id)
        if staff is not None:
            staff_email = normalize_email(staff.email)
            if not staff.is_claimed and (not staff_email or staff_email == email):
                set_staff_email(session, staff.id, email)
                if claim_staff(session, staff.id, uid):
                    profile = _save_profile(session, uid, email, staff.name, staff.area)
                    staff_id = staff.id

    if staff_id is None:
        linked = session.scalars(select(StaffMember).where(StaffMember.claimed_by_uid == uid).limit(1)).first()
        if linked is not None:
            staff_id = linked.id

    context = SessionContext(
        uid=uid,
        email=email,
        name=profile.name,
        area=normalize_area(profile.area),
        is_manager=is_manager,
        staff_id=staff_id,
    )
    if not is_manager:
        backfill_shifts_from_name(session, name=context.name, area=context.area, email=email, uid=uid)
    return context
