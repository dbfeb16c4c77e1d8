"""FastAPI surface over the scheduling workflows.

Every response carries ``ok``; failures map the workflow error taxonomy to
HTTP status codes and return ``{"ok": false, "error": "..."}``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .areas import AREAS, area_label, roles_for_area
from .availability import (
    approve_availability_request,
    availability_to_dict,
    cancel_availability_request,
    create_availability_request,
    get_effective_availability,
    list_availability_requests,
    reject_availability_request,
    summarize_days,
)
from .config import (
    AppConfig,
    SecuritySettings,
    configure_logging,
    load_app_config,
    load_security_settings,
    upsert_app_config,
)
from .database import SessionLocal, init_database, record_audit_log
from .errors import ConfigurationError, PermissionDeniedError, ValidationError, WorkflowError
from .identity import Identity, SessionContext, decode_identity_token, resolve_session
from .mailer import RecordingMailer, mailer_from_env
from .notifications import NotificationDispatcher, Notifier, UnknownActionError
from .schedule import (
    create_draft_shift,
    delete_draft_shift,
    duplicate_previous_week,
    list_week_shifts,
    parse_date,
    publish_week,
    shift_to_dict,
    update_shift,
)
from .shift_requests import (
    cancel_shift_request,
    create_shift_request,
    list_shift_requests,
    manager_decision,
    request_to_dict,
    target_decision,
)
from .staff import create_staff, get_staff, list_staff, remove_staff, set_staff_email
from .timeoff import (
    cancel_timeoff_request,
    create_timeoff_request,
    decide_timeoff_request,
    list_timeoff_requests,
    timeoff_to_dict,
)
from .validation import check_assignment, validate_week

logger = logging.getLogger(__name__)

_memory_mailer = RecordingMailer()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_database()
    yield


app = FastAPI(title="Shiftboard API", version="0.1", lifespan=lifespan)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(_: Request, exc: WorkflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc)
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc)})


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc.detail)})


@app.exception_handler(Exception)
async def unexpected_error_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"ok": False, "error": str(exc) or exc.__class__.__name__})


def _ok(payload: Optional[Dict[str, Any]] = None, status_code: int = 200) -> JSONResponse:
    content: Dict[str, Any] = {"ok": True}
    content.update(payload or {})
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_security_settings() -> SecuritySettings:
    return load_security_settings()


def get_app_config(db=Depends(get_db)) -> AppConfig:
    return load_app_config(db)


def get_identity(
    authorization: Optional[str] = Header(None),
    settings: SecuritySettings = Depends(get_security_settings),
) -> Identity:
    return decode_identity_token(authorization or "", settings)


def get_current_session(
    db=Depends(get_db),
    identity: Identity = Depends(get_identity),
    config: AppConfig = Depends(get_app_config),
    x_pending_staff_id: Optional[int] = Header(None),
) -> SessionContext:
    return resolve_session(db, identity, config, pending_staff_id=x_pending_staff_id)


def require_manager(current: SessionContext = Depends(get_current_session)) -> SessionContext:
    if not current.is_manager:
        raise PermissionDeniedError("Manager access required.")
    return current


def get_mailer():
    if os.getenv("SHIFTBOARD_MAIL_BACKEND", "").lower() == "memory":
        return _memory_mailer
    try:
        return mailer_from_env()
    except ConfigurationError as exc:
        logger.warning("Email delivery disabled: %s", exc)
        return None


def get_dispatcher(db=Depends(get_db), mailer=Depends(get_mailer)) -> NotificationDispatcher:
    return NotificationDispatcher(db, mailer)


def get_notifier(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    config: AppConfig = Depends(get_app_config),
) -> Notifier:
    return Notifier(dispatcher, config)


def _payload_identity(payload: Dict[str, Any], db) -> Identity:
    staff_id = payload.get("staffId")
    if staff_id is not None:
        try:
            staff_id = int(staff_id)
        except (TypeError, ValueError):
            raise ValidationError("staffId must be a number") from None
        staff = get_staff(db, staff_id)
        return Identity(uid=staff.claimed_by_uid, name=staff.name, email=staff.email)
    return Identity(
        uid=payload.get("employeeUid") or "",
        name=payload.get("employeeName") or "",
        email=payload.get("employeeEmail") or "",
    )


def _flag(payload: Dict[str, Any], *keys: str) -> bool:
    for key in keys:
        if key in payload:
            value = payload[key]
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "approve", "accept"}
            return bool(value)
    raise ValidationError(f"{keys[0]} is required")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/email")
def send_email(
    body: Dict[str, Any],
    identity: Identity = Depends(get_identity),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    action = (body or {}).get("action")
    payload = (body or {}).get("payload") or {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")
    logger.info("Email action %s requested by %s", action, identity.email or identity.uid)
    try:
        result = dispatcher.dispatch(action, payload)
    except UnknownActionError:
        raise
    except WorkflowError as exc:
        logger.error("Email action %s failed: %s", action, exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    return _ok(result)


@app.get("/api/v1/session")
def session_info(current: SessionContext = Depends(get_current_session)) -> JSONResponse:
    return _ok({"session": current.as_dict()})


@app.get("/api/v1/areas")
def areas(_=Depends(get_current_session)) -> JSONResponse:
    return _ok({"areas": [{"name": a, "label": area_label(a), "roles": roles_for_area(a)} for a in AREAS]})


# ---------------------------------------------------------------------------
# Staff directory


def _staff_dict(staff) -> Dict[str, Any]:
    return {
        "id": staff.id,
        "name": staff.name,
        "area": staff.area,
        "email": staff.email,
        "claimed": staff.is_claimed,
    }


@app.get("/api/v1/staff")
def staff_list(area: Optional[str] = Query(None), db=Depends(get_db), _=Depends(get_current_session)) -> JSONResponse:
    return _ok({"staff": [_staff_dict(staff) for staff in list_staff(db, area)]})


@app.post("/api/v1/staff")
def staff_create(payload: Dict[str, Any], db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    staff = create_staff(db, payload.get("name") or "", payload.get("area") or "")
    record_audit_log(db, manager.email, "STAFF_CREATE", "Staff", staff.id, {"name": staff.name, "area": staff.area})
    return _ok({"staff": _staff_dict(staff)}, status_code=201)


@app.post("/api/v1/staff/{staff_id}/email")
def staff_email(staff_id: int, payload: Dict[str, Any], db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    staff = set_staff_email(db, staff_id, payload.get("email") or "")
    record_audit_log(db, manager.email, "STAFF_EMAIL", "Staff", staff.id, {"email": staff.email})
    return _ok({"staff": _staff_dict(staff)})


@app.delete("/api/v1/staff/{staff_id}")
def staff_delete(staff_id: int, db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    remove_staff(db, staff_id)
    record_audit_log(db, manager.email, "STAFF_DELETE", "Staff", staff_id, {})
    return _ok({"id": staff_id})


# ---------------------------------------------------------------------------
# Shifts


@app.get("/api/v1/weeks/{week_start}/shifts")
def week_shifts(
    week_start: str,
    area: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
) -> JSONResponse:
    if current.is_manager:
        shifts = list_week_shifts(db, week_start, area=area, status=status)
    else:
        shifts = list_week_shifts(db, week_start, area=current.area, include_drafts=False)
    week = parse_date(week_start, "weekStart")
    return _ok({"weekStart": week.isoformat(), "shifts": [shift_to_dict(shift) for shift in shifts]})


@app.post("/api/v1/shifts")
def shift_create(payload: Dict[str, Any], db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    employee = _payload_identity(payload, db)
    employee.require_name()
    advisory = check_assignment(db, employee, payload.get("date"))
    if advisory["blocked_by_timeoff"]:
        return JSONResponse(
            status_code=409,
            content={
                "ok": False,
                "error": f"{employee.name} has approved time off on {advisory['date']}.",
                "advisory": advisory,
            },
        )
    if advisory["availability_conflict"] and not payload.get("confirm"):
        return JSONResponse(
            status_code=409,
            content={
                "ok": False,
                "error": f"{employee.name} is marked UNAVAILABLE that day. Resend with confirm=true to assign anyway.",
                "needsConfirmation": True,
                "advisory": advisory,
            },
        )
    shift = create_draft_shift(
        db,
        date=payload.get("date"),
        start=payload.get("start"),
        end=payload.get("end"),
        area=payload.get("area") or "",
        employee=employee,
        role=payload.get("role") or "",
        note=payload.get("note") or "",
        week_start=payload.get("weekStart"),
        actor=manager.email,
    )
    return _ok({"shift": shift_to_dict(shift), "advisory": advisory}, status_code=201)


@app.patch("/api/v1/shifts/{shift_id}")
def shift_update(shift_id: int, payload: Dict[str, Any], db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    field_map = {
        "employeeUid": "employee_uid",
        "employeeName": "employee_name",
        "employeeEmail": "employee_email",
    }
    patch = {field_map.get(key, key): value for key, value in (payload or {}).items()}
    shift = update_shift(db, shift_id, patch, actor=manager.email)
    return _ok({"shift": shift_to_dict(shift)})


@app.delete("/api/v1/shifts/{shift_id}")
def shift_delete(shift_id: int, db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    delete_draft_shift(db, shift_id, actor=manager.email)
    return _ok({"id": shift_id})


@app.post("/api/v1/weeks/{week_start}/publish")
def week_publish(
    week_start: str,
    payload: Dict[str, Any],
    db=Depends(get_db),
    manager=Depends(require_manager),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    summary = publish_week(db, week_start, payload.get("area") or "", actor=manager.email, notifier=notifier)
    return _ok(summary)


@app.post("/api/v1/weeks/{week_start}/duplicate")
def week_duplicate(week_start: str, payload: Dict[str, Any], db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    clones = duplicate_previous_week(db, week_start, payload.get("area") or "", actor=manager.email)
    return _ok({"created": len(clones), "shifts": [shift_to_dict(shift) for shift in clones]}, status_code=201)


@app.get("/api/v1/weeks/{week_start}/validate")
def week_validate(week_start: str, area: Optional[str] = Query(None), db=Depends(get_db), _=Depends(require_manager)) -> JSONResponse:
    return _ok({"report": validate_week(db, week_start, area)})


# ---------------------------------------------------------------------------
# Shift requests


@app.get("/api/v1/shift-requests")
def shift_request_list(
    status: Optional[str] = Query(None),
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
) -> JSONResponse:
    involving = None if current.is_manager else current.identity
    requests = list_shift_requests(db, involving=involving, status=status)
    return _ok({"requests": [request_to_dict(r) for r in requests]})


@app.post("/api/v1/shift-requests")
def shift_request_create(
    payload: Dict[str, Any],
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    if payload.get("targetShiftId") is None:
        raise ValidationError("targetShiftId is required")
    offered = payload.get("requesterShiftId")
    request = create_shift_request(
        db,
        current.identity,
        int(payload["targetShiftId"]),
        payload.get("type") or "",
        int(offered) if offered is not None else None,
        payload.get("note"),
        notifier=notifier,
    )
    return _ok({"request": request_to_dict(request)}, status_code=201)


@app.post("/api/v1/shift-requests/{request_id}/target-decision")
def shift_request_target_decision(
    request_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
    config: AppConfig = Depends(get_app_config),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    request = target_decision(
        db,
        request_id,
        current.identity,
        _flag(payload, "accept", "approve"),
        manager_email=config.manager_email,
        notifier=notifier,
    )
    return _ok({"request": request_to_dict(request)})


@app.post("/api/v1/shift-requests/{request_id}/manager-decision")
def shift_request_manager_decision(
    request_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    manager=Depends(require_manager),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    request = manager_decision(db, request_id, _flag(payload, "approve"), manager.email, notifier=notifier)
    return _ok({"request": request_to_dict(request)})


@app.post("/api/v1/shift-requests/{request_id}/cancel")
def shift_request_cancel(request_id: int, db=Depends(get_db), current: SessionContext = Depends(get_current_session)) -> JSONResponse:
    request = cancel_shift_request(db, request_id, current.identity)
    return _ok({"request": request_to_dict(request)})


# ---------------------------------------------------------------------------
# Time off


@app.get("/api/v1/timeoff")
def timeoff_list(
    status: Optional[str] = Query(None),
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
) -> JSONResponse:
    employee = None if current.is_manager else current.identity
    requests = list_timeoff_requests(db, status=status, employee=employee)
    return _ok({"requests": [timeoff_to_dict(r) for r in requests]})


@app.post("/api/v1/timeoff")
def timeoff_create(
    payload: Dict[str, Any],
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
    config: AppConfig = Depends(get_app_config),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    request = create_timeoff_request(
        db,
        current.identity,
        payload.get("date"),
        payload.get("type") or "FULL",
        payload.get("note"),
        min_days=config.timeoff_min_days,
        manager_email=config.manager_email,
        notifier=notifier,
    )
    return _ok({"request": timeoff_to_dict(request)}, status_code=201)


@app.post("/api/v1/timeoff/{request_id}/decision")
def timeoff_decision(
    request_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    manager=Depends(require_manager),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    request = decide_timeoff_request(db, request_id, _flag(payload, "approve"), manager.email, notifier=notifier)
    return _ok({"request": timeoff_to_dict(request)})


@app.post("/api/v1/timeoff/{request_id}/cancel")
def timeoff_cancel(request_id: int, db=Depends(get_db), current: SessionContext = Depends(get_current_session)) -> JSONResponse:
    request = cancel_timeoff_request(db, request_id, current.identity)
    return _ok({"request": timeoff_to_dict(request)})


# ---------------------------------------------------------------------------
# Availability


@app.get("/api/v1/availability/effective")
def availability_effective(
    uid: Optional[str] = Query(None),
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
) -> JSONResponse:
    target_uid = uid if (uid and current.is_manager) else current.uid
    days = get_effective_availability(db, target_uid)
    return _ok({"uid": target_uid, "days": days, "summary": summarize_days(days)})


@app.get("/api/v1/availability/requests")
def availability_list(
    status: Optional[str] = Query(None),
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
) -> JSONResponse:
    employee = None if current.is_manager else current.identity
    requests = list_availability_requests(db, status=status, employee=employee)
    return _ok({"requests": [availability_to_dict(r) for r in requests]})


@app.post("/api/v1/availability/requests")
def availability_create(
    payload: Dict[str, Any],
    db=Depends(get_db),
    current: SessionContext = Depends(get_current_session),
    config: AppConfig = Depends(get_app_config),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    request = create_availability_request(
        db,
        current.identity,
        payload.get("proposedDays") or {},
        config.manager_email,
        notifier=notifier,
    )
    return _ok({"request": availability_to_dict(request)}, status_code=201)


@app.post("/api/v1/availability/requests/{request_id}/decision")
def availability_decision(
    request_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    manager=Depends(require_manager),
    notifier: Notifier = Depends(get_notifier),
) -> JSONResponse:
    if _flag(payload, "approve"):
        request = approve_availability_request(db, request_id, manager.email, notifier=notifier)
    else:
        request = reject_availability_request(db, request_id, manager.email, notifier=notifier)
    return _ok({"request": availability_to_dict(request)})


@app.post("/api/v1/availability/requests/{request_id}/cancel")
def availability_cancel(request_id: int, db=Depends(get_db), current: SessionContext = Depends(get_current_session)) -> JSONResponse:
    request = cancel_availability_request(db, request_id, current.identity)
    return _ok({"request": availability_to_dict(request)})


# ---------------------------------------------------------------------------
# Configuration


@app.get("/api/v1/config")
def config_get(config: AppConfig = Depends(get_app_config), _=Depends(require_manager)) -> JSONResponse:
    return _ok({"config": config.as_dict()})


@app.put("/api/v1/config")
def config_put(payload: Dict[str, Any], db=Depends(get_db), manager=Depends(require_manager)) -> JSONResponse:
    config = upsert_app_config(db, payload or {}, edited_by=manager.email)
    record_audit_log(db, manager.email, "CONFIG_EDIT", "AppConfig", None, config.as_dict())
    return _ok({"config": config.as_dict()})
