"""Email templates per workflow action and the post-commit notification hook.

The dispatcher maps an action tag plus payload to recipients, subject and
HTML body, then hands the message to a mailer. Workflows never call it
directly: they commit their state change and then go through ``Notifier``,
which logs and swallows any failure so delivery problems cannot undo or
block a transition.
"""

from __future__ import annotations

import datetime
import html
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import select

from .areas import normalize_email
from .config import AppConfig, load_app_config
from .database import Shift, format_week_label
from .errors import ConfigurationError, DeliveryError, ValidationError
from .mailer import Recipient
from .states import ShiftStatus

logger = logging.getLogger(__name__)

SCHEDULE_PUBLISHED_WEEK = "schedule_published_week"
SWAP_REQUESTED = "swap_requested"
SWAP_NEEDS_MANAGER = "swap_needs_manager"
SWAP_MANAGER_DECISION = "swap_manager_decision"
TIMEOFF_PENDING = "timeoff_pending"
TIMEOFF_DECISION = "timeoff_decision"
AVAILABILITY_PENDING = "availability_pending"
AVAILABILITY_DECISION = "availability_decision"

BUTTON_STYLE = (
    "display:inline-block;padding:12px 14px;background:#3FA9F5;color:#001423;"
    "border-radius:10px;text-decoration:none;font-weight:800"
)


class UnknownActionError(ValidationError):
    pass


def _esc(value: Any) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def _button(href: str, label: str) -> str:
    return f'<p><a href="{_esc(href)}" style="{BUTTON_STYLE}">{_esc(label)}</a></p>'


def _wrap(subject: str, *parts: str) -> str:
    body = "".join(part for part in parts if part)
    return f'<div style="font-family:system-ui;line-height:1.4"><h2>{_esc(subject)}</h2>{body}</div>'


def _line(label: str, value: Any) -> str:
    if value in (None, ""):
        return ""
    return f"<p><b>{_esc(label)}:</b> {_esc(value)}</p>"


class NotificationDispatcher:
    def __init__(
        self,
        session,
        mailer,
        *,
        config_loader: Callable[[Any], AppConfig] = load_app_config,
    ):
        self.session = session
        self.mailer = mailer
        self.config_loader = config_loader
        self._handlers: Dict[str, Callable[[Dict[str, Any], AppConfig], Dict[str, Any]]] = {
            SCHEDULE_PUBLISHED_WEEK: self._schedule_published_week,
            SWAP_REQUESTED: self._swap_requested,
            SWAP_NEEDS_MANAGER: self._swap_needs_manager,
            SWAP_MANAGER_DECISION: self._swap_manager_decision,
            TIMEOFF_PENDING: self._timeoff_pending,
            TIMEOFF_DECISION: self._timeoff_decision,
            AVAILABILITY_PENDING: self._availability_pending,
            AVAILABILITY_DECISION: self._availability_decision,
        }

    @property
    def actions(self) -> List[str]:
        return sorted(self._handlers)

    def dispatch(self, action: str, payload: Optional[Dict[str, Any]], config: Optional[AppConfig] = None) -> Dict[str, Any]:
        handler = self._handlers.get(action or "")
        if handler is None:
            raise UnknownActionError("Unknown action")
        config = config or self.config_loader(self.session)
        if not config.app_url:
            raise ConfigurationError("Missing appUrl (set app_config main.appUrl or APP_URL).")
        if self.mailer is None:
            raise ConfigurationError("No mailer configured (set BREVO_KEY and EMAIL_FROM).")
        result = handler(payload or {}, config)
        result.setdefault("ok", True)
        return result

    def _send(self, to: List[Recipient], subject: str, body: str) -> None:
        self.mailer.send(to, subject, body)

    @staticmethod
    def _manager_address(payload: Dict[str, Any], config: AppConfig) -> str:
        manager = config.manager_email or normalize_email(payload.get("managerEmail"))
        if not manager:
            raise ConfigurationError("managerEmail not set (app_config main.managerEmail).")
        return manager

    def _schedule_published_week(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        week_start = payload.get("weekStart")
        area = payload.get("area")
        if not week_start or not area:
            raise ValidationError("Missing weekStart/area")
        if isinstance(week_start, str):
            try:
                week_start = datetime.date.fromisoformat(week_start)
            except ValueError:
                raise ValidationError("weekStart must be YYYY-MM-DD") from None
        elif not isinstance(week_start, datetime.date):
            raise ValidationError("weekStart must be YYYY-MM-DD")
        shifts = self.session.scalars(
            select(Shift).where(
                Shift.week_start == week_start,
                Shift.area == area,
                Shift.status == ShiftStatus.PUBLISHED.value,
            )
        ).all()
        by_email: Dict[str, List[Shift]] = defaultdict(list)
        for shift in shifts:
            email = normalize_email(shift.employee_email)
            if email:
                by_email[email].append(shift)

        week_label = week_start.isoformat()
        schedule_link = config.link(f"/dashboard?tab=week&weekStart={quote(week_label)}")
        delivered = 0
        failures: List[str] = []
        for email, items in by_email.items():
            items.sort(key=lambda s: (s.date, s.start))
            name = items[0].employee_name or email.split("@")[0]
            rows = "".join(
                f"<li><b>{_esc(s.date.isoformat())}</b> &bull; {_esc(s.start.strftime('%H:%M'))}"
                f"&ndash;{_esc(s.end.strftime('%H:%M'))} &bull; {_esc(s.role)}</li>"
                for s in items
            )
            subject = f"Your schedule for {format_week_label(week_start)} ({area})"
            body = _wrap(
                subject,
                f"<p>Hi {_esc(name)}, here are <b>only your</b> shifts this week:</p>",
                f"<ul>{rows}</ul>",
                _button(schedule_link, "See the full schedule"),
            )
            try:
                self._send([Recipient(email, name)], subject, body)
                delivered += 1
            except DeliveryError as exc:
                failures.append(email)
                logger.warning("Schedule email to %s failed: %s", email, exc)

        if config.manager_email:
            subject = f"Schedule published ({week_label}) - {area}"
            body = _wrap(
                subject,
                "<p>Schedule published. Employees have been notified.</p>",
                f'<p><a href="{_esc(schedule_link)}">Open in the app</a></p>',
            )
            try:
                self._send([Recipient(config.manager_email, "Manager")], subject, body)
            except DeliveryError as exc:
                logger.warning("Publish confirmation to manager failed: %s", exc)
        return {"ok": True, "notified": len(by_email), "delivered": delivered, "failed": failures}

    def _swap_requested(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        target_email = normalize_email(payload.get("targetEmail"))
        if not target_email:
            raise ValidationError("Missing targetEmail")
        if payload.get("type") == "TAKE":
            subject = "Request: someone wants to take one of your shifts"
        else:
            subject = "Request: someone wants to swap shifts with you"
        body = _wrap(
            subject,
            f"<p><b>Requested by:</b> {_esc(payload.get('requesterName'))} ({_esc(payload.get('requesterEmail'))})</p>",
            _line("Note", payload.get("note")),
            "<p>Open the app to accept or reject:</p>",
            _button(config.link("/dashboard?tab=swaps"), "See details in the app"),
        )
        self._send([Recipient(target_email, payload.get("targetName") or "Employee")], subject, body)
        return {"ok": True}

    def _swap_needs_manager(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        manager = self._manager_address(payload, config)
        subject = "Shift change waiting for manager approval"
        body = _wrap(
            subject,
            f"<p><b>Requester:</b> {_esc(payload.get('requesterName'))} ({_esc(payload.get('requesterEmail'))})</p>",
            f"<p><b>Target:</b> {_esc(payload.get('targetName'))} ({_esc(payload.get('targetEmail'))})</p>",
            _button(config.link("/dashboard?tab=swaps"), "Open the app to approve or reject"),
        )
        self._send([Recipient(manager, "Manager")], subject, body)
        return {"ok": True}

    def _swap_manager_decision(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        status = payload.get("status")
        if status == "APPROVED_BY_MANAGER":
            subject = "Shift change approved by the manager"
        else:
            subject = "Shift change rejected by the manager"
        body = _wrap(
            subject,
            f"<p>Status: <b>{_esc(status)}</b></p>",
            _button(config.link("/dashboard?tab=swaps"), "See details in the app"),
        )
        to: List[Recipient] = []
        for prefix in ("requester", "target"):
            email = normalize_email(payload.get(f"{prefix}Email"))
            if email:
                to.append(Recipient(email, payload.get(f"{prefix}Name") or "Employee"))
        if to:
            self._send(to, subject, body)
        return {"ok": True, "notified": len(to)}

    def _timeoff_pending(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        manager = self._manager_address(payload, config)
        subject = "New time-off request (approve/reject)"
        body = _wrap(
            subject,
            f"<p><b>Employee:</b> {_esc(payload.get('employeeName'))} ({_esc(payload.get('employeeEmail'))})</p>",
            _line("Date", payload.get("date")),
            _line("Type", payload.get("type")),
            _line("Note", payload.get("note")),
            _button(config.link("/dashboard?tab=timeoff"), "Open in the app"),
        )
        self._send([Recipient(manager, "Manager")], subject, body)
        return {"ok": True}

    def _timeoff_decision(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        email = normalize_email(payload.get("employeeEmail"))
        if not email:
            raise ValidationError("Missing employeeEmail")
        if payload.get("status") == "APPROVED":
            subject = "Your time off was approved"
        else:
            subject = "Your time off was rejected"
        body = _wrap(
            subject,
            _line("Date", payload.get("date")),
            _line("Type", payload.get("type")),
            _line("Note", payload.get("note")),
            _button(config.link("/dashboard?tab=timeoff"), "See details in the app"),
        )
        self._send([Recipient(email, payload.get("employeeName") or "Employee")], subject, body)
        return {"ok": True}

    def _availability_pending(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        manager = self._manager_address(payload, config)
        subject = "New availability request (approve/reject)"
        body = _wrap(
            subject,
            f"<p><b>Employee:</b> {_esc(payload.get('employeeName'))} ({_esc(payload.get('employeeEmail'))})</p>",
            _line("Request", payload.get("summary") or "(no details)"),
            _button(config.link("/dashboard?tab=availability"), "Open in the app"),
        )
        self._send([Recipient(manager, "Manager")], subject, body)
        return {"ok": True}

    def _availability_decision(self, payload: Dict[str, Any], config: AppConfig) -> Dict[str, Any]:
        email = normalize_email(payload.get("employeeEmail"))
        if not email:
            raise ValidationError("Missing employeeEmail")
        if payload.get("status") == "APPROVED":
            subject = "Your availability was approved"
        else:
            subject = "Your availability was rejected"
        body = _wrap(
            subject,
            _line("Request", payload.get("summary") or "(no details)"),
            _button(config.link("/dashboard?tab=availability"), "See details in the app"),
        )
        self._send([Recipient(email, payload.get("employeeName") or "Employee")], subject, body)
        return {"ok": True}


class Notifier:
    """Post-commit hook list: runs after a transition commits, never raises."""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None, config: Optional[AppConfig] = None):
        self.dispatcher = dispatcher
        self.config = config
        self.history: List[Dict[str, Any]] = []

    def notify(self, action: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        entry: Dict[str, Any] = {"action": action, "payload": payload, "ok": False}
        self.history.append(entry)
        if self.dispatcher is None:
            logger.info("No dispatcher configured; skipping %s", action)
            return None
        try:
            result = self.dispatcher.dispatch(action, payload, self.config)
        except Exception as exc:  # noqa: BLE001
            entry["error"] = str(exc)
            logger.warning("Notification %s failed: %s", action, exc)
            return None
        entry["ok"] = True
        entry["result"] = result
        return result
