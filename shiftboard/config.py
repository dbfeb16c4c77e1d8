from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .areas import normalize_email
from .database import get_app_config_record, upsert_app_config_record
from .errors import ConfigurationError, ValidationError

load_dotenv()

DEFAULT_TIMEOFF_MIN_DAYS = 7
CONFIG_KEYS = {"appUrl", "managerEmail", "timeoffMinDays"}
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class AppConfig:
    """Per-request view of the central configuration record."""

    app_url: str = ""
    manager_email: str = ""
    timeoff_min_days: int = DEFAULT_TIMEOFF_MIN_DAYS

    def link(self, path: str) -> str:
        if not self.app_url:
            raise ConfigurationError("Missing appUrl (set app_config main.appUrl or APP_URL).")
        return f"{self.app_url.rstrip('/')}{path}"

    def is_manager(self, email: str | None) -> bool:
        email = normalize_email(email)
        return bool(email) and email == self.manager_email

    def as_dict(self) -> Dict[str, Any]:
        return {
            "appUrl": self.app_url,
            "managerEmail": self.manager_email,
            "timeoffMinDays": self.timeoff_min_days,
        }


@dataclass(frozen=True)
class SecuritySettings:
    secret_key: str
    algorithm: str = "HS256"
    token_expire_minutes: int = 60 * 24 * 30


def _coerce_days(value: Any, fallback: int) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        return fallback
    return max(0, days)


def load_app_config(session=None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Merge the `main` config record over the environment fallback."""
    env = os.environ if environ is None else environ
    params: Dict[str, Any] = {}
    if session is not None:
        record = get_app_config_record(session)
        if record:
            params = record.params_dict()
    app_url = str(params.get("appUrl") or env.get("APP_URL") or "").strip()
    manager_email = normalize_email(params.get("managerEmail") or env.get("MANAGER_EMAIL"))
    env_days = _coerce_days(env.get("TIMEOFF_MIN_DAYS"), DEFAULT_TIMEOFF_MIN_DAYS)
    min_days = _coerce_days(params.get("timeoffMinDays"), env_days)
    return AppConfig(app_url=app_url, manager_email=manager_email, timeoff_min_days=min_days)


def upsert_app_config(session, params: Dict[str, Any], *, edited_by: str = "system") -> AppConfig:
    unknown = set(params or {}) - CONFIG_KEYS
    if unknown:
        raise ValidationError(f"Unknown config keys: {', '.join(sorted(unknown))}.")
    clean: Dict[str, Any] = {}
    if "appUrl" in params:
        clean["appUrl"] = str(params["appUrl"] or "").strip()
    if "managerEmail" in params:
        clean["managerEmail"] = normalize_email(params["managerEmail"])
    if "timeoffMinDays" in params:
        try:
            days = int(params["timeoffMinDays"])
        except (TypeError, ValueError):
            raise ValidationError("timeoffMinDays must be a whole number.") from None
        if days < 0:
            raise ValidationError("timeoffMinDays cannot be negative.")
        clean["timeoffMinDays"] = days
    upsert_app_config_record(session, clean, edited_by=edited_by)
    return load_app_config(session)


def load_security_settings(environ: Optional[Mapping[str, str]] = None) -> SecuritySettings:
    env = os.environ if environ is None else environ
    secret = env.get("SHIFTBOARD_SECRET_KEY", "")
    if not secret:
        raise ConfigurationError("Missing SHIFTBOARD_SECRET_KEY.")
    return SecuritySettings(
        secret_key=secret,
        algorithm=env.get("SHIFTBOARD_TOKEN_ALGORITHM", "HS256"),
        token_expire_minutes=_coerce_days(env.get("SHIFTBOARD_TOKEN_EXPIRE_MINUTES"), 60 * 24 * 30),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("SHIFTBOARD_LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
    )
