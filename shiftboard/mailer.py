"""Outbound transactional email through Brevo's REST API."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

import requests

from .errors import ConfigurationError, DeliveryError

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"
DEFAULT_SENDER_NAME = "Sea San Shifts"
REQUEST_TIMEOUT_SECONDS = 15
_FROM_PATTERN = re.compile(r"^(.*)<(.*)>$")


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str = ""

    def as_dict(self):
        payload = {"email": self.email}
        if self.name:
            payload["name"] = self.name
        return payload


def parse_from(value: str) -> Tuple[str, str]:
    match = _FROM_PATTERN.match(value.strip())
    if not match:
        return DEFAULT_SENDER_NAME, value.strip()
    return match.group(1).strip(), match.group(2).strip()


class BrevoMailer:
    def __init__(self, api_key: str, sender: str, *, http=None, url: str = BREVO_SEND_URL):
        if not api_key:
            raise ConfigurationError("Missing BREVO_KEY.")
        if not sender:
            raise ConfigurationError("Missing EMAIL_FROM.")
        self.api_key = api_key
        self.sender_name, self.sender_email = parse_from(sender)
        self.http = http or requests.Session()
        self.url = url

    def send(self, to: Sequence[Recipient], subject: str, html: str) -> None:
        if not to:
            return
        body = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [recipient.as_dict() for recipient in to],
            "subject": subject,
            "htmlContent": html,
        }
        headers = {"api-key": self.api_key, "accept": "application/json"}
        try:
            response = self.http.post(self.url, json=body, headers=headers, timeout=REQUEST_TIMEOUT_SECONDS)
        except requests.RequestException as exc:
            raise DeliveryError(f"Email provider unreachable: {exc}") from exc
        if response.status_code >= 300:
            raise DeliveryError(f"Email provider returned {response.status_code}: {response.text[:200]}")
        logger.info("Sent '%s' to %s", subject, ", ".join(r.email for r in to))


def mailer_from_env(environ: Optional[Mapping[str, str]] = None) -> BrevoMailer:
    env = os.environ if environ is None else environ
    return BrevoMailer(env.get("BREVO_KEY", ""), env.get("EMAIL_FROM", ""))


class RecordingMailer:
    """Keeps messages in memory; used by local development and tests."""

    def __init__(self, fail_for: Optional[Sequence[str]] = None):
        self.messages: List[dict] = []
        self.fail_for = {email.lower() for email in (fail_for or [])}

    def send(self, to: Sequence[Recipient], subject: str, html: str) -> None:
        failing = [r.email for r in to if r.email.lower() in self.fail_for]
        if failing:
            raise DeliveryError(f"Simulated delivery failure for {', '.join(failing)}")
        self.messages.append({"to": [r.email for r in to], "subject": subject, "html": html})
