from __future__ import annotations

from typing import Dict, List

from .errors import ValidationError


AREAS: List[str] = ["Front", "Back"]

AREA_LABELS: Dict[str, str] = {
    "Front": "Front of house",
    "Back": "Back of house",
}

DEFAULT_ROLES: Dict[str, List[str]] = {
    "Front": [
        "Server",
        "Server - Opener",
        "Server - Closer",
        "Host",
        "Bartender",
        "Cashier - To-Go",
    ],
    "Back": [
        "Cook",
        "Line Cook",
        "Prep",
        "Dishwasher",
        "Sushi",
    ],
}

_ALIASES: Dict[str, str] = {
    "front": "Front",
    "foh": "Front",
    "front of house": "Front",
    "salao": "Front",
    "back": "Back",
    "boh": "Back",
    "hoh": "Back",
    "back of house": "Back",
    "kitchen": "Back",
    "cozinha": "Back",
}


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def normalize_area(area: str | None) -> str:
    """Return the canonical area name or raise for anything outside Front/Back."""
    label = (area or "").strip().lower()
    if not label:
        raise ValidationError("Area is required (Front or Back).")
    canonical = _ALIASES.get(label)
    if canonical is None:
        raise ValidationError(f"Unknown area '{area}'. Use Front or Back.")
    return canonical


def area_label(area: str) -> str:
    return AREA_LABELS.get(area, area)


def roles_for_area(area: str) -> List[str]:
    return list(DEFAULT_ROLES.get(normalize_area(area), []))
