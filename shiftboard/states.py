from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Mapping

from .errors import StateConflictError, ValidationError


class ShiftStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class RequestType(str, Enum):
    TAKE = "TAKE"
    SWAP = "SWAP"


class ShiftRequestStatus(str, Enum):
    PENDING_TARGET = "PENDING_TARGET"
    REJECTED_BY_TARGET = "REJECTED_BY_TARGET"
    PENDING_MANAGER = "PENDING_MANAGER"
    REJECTED_BY_MANAGER = "REJECTED_BY_MANAGER"
    APPROVED_BY_MANAGER = "APPROVED_BY_MANAGER"
    CANCELLED = "CANCELLED"


class DecisionStatus(str, Enum):
    """Lifecycle shared by time-off and availability requests."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class TimeOffType(str, Enum):
    FULL = "FULL"
    HALF_AM = "HALF_AM"
    HALF_PM = "HALF_PM"


class DayStatus(str, Enum):
    OPEN = "OPEN"
    UNAVAILABLE = "UNAVAILABLE"


class StateMachine:
    """Transition table for one workflow; every status change goes through it."""

    def __init__(self, name: str, transitions: Mapping[Enum, FrozenSet[Enum]]):
        self.name = name
        self.transitions: Dict[Enum, FrozenSet[Enum]] = dict(transitions)

    def allowed(self, current: Enum) -> FrozenSet[Enum]:
        return self.transitions.get(current, frozenset())

    def is_terminal(self, status: Enum) -> bool:
        return not self.allowed(status)

    def can_move(self, current: Enum, target: Enum) -> bool:
        return target in self.allowed(current)

    def ensure(self, current: str | Enum, target: Enum) -> Enum:
        """Return the target status or raise if the move is not in the table."""
        state_type = type(target)
        try:
            current_state = state_type(current)
        except ValueError as exc:
            raise StateConflictError(f"Unknown {self.name} status '{current}'.") from exc
        if not self.can_move(current_state, target):
            raise StateConflictError(
                f"{self.name} is {current_state.value}; cannot move to {target.value}."
            )
        return target


SHIFT_REQUEST_FLOW = StateMachine(
    "Shift request",
    {
        ShiftRequestStatus.PENDING_TARGET: frozenset(
            {
                ShiftRequestStatus.PENDING_MANAGER,
                ShiftRequestStatus.REJECTED_BY_TARGET,
                ShiftRequestStatus.CANCELLED,
            }
        ),
        ShiftRequestStatus.PENDING_MANAGER: frozenset(
            {
                ShiftRequestStatus.APPROVED_BY_MANAGER,
                ShiftRequestStatus.REJECTED_BY_MANAGER,
                ShiftRequestStatus.CANCELLED,
            }
        ),
    },
)

DECISION_FLOW = StateMachine(
    "Request",
    {
        DecisionStatus.PENDING: frozenset(
            {DecisionStatus.APPROVED, DecisionStatus.REJECTED, DecisionStatus.CANCELLED}
        ),
    },
)

SHIFT_FLOW = StateMachine(
    "Shift",
    {ShiftStatus.DRAFT: frozenset({ShiftStatus.PUBLISHED})},
)


def parse_choice(enum_type, value, field: str):
    """Coerce user input into an enum member or raise a validation error."""
    if isinstance(value, enum_type):
        return value
    label = str(value or "").strip().upper()
    try:
        return enum_type(label)
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"{field} must be one of: {choices}.") from None
