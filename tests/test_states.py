from __future__ import annotations

import unittest

from shiftboard.errors import StateConflictError, ValidationError
from shiftboard.states import (
    DECISION_FLOW,
    SHIFT_FLOW,
    SHIFT_REQUEST_FLOW,
    DecisionStatus,
    RequestType,
    ShiftRequestStatus,
    ShiftStatus,
    parse_choice,
)


class ShiftRequestFlowTests(unittest.TestCase):
    def test_peer_then_manager_path(self) -> None:
        status = SHIFT_REQUEST_FLOW.ensure("PENDING_TARGET", ShiftRequestStatus.PENDING_MANAGER)
        self.assertIs(status, ShiftRequestStatus.PENDING_MANAGER)
        status = SHIFT_REQUEST_FLOW.ensure(status, ShiftRequestStatus.APPROVED_BY_MANAGER)
        self.assertIs(status, ShiftRequestStatus.APPROVED_BY_MANAGER)

    def test_manager_cannot_skip_target(self) -> None:
        with self.assertRaises(StateConflictError):
            SHIFT_REQUEST_FLOW.ensure("PENDING_TARGET", ShiftRequestStatus.APPROVED_BY_MANAGER)

    def test_terminal_states_have_no_exits(self) -> None:
        for status in (
            ShiftRequestStatus.REJECTED_BY_TARGET,
            ShiftRequestStatus.REJECTED_BY_MANAGER,
            ShiftRequestStatus.APPROVED_BY_MANAGER,
            ShiftRequestStatus.CANCELLED,
        ):
            self.assertTrue(SHIFT_REQUEST_FLOW.is_terminal(status))
            with self.assertRaises(StateConflictError):
                SHIFT_REQUEST_FLOW.ensure(status, ShiftRequestStatus.CANCELLED)

    def test_cancel_allowed_while_pending(self) -> None:
        self.assertTrue(SHIFT_REQUEST_FLOW.can_move(ShiftRequestStatus.PENDING_TARGET, ShiftRequestStatus.CANCELLED))
        self.assertTrue(SHIFT_REQUEST_FLOW.can_move(ShiftRequestStatus.PENDING_MANAGER, ShiftRequestStatus.CANCELLED))

    def test_unknown_stored_status_is_a_conflict(self) -> None:
        with self.assertRaises(StateConflictError):
            SHIFT_REQUEST_FLOW.ensure("LOST", ShiftRequestStatus.CANCELLED)


class DecisionAndShiftFlowTests(unittest.TestCase):
    def test_decisions_only_leave_pending(self) -> None:
        self.assertIs(DECISION_FLOW.ensure("PENDING", DecisionStatus.APPROVED), DecisionStatus.APPROVED)
        with self.assertRaises(StateConflictError):
            DECISION_FLOW.ensure("APPROVED", DecisionStatus.REJECTED)
        with self.assertRaises(StateConflictError):
            DECISION_FLOW.ensure("REJECTED", DecisionStatus.CANCELLED)

    def test_shift_is_published_once(self) -> None:
        self.assertIs(SHIFT_FLOW.ensure("DRAFT", ShiftStatus.PUBLISHED), ShiftStatus.PUBLISHED)
        with self.assertRaises(StateConflictError):
            SHIFT_FLOW.ensure("PUBLISHED", ShiftStatus.PUBLISHED)


class ParseChoiceTests(unittest.TestCase):
    def test_is_case_insensitive(self) -> None:
        self.assertIs(parse_choice(RequestType, " swap ", "type"), RequestType.SWAP)

    def test_rejects_unknown_values(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            parse_choice(RequestType, "GIVE", "type")
        self.assertIn("TAKE", str(ctx.exception))
