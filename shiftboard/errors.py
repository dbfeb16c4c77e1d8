from __future__ import annotations


class WorkflowError(Exception):
    """Base class for errors raised by the scheduling workflows."""

    status_code = 500


class ValidationError(WorkflowError, ValueError):
    """Input was incomplete or violated a rule; nothing was attempted."""

    status_code = 400


class PermissionDeniedError(WorkflowError, PermissionError):
    status_code = 403


class NotFoundError(WorkflowError, LookupError):
    status_code = 404


class StateConflictError(WorkflowError):
    """The record is not in a state that allows the requested transition."""

    status_code = 409


class ConfigurationError(WorkflowError):
    status_code = 500


class DeliveryError(WorkflowError):
    """The mail provider rejected or never received a message."""
