"""Error taxonomy shared by the lifecycle engine and its HTTP surface."""

from __future__ import annotations


class LaundryError(RuntimeError):
    """Base exception for failures surfaced to callers."""

    status_code = 500


class ValidationError(LaundryError, ValueError):
    """Malformed input, such as a non-positive duration or an unknown status."""

    status_code = 400


class NotFoundError(LaundryError, LookupError):
    """A job, machine, load or transaction does not exist."""

    status_code = 404


class ConflictError(LaundryError):
    """The request collides with the current state of a shared resource."""

    status_code = 409


class InvalidStateError(LaundryError):
    """Operation attempted outside its legal lifecycle state."""

    status_code = 409


class JobAlreadyClaimedError(ConflictError, InvalidStateError):
    """Raised when claiming a job whose pickup has already been recorded."""


class NotificationError(LaundryError):
    """Delivery through a notification channel failed."""

    status_code = 502


__all__ = [
    "LaundryError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "JobAlreadyClaimedError",
    "NotificationError",
]
