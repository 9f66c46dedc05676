"""Exception hierarchy shared across the engine."""

from __future__ import annotations

from typing import Any


class MonitorError(Exception):
    """Base class for all engine errors."""


class ValidationError(MonitorError):
    """Raised when an intake record is malformed or unidentifiable."""


class NotFoundError(MonitorError):
    """Raised when a collection or alert does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class AuthorizationError(MonitorError):
    """Raised when an admin operation is called without a valid key."""


class TransientDeliveryError(MonitorError):
    """Raised by a notification channel when one delivery attempt fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(MonitorError):
    """Raised when the durable store fails during ingest, upsert or sweep.

    ``partial`` carries whatever progress was made before the failure, so
    callers can still report it.
    """

    def __init__(self, message: str, *, partial: Any = None) -> None:
        super().__init__(message)
        self.partial = partial
