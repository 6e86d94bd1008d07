"""Exception hierarchy for nextbus-geofence.

Only :class:`ConfigError` is fatal.  Every other error is scoped to a single
record or a single job tick and is logged by the job that hit it.
"""

from __future__ import annotations

from typing import Any


class GeofenceServiceError(Exception):
    """Base exception for all nextbus-geofence errors."""


class ConfigError(GeofenceServiceError):
    """Invalid or missing configuration or fence definitions."""


class FetchError(GeofenceServiceError):
    """Feed request failed (network, timeout, non-2xx, undecodable body)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ValidationError(GeofenceServiceError):
    """One raw vehicle record has a field that cannot be parsed."""

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"{field}={value!r}: {reason}")


class WriteError(GeofenceServiceError):
    """Bulk upsert of a location batch failed."""


class MatchError(GeofenceServiceError):
    """The geofence containment query failed."""


class RegisterError(GeofenceServiceError):
    """Clearing or rebuilding the hit set failed."""

    def __init__(self, message: str, *, phase: str) -> None:
        self.phase = phase
        super().__init__(message)
