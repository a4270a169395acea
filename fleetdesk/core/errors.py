# fleetdesk/core/errors.py
"""
Typed domain errors.

Each error maps to a specific HTTP status code.  The transport layer
catches ``FleetError`` subtypes and converts them to ``HTTPException``
without embedding business logic in the route handlers.  Storage
adapters translate driver exceptions into ``TransientIOError`` so the
services only ever see this hierarchy.
"""
from __future__ import annotations


class FleetError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationGapError(FleetError):
    """Required payload field missing or malformed (400)."""

    status_code = 400


class PermissionDeniedError(FleetError):
    """Caller is not allowed to perform the operation (403)."""

    status_code = 403


class NotFoundError(FleetError):
    """Record not found (404)."""

    status_code = 404


class ConflictError(FleetError):
    """Duplicate or conflicting state (409)."""

    status_code = 409


class InvalidTransitionError(ConflictError):
    """Dispatch status move not allowed from the current status (409)."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move dispatch from '{current}' to '{requested}'")


class TransientIOError(FleetError):
    """Store or blob backend unavailable or timed out (503)."""

    status_code = 503
