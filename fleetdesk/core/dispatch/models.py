# fleetdesk/core/dispatch/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.errors import ValidationGapError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_iso(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    # Naive timestamps are stored as UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def location_label(location: Any, fallback: str) -> str:
    """Human-readable address for a location stored as a string or an
    ``{"address": ..., "lat": ..., "lng": ...}`` dict."""
    if isinstance(location, dict):
        return location.get("address") or location.get("name") or fallback
    if isinstance(location, str) and location.strip():
        return location.strip()
    return fallback


@dataclass
class Assignment:
    """One driver (and truck) attached to a dispatch."""

    driver_id: str
    truck_id: str | None = None
    status: DispatchStatus = DispatchStatus.ASSIGNED
    driver_name: str | None = None
    notes: str | None = None
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict) -> "Assignment":
        driver_id = doc.get("driverId")
        if not driver_id:
            raise ValidationGapError("Assignment is missing driverId")
        return cls(
            driver_id=driver_id,
            truck_id=doc.get("truckId"),
            status=DispatchStatus.parse(doc.get("status") or DispatchStatus.ASSIGNED),
            driver_name=doc.get("driverName"),
            notes=doc.get("notes"),
            assigned_at=parse_iso(doc.get("assignedAt")),
            started_at=parse_iso(doc.get("startedAt")),
            completed_at=parse_iso(doc.get("completedAt")),
        )

    def to_document(self) -> dict:
        doc = {
            "driverId": self.driver_id,
            "truckId": self.truck_id,
            "status": self.status.value,
            "assignedAt": to_iso(self.assigned_at),
        }
        optional = {
            "driverName": self.driver_name,
            "notes": self.notes,
            "startedAt": to_iso(self.started_at),
            "completedAt": to_iso(self.completed_at),
        }
        doc.update({k: v for k, v in optional.items() if v is not None})
        return doc

    def move_to(self, status: DispatchStatus, at: datetime) -> None:
        """Set status and stamp startedAt/completedAt on first entry."""
        self.status = status
        if status == DispatchStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = at
        if status == DispatchStatus.COMPLETED:
            if self.started_at is None:
                self.started_at = at
            self.completed_at = at


@dataclass
class Dispatch:
    """A trip request and its lifecycle."""

    id: str
    status: DispatchStatus
    customer_id: str | None
    source_location: Any = None
    destination_location: Any = None
    assignments: list[Assignment] = field(default_factory=list)
    reference: str | None = None
    customer_name: str | None = None
    requested_time: str | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    status_changed_at: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def pickup(self) -> str:
        return location_label(self.source_location, "pickup location")

    @property
    def dropoff(self) -> str:
        return location_label(self.destination_location, "destination")

    @property
    def display_ref(self) -> str:
        """Short id shown to people: the dispatch code, else the storage key."""
        return self.reference or self.id

    @property
    def driver_ids(self) -> list[str]:
        return [a.driver_id for a in self.assignments]

    def assignment_for(self, driver_id: str) -> Assignment | None:
        for assignment in self.assignments:
            if assignment.driver_id == driver_id:
                return assignment
        return None

    @classmethod
    def from_document(cls, doc: dict) -> "Dispatch":
        raw_assignments = doc.get("assignments") or []
        # Older rows keep assignments as a map keyed by driver id
        if isinstance(raw_assignments, dict):
            raw_assignments = [
                {"driverId": driver_id, **value} for driver_id, value in raw_assignments.items()
            ]
        return cls(
            id=doc["id"],
            status=DispatchStatus.parse(doc.get("status") or DispatchStatus.PENDING),
            customer_id=doc.get("customerId"),
            source_location=doc.get("sourceLocation"),
            destination_location=doc.get("destinationLocation"),
            assignments=[Assignment.from_document(a) for a in raw_assignments],
            reference=doc.get("dispatchId"),
            customer_name=doc.get("customerName"),
            requested_time=doc.get("requestedTime"),
            notes=doc.get("notes"),
            rejection_reason=doc.get("rejectionReason"),
            status_changed_at=dict(doc.get("statusChangedAt") or {}),
            created_at=parse_iso(doc.get("createdAt")),
            updated_at=parse_iso(doc.get("updatedAt")),
        )

    def to_document(self) -> dict:
        doc = {
            "status": self.status.value,
            "customerId": self.customer_id,
            "sourceLocation": self.source_location,
            "destinationLocation": self.destination_location,
            "assignments": [a.to_document() for a in self.assignments],
            "statusChangedAt": dict(self.status_changed_at),
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }
        optional = {
            "dispatchId": self.reference,
            "customerName": self.customer_name,
            "requestedTime": self.requested_time,
            "notes": self.notes,
            "rejectionReason": self.rejection_reason,
        }
        doc.update({k: v for k, v in optional.items() if v is not None})
        return doc
