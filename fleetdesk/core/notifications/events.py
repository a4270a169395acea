# fleetdesk/core/notifications/events.py
"""
Domain events that fan out into notifications.

Each event is a frozen dataclass tagged by ``kind``.  Payloads carry the
identifiers plus the human-readable context (addresses, names) needed to
render messages, so the engine never re-reads the dispatch.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.errors import ValidationGapError
from fleetdesk.core.notifications.records import Priority


class EventKind(str, Enum):
    NEW_REQUEST = "new_request"
    STATUS_CHANGED = "status_changed"
    IMAGE_UPLOADED = "image_uploaded"
    ADMIN_BROADCAST = "admin_broadcast"


class Audience(str, Enum):
    ALL_CUSTOMERS = "all-customers"
    ALL_DRIVERS = "all-drivers"
    ALL_USERS = "all-users"
    SPECIFIC_CUSTOMER = "specific-customer"
    SPECIFIC_DRIVER = "specific-driver"
    ADMIN_ONLY = "admin-only"

    @property
    def needs_recipient_id(self) -> bool:
        return self in (Audience.SPECIFIC_CUSTOMER, Audience.SPECIFIC_DRIVER)


@dataclass(frozen=True)
class AssignedDriver:
    driver_id: str
    truck_id: str | None = None
    driver_name: str | None = None


@dataclass(frozen=True)
class NewRequest:
    kind: ClassVar[EventKind] = EventKind.NEW_REQUEST

    dispatch_id: str
    pickup: str
    dropoff: str
    customer_id: str | None = None
    customer_name: str | None = None
    requested_time: str | None = None


@dataclass(frozen=True)
class StatusChanged:
    kind: ClassVar[EventKind] = EventKind.STATUS_CHANGED

    dispatch_id: str
    status: DispatchStatus
    pickup: str
    dropoff: str
    customer_id: str | None = None
    assignments: tuple[AssignedDriver, ...] = ()
    reference: str | None = None
    previous_status: DispatchStatus | None = None
    actor_name: str | None = None
    reason: str | None = None

    @property
    def display_ref(self) -> str:
        return self.reference or self.dispatch_id


@dataclass(frozen=True)
class ImageUploaded:
    kind: ClassVar[EventKind] = EventKind.IMAGE_UPLOADED

    dispatch_id: str
    driver_id: str
    image_type: str
    image_url: str
    pickup: str
    dropoff: str
    customer_id: str | None = None
    driver_name: str | None = None
    notes: str | None = None

    @property
    def is_inconvenience(self) -> bool:
        return self.image_type.strip().lower() == "inconvenience"


@dataclass(frozen=True)
class AdminBroadcast:
    kind: ClassVar[EventKind] = EventKind.ADMIN_BROADCAST

    audience: Audience
    title: str
    message: str
    priority: Priority = Priority.NORMAL
    recipient_id: str | None = None
    sender_id: str | None = None
    sender_name: str | None = None

    def __post_init__(self):
        if self.audience.needs_recipient_id and not self.recipient_id:
            raise ValidationGapError(
                f"Audience '{self.audience.value}' requires a recipient id"
            )


DomainEvent = Union[NewRequest, StatusChanged, ImageUploaded, AdminBroadcast]


def parse_broadcast(payload: dict) -> AdminBroadcast:
    """Build an AdminBroadcast from a loosely-typed request payload."""
    title = (payload.get("title") or "").strip()
    message = (payload.get("message") or "").strip()
    if not title or not message:
        raise ValidationGapError("Broadcast needs a title and a message")

    try:
        audience = Audience(payload.get("audience") or Audience.ADMIN_ONLY.value)
        priority = Priority(payload.get("priority") or Priority.NORMAL.value)
    except ValueError as exc:
        raise ValidationGapError(str(exc)) from None

    return AdminBroadcast(
        audience=audience,
        title=title,
        message=message,
        priority=priority,
        recipient_id=payload.get("recipientId"),
        sender_id=payload.get("senderId"),
        sender_name=payload.get("senderName"),
    )
