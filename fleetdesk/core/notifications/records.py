# fleetdesk/core/notifications/records.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from fleetdesk.core.dispatch.models import parse_iso, to_iso
from fleetdesk.core.ports import CUSTOMERS, DRIVERS, NOTIFICATIONS


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class RecipientKind(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    DRIVER = "driver"


ROLE_COLLECTIONS = {
    RecipientKind.CUSTOMER: CUSTOMERS,
    RecipientKind.DRIVER: DRIVERS,
}


@dataclass(frozen=True)
class Recipient:
    kind: RecipientKind
    id: str

    @property
    def collection_path(self) -> str:
        """Where this recipient's notifications are written."""
        if self.kind == RecipientKind.ADMIN:
            return NOTIFICATIONS
        return f"{ROLE_COLLECTIONS[self.kind]}/{self.id}/{NOTIFICATIONS}"

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


ADMIN = Recipient(RecipientKind.ADMIN, "admin")


def customer(customer_id: str) -> Recipient:
    return Recipient(RecipientKind.CUSTOMER, customer_id)


def driver(driver_id: str) -> Recipient:
    return Recipient(RecipientKind.DRIVER, driver_id)


# Envelope keys; everything else in a stored document is kind-specific extra
_ENVELOPE = {
    "id", "type", "title", "message", "priority", "createdAt", "isRead",
    "recipientKind", "recipientId", "dispatchId",
}


@dataclass(frozen=True)
class NotificationRecord:
    """Shared envelope for every notification, whatever event produced it."""

    type: str
    title: str
    message: str
    recipient: Recipient
    created_at: datetime
    priority: Priority = Priority.NORMAL
    dispatch_id: str | None = None
    is_read: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_document(self) -> dict:
        doc = dict(self.extra)
        doc.update({
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "createdAt": to_iso(self.created_at),
            "isRead": self.is_read,
            "recipientKind": self.recipient.kind.value,
            "recipientId": self.recipient.id,
        })
        if self.dispatch_id is not None:
            doc["dispatchId"] = self.dispatch_id
        return doc

    @classmethod
    def from_document(cls, doc: dict) -> "NotificationRecord":
        return cls(
            id=doc.get("id"),
            type=doc.get("type", ""),
            title=doc.get("title", ""),
            message=doc.get("message", ""),
            recipient=Recipient(
                RecipientKind(doc.get("recipientKind", RecipientKind.ADMIN.value)),
                doc.get("recipientId", "admin"),
            ),
            created_at=parse_iso(doc.get("createdAt")),
            priority=Priority(doc.get("priority", Priority.NORMAL.value)),
            dispatch_id=doc.get("dispatchId"),
            is_read=bool(doc.get("isRead", False)),
            extra={k: v for k, v in doc.items() if k not in _ENVELOPE},
        )
