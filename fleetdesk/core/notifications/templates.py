# fleetdesk/core/notifications/templates.py
"""
Per-event, per-recipient notification rendering.

Status texts are keyed by every ``DispatchStatus``; a missing entry
fails at import time rather than at the first dispatch that reaches
the status.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.notifications.events import (
    AdminBroadcast,
    DomainEvent,
    EventKind,
    ImageUploaded,
    NewRequest,
    StatusChanged,
)
from fleetdesk.core.notifications.records import (
    NotificationRecord,
    Priority,
    Recipient,
    RecipientKind,
)

STATUS_TITLES: dict[DispatchStatus, str] = {
    DispatchStatus.PENDING: "Request Received",
    DispatchStatus.ACCEPTED: "Request Accepted",
    DispatchStatus.REJECTED: "Request Declined",
    DispatchStatus.ASSIGNED: "Driver Assigned",
    DispatchStatus.IN_PROGRESS: "Trip Started",
    DispatchStatus.COMPLETED: "Trip Completed",
    DispatchStatus.CANCELLED: "Trip Cancelled",
}

CUSTOMER_MESSAGES: dict[DispatchStatus, str] = {
    DispatchStatus.PENDING: "Your trip request from {pickup} to {dropoff} has been received.",
    DispatchStatus.ACCEPTED: "Your trip request from {pickup} to {dropoff} has been accepted.",
    DispatchStatus.REJECTED: "Your trip request from {pickup} to {dropoff} could not be accepted.",
    DispatchStatus.ASSIGNED: "A driver has been assigned to your trip from {pickup} to {dropoff}.",
    DispatchStatus.IN_PROGRESS: "Your trip from {pickup} to {dropoff} is now {label}.",
    DispatchStatus.COMPLETED: "Your trip from {pickup} to {dropoff} is now {label}.",
    DispatchStatus.CANCELLED: "Your trip from {pickup} to {dropoff} has been cancelled.",
}

DRIVER_TITLES: dict[DispatchStatus, str] = {
    **STATUS_TITLES,
    DispatchStatus.ASSIGNED: "New Assignment",
}

DRIVER_MESSAGES: dict[DispatchStatus, str] = {
    DispatchStatus.PENDING: "Dispatch #{ref} has been moved back to pending.",
    DispatchStatus.ACCEPTED: "Dispatch #{ref} has been accepted.",
    DispatchStatus.REJECTED: "Dispatch #{ref} has been declined.",
    DispatchStatus.ASSIGNED: "You have been assigned to dispatch #{ref} from {pickup} to {dropoff}.",
    DispatchStatus.IN_PROGRESS: "Dispatch #{ref} from {pickup} to {dropoff} is now in progress.",
    DispatchStatus.COMPLETED: "Dispatch #{ref} from {pickup} to {dropoff} has been completed.",
    DispatchStatus.CANCELLED: "Dispatch #{ref} has been cancelled.",
}


def _require_every_status(table: dict, name: str) -> None:
    missing = [s.value for s in DispatchStatus if s not in table]
    if missing:
        raise RuntimeError(f"{name} has no entry for: {', '.join(missing)}")


for _table, _name in (
        (STATUS_TITLES, "STATUS_TITLES"),
        (CUSTOMER_MESSAGES, "CUSTOMER_MESSAGES"),
        (DRIVER_TITLES, "DRIVER_TITLES"),
        (DRIVER_MESSAGES, "DRIVER_MESSAGES"),
):
    _require_every_status(_table, _name)


def priority_for(event: DomainEvent) -> Priority:
    """Inconvenience images and completed trips are high; broadcasts carry
    their own priority; everything else is normal."""
    if isinstance(event, ImageUploaded) and event.is_inconvenience:
        return Priority.HIGH
    if isinstance(event, StatusChanged) and event.status == DispatchStatus.COMPLETED:
        return Priority.HIGH
    if isinstance(event, AdminBroadcast):
        return event.priority
    return Priority.NORMAL


def status_type(status: DispatchStatus) -> str:
    return f"dispatch_{status.value.replace('-', '_')}"


# ----------------------------------------------------------------------------
# Renderers
# ----------------------------------------------------------------------------

def _render_new_request(event: NewRequest, recipient: Recipient, now: datetime) -> NotificationRecord:
    who = f" from {event.customer_name}" if event.customer_name else ""
    return NotificationRecord(
        type="new_request",
        title="New Trip Request",
        message=f"New trip request{who}: {event.pickup} to {event.dropoff}.",
        recipient=recipient,
        created_at=now,
        priority=priority_for(event),
        dispatch_id=event.dispatch_id,
        extra={
            "customerId": event.customer_id,
            "requestedTime": event.requested_time,
            "pickup": event.pickup,
            "dropoff": event.dropoff,
        },
    )


def _render_status_changed(event: StatusChanged, recipient: Recipient, now: datetime) -> NotificationRecord:
    context = {
        "pickup": event.pickup,
        "dropoff": event.dropoff,
        "ref": event.display_ref,
        "label": event.status.label,
    }
    extra = {
        "status": event.status.value,
        "previousStatus": event.previous_status.value if event.previous_status else None,
    }

    if recipient.kind == RecipientKind.ADMIN:
        message = f"Dispatch #{event.display_ref} ({event.pickup} to {event.dropoff}) is now {event.status.label}"
        if event.actor_name:
            message += f" (by {event.actor_name})"
        return NotificationRecord(
            type="dispatch_status_changed",
            title="Dispatch Status Updated",
            message=message + ".",
            recipient=recipient,
            created_at=now,
            priority=priority_for(event),
            dispatch_id=event.dispatch_id,
            extra={**extra, "customerId": event.customer_id},
        )

    if recipient.kind == RecipientKind.CUSTOMER:
        title = STATUS_TITLES[event.status]
        message = CUSTOMER_MESSAGES[event.status].format(**context)
    else:
        title = DRIVER_TITLES[event.status]
        message = DRIVER_MESSAGES[event.status].format(**context)
        truck_id = next(
            (a.truck_id for a in event.assignments if a.driver_id == recipient.id), None,
        )
        extra["truckId"] = truck_id
        if event.status == DispatchStatus.ASSIGNED:
            extra["actionRequired"] = True

    if event.reason and event.status in (DispatchStatus.REJECTED, DispatchStatus.CANCELLED):
        message += f" Reason: {event.reason}"

    return NotificationRecord(
        type=status_type(event.status),
        title=title,
        message=message,
        recipient=recipient,
        created_at=now,
        priority=priority_for(event),
        dispatch_id=event.dispatch_id,
        extra=extra,
    )


def _render_image_uploaded(event: ImageUploaded, recipient: Recipient, now: datetime) -> NotificationRecord:
    kind_label = event.image_type.strip().lower() or "trip"
    who = event.driver_name or "Driver"
    message = f"{who} uploaded {kind_label} image for trip from {event.pickup} to {event.dropoff}."
    if event.notes:
        message += f" Notes: {event.notes}"

    if recipient.kind == RecipientKind.ADMIN:
        title = "Trip Image Uploaded"
    else:
        title = f"Trip Update - {kind_label.capitalize()} Image"

    return NotificationRecord(
        type="image_uploaded",
        title=title,
        message=message,
        recipient=recipient,
        created_at=now,
        priority=priority_for(event),
        dispatch_id=event.dispatch_id,
        extra={
            "imageType": kind_label,
            "imageUrl": event.image_url,
            "driverId": event.driver_id,
        },
    )


def _render_admin_broadcast(event: AdminBroadcast, recipient: Recipient, now: datetime) -> NotificationRecord:
    extra = {
        "audience": event.audience.value,
        "senderId": event.sender_id,
        "senderName": event.sender_name,
    }
    if recipient.kind == RecipientKind.ADMIN:
        notification_type = "admin_broadcast"
        extra["targetId"] = event.recipient_id
    elif event.audience.needs_recipient_id:
        notification_type = "admin_message"
    else:
        notification_type = "admin_announcement"

    return NotificationRecord(
        type=notification_type,
        title=event.title,
        message=event.message,
        recipient=recipient,
        created_at=now,
        priority=priority_for(event),
        extra=extra,
    )


RENDERERS: dict[EventKind, Callable[..., NotificationRecord]] = {
    EventKind.NEW_REQUEST: _render_new_request,
    EventKind.STATUS_CHANGED: _render_status_changed,
    EventKind.IMAGE_UPLOADED: _render_image_uploaded,
    EventKind.ADMIN_BROADCAST: _render_admin_broadcast,
}

_missing_renderers = set(EventKind) - set(RENDERERS)
if _missing_renderers:
    raise RuntimeError(f"No renderer for event kinds: {sorted(k.value for k in _missing_renderers)}")


def render(event: DomainEvent, recipient: Recipient, now: datetime) -> NotificationRecord:
    """Build the record ``recipient`` gets for ``event``."""
    return RENDERERS[event.kind](event, recipient, now)
