# fleetdesk/core/notifications/__init__.py
"""
Notification fan-out.

Canonical imports:
    from fleetdesk.core.notifications import FanOutEngine, StatusChanged
    from fleetdesk.core.notifications.records import Recipient, RecipientKind
"""
from fleetdesk.core.notifications.engine import (  # noqa: F401
    DeliveryOutcome,
    FanOutEngine,
    FanOutResult,
)
from fleetdesk.core.notifications.events import (  # noqa: F401
    AdminBroadcast,
    AssignedDriver,
    Audience,
    DomainEvent,
    EventKind,
    ImageUploaded,
    NewRequest,
    StatusChanged,
)
