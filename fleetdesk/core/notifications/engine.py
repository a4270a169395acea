# fleetdesk/core/notifications/engine.py
"""
Notification fan-out engine.

One event in, one record per recipient out.  All writes are issued
concurrently and each is attempted exactly once; a failing recipient is
logged and reported in the result without affecting the others.  Writes
that succeeded are never rolled back.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from fleetdesk.core.dispatch.models import utc_now
from fleetdesk.core.notifications.events import DomainEvent, EventKind
from fleetdesk.core.notifications.recipients import RecipientResolver
from fleetdesk.core.notifications.records import NotificationRecord, Recipient, RecipientKind
from fleetdesk.core.notifications.templates import render
from fleetdesk.core.ports import DocumentStore
from fleetdesk.infra.logging_config import get_logger
from fleetdesk.infra.metrics import FleetMetrics, Timer

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    recipient: Recipient
    record_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "recipientKind": self.recipient.kind.value,
            "recipientId": self.recipient.id,
            "outcome": "ok" if self.ok else "err",
            "recordId": self.record_id,
            "error": self.error,
        }


@dataclass
class FanOutResult:
    event_kind: EventKind
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failed

    def for_kind(self, kind: RecipientKind) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if o.recipient.kind == kind]

    def to_dict(self) -> dict:
        return {
            "eventKind": self.event_kind.value,
            "delivered": len(self.delivered),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class FanOutEngine:
    """Turns domain events into per-recipient notification records."""

    def __init__(
            self,
            store: DocumentStore,
            resolver: RecipientResolver | None = None,
            clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._resolver = resolver or RecipientResolver(store)
        self._clock = clock

    async def dispatch_event(self, event: DomainEvent) -> FanOutResult:
        """
        Resolve recipients for ``event``, render and write one record each.

        Raises:
            ValidationGapError: the event is missing a required field. Raised
                before any write is attempted.
        """
        with Timer("notification_fanout_seconds", event_kind=event.kind.value):
            recipients = await self._resolver.resolve(event)
            now = self._clock()
            records = [render(event, recipient, now) for recipient in recipients]

            outcomes = await asyncio.gather(*(self._write(record) for record in records))

        result = FanOutResult(event_kind=event.kind, outcomes=list(outcomes))
        log = logger.warning if result.failed else logger.info
        log(
            f"Fan-out {event.kind.value}: {len(result.delivered)} delivered, {len(result.failed)} failed",
            extra={"event_kind": event.kind.value, "dispatch_id": getattr(event, "dispatch_id", None)},
        )
        return result

    async def _write(self, record: NotificationRecord) -> DeliveryOutcome:
        recipient = record.recipient
        try:
            record_id = await self._store.add_record(recipient.collection_path, record.to_document())
        except Exception as exc:
            logger.error(
                f"Notification write failed for {recipient}: {exc}",
                extra={
                    "recipient_kind": recipient.kind.value,
                    "recipient_id": recipient.id,
                    "dispatch_id": record.dispatch_id,
                },
                exc_info=True,
            )
            FleetMetrics.notification_failed(recipient.kind.value)
            return DeliveryOutcome(recipient=recipient, error=str(exc) or type(exc).__name__)

        FleetMetrics.notification_written(recipient.kind.value)
        return DeliveryOutcome(recipient=recipient, record_id=record_id)
