# fleetdesk/admin/notifications.py
"""
Notification feed and inbox operations for the dashboard.

The admin feed is the top-level ``notifications`` collection; customer
and driver inboxes are the per-recipient subcollections written by the
fan-out engine.  Reads and simple writes follow the neutral-value policy;
``send_broadcast`` goes through the engine and raises on bad payloads.
"""
from __future__ import annotations

from fleetdesk.admin.guard import empty_list, failed, neutral_on_error
from fleetdesk.config import settings
from fleetdesk.core.errors import ValidationGapError
from fleetdesk.core.notifications.engine import FanOutEngine, FanOutResult
from fleetdesk.core.notifications.events import parse_broadcast
from fleetdesk.core.notifications.recipients import RecipientResolver
from fleetdesk.core.notifications.records import ADMIN, Recipient, RecipientKind
from fleetdesk.core.ports import ChangeCallback, DocumentStore
from fleetdesk.core.query import OrderBy, where
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

NEWEST_FIRST = OrderBy("createdAt", descending=True)


class NotificationService:

    def __init__(
            self,
            store: DocumentStore,
            engine: FanOutEngine,
            resolver: RecipientResolver | None = None,
    ):
        self._store = store
        self._engine = engine
        self._resolver = resolver or RecipientResolver(store)

    async def _target(self, kind: RecipientKind, recipient_id: str | None) -> Recipient:
        if kind == RecipientKind.ADMIN:
            return ADMIN
        if not recipient_id:
            raise ValidationGapError(f"A {kind.value} recipient id is required")
        key = await self._resolver.resolve_key(kind, recipient_id)
        return Recipient(kind, key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @neutral_on_error(empty_list)
    async def list_feed(self, limit: int | None = None) -> list[dict]:
        """Admin feed, newest first."""
        return await self._store.query_records(
            ADMIN.collection_path,
            order_by=NEWEST_FIRST,
            limit=limit or settings.notification_feed_limit,
        )

    @neutral_on_error(empty_list)
    async def list_inbox(self, kind: RecipientKind, recipient_id: str,
                         limit: int | None = None) -> list[dict]:
        """A customer's or driver's notifications, newest first.

        ``recipient_id`` may be a short code, a row id or an identity uid.
        """
        target = await self._target(kind, recipient_id)
        return await self._store.query_records(
            target.collection_path,
            order_by=NEWEST_FIRST,
            limit=limit or settings.notification_feed_limit,
        )

    @neutral_on_error(lambda: 0)
    async def unread_count(self, kind: RecipientKind = RecipientKind.ADMIN,
                           recipient_id: str | None = None) -> int:
        target = await self._target(kind, recipient_id)
        rows = await self._store.query_records(target.collection_path, [where("isRead", "==", False)])
        return len(rows)

    async def subscribe_feed(self, on_change: ChangeCallback):
        return await self._store.subscribe(ADMIN.collection_path, on_change, order_by=NEWEST_FIRST)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @neutral_on_error(failed)
    async def mark_as_read(self, notification_id: str, kind: RecipientKind = RecipientKind.ADMIN,
                           recipient_id: str | None = None) -> bool:
        """Set ``isRead``; repeat calls are no-ops. False if the record is missing."""
        target = await self._target(kind, recipient_id)
        record = await self._store.get_record(target.collection_path, notification_id)
        if record is None:
            return False
        if record.get("isRead") is True:
            return True
        await self._store.update_record(target.collection_path, notification_id, {"isRead": True})
        return True

    @neutral_on_error(lambda: 0)
    async def mark_all_as_read(self, kind: RecipientKind = RecipientKind.ADMIN,
                               recipient_id: str | None = None) -> int:
        target = await self._target(kind, recipient_id)
        unread = await self._store.query_records(target.collection_path, [where("isRead", "==", False)])
        for record in unread:
            await self._store.update_record(target.collection_path, record["id"], {"isRead": True})
        return len(unread)

    @neutral_on_error(failed)
    async def delete(self, notification_id: str, kind: RecipientKind = RecipientKind.ADMIN,
                     recipient_id: str | None = None) -> bool:
        target = await self._target(kind, recipient_id)
        if await self._store.get_record(target.collection_path, notification_id) is None:
            return False
        await self._store.delete_record(target.collection_path, notification_id)
        return True

    async def send_broadcast(self, payload: dict) -> FanOutResult:
        """
        Admin-authored message to an audience.

        Raises:
            ValidationGapError: missing title/message, unknown audience, or a
                specific-* audience without ``recipientId``.
        """
        event = parse_broadcast(payload)
        logger.info(f"Broadcast to {event.audience.value} by {event.sender_name or event.sender_id or 'admin'}")
        return await self._engine.dispatch_event(event)
