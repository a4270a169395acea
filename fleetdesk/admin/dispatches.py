# fleetdesk/admin/dispatches.py
from __future__ import annotations

from fleetdesk.admin.guard import empty_list, neutral_on_error, nothing
from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.ports import DISPATCHES, ChangeCallback, DocumentStore
from fleetdesk.core.query import OrderBy, where

NEWEST_FIRST = OrderBy("createdAt", descending=True)


class DispatchQueries:
    """Read side of dispatches for the dashboard tables."""

    def __init__(self, store: DocumentStore):
        self._store = store

    @neutral_on_error(empty_list)
    async def list_dispatches(self, status: DispatchStatus | str | None = None) -> list[dict]:
        filters = []
        if status is not None:
            filters.append(where("status", "==", DispatchStatus.parse(status).value))
        return await self._store.query_records(DISPATCHES, filters, order_by=NEWEST_FIRST)

    @neutral_on_error(nothing)
    async def get(self, dispatch_id: str) -> dict | None:
        return await self._store.get_record(DISPATCHES, dispatch_id)

    async def subscribe(self, on_change: ChangeCallback, status: DispatchStatus | None = None):
        filters = [where("status", "==", status.value)] if status is not None else []
        return await self._store.subscribe(DISPATCHES, on_change, filters, order_by=NEWEST_FIRST)

    async def subscribe_pending(self, on_change: ChangeCallback):
        return await self.subscribe(on_change, DispatchStatus.PENDING)
