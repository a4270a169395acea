# fleetdesk/infra/memory_store.py
"""
In-process DocumentStore.

Used for local development, demos and the test-suite.  Records are deep
copied on the way in and out so callers can never mutate stored state
through a returned dict.
"""
from __future__ import annotations

import asyncio
import copy
import inspect
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from fleetdesk.core.errors import NotFoundError
from fleetdesk.core.ports import ChangeCallback, Unsubscribe
from fleetdesk.core.query import Filter, OrderBy, apply_query
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)


def new_record_id() -> str:
    """20-char random key, the same shape hosted document stores hand out."""
    return uuid.uuid4().hex[:20]


@dataclass
class _Subscription:
    collection_path: str
    on_change: ChangeCallback
    filters: Sequence[Filter]
    order_by: Optional[OrderBy]


class InMemoryDocumentStore:

    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = {}
        self._subscriptions: list[_Subscription] = []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_record(self, collection_path: str, record: dict) -> str:
        record_id = new_record_id()
        self._collection(collection_path)[record_id] = self._strip(record)
        await self._notify(collection_path)
        return record_id

    async def set_record(self, collection_path: str, record_id: str, record: dict) -> None:
        self._collection(collection_path)[record_id] = self._strip(record)
        await self._notify(collection_path)

    async def update_record(self, collection_path: str, record_id: str, partial: dict) -> None:
        docs = self._collection(collection_path)
        if record_id not in docs:
            raise NotFoundError(f"{collection_path}/{record_id} not found")
        docs[record_id].update(self._strip(partial))
        await self._notify(collection_path)

    async def delete_record(self, collection_path: str, record_id: str) -> None:
        docs = self._collection(collection_path)
        if docs.pop(record_id, None) is not None:
            await self._notify(collection_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_record(self, collection_path: str, record_id: str) -> Optional[dict]:
        doc = self._collections.get(collection_path, {}).get(record_id)
        if doc is None:
            return None
        return self._with_id(record_id, doc)

    async def query_records(
            self,
            collection_path: str,
            filters: Sequence[Filter] = (),
            order_by: Optional[OrderBy] = None,
            limit: Optional[int] = None,
    ) -> list[dict]:
        docs = self._collections.get(collection_path, {})
        rows = [self._with_id(record_id, doc) for record_id, doc in docs.items()]
        return apply_query(rows, filters, order_by, limit)

    async def subscribe(
            self,
            collection_path: str,
            on_change: ChangeCallback,
            filters: Sequence[Filter] = (),
            order_by: Optional[OrderBy] = None,
    ) -> Unsubscribe:
        sub = _Subscription(collection_path, on_change, tuple(filters), order_by)
        self._subscriptions.append(sub)
        await self._deliver(sub)

        async def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def collection_size(self, collection_path: str) -> int:
        return len(self._collections.get(collection_path, {}))

    def _collection(self, collection_path: str) -> dict[str, dict]:
        return self._collections.setdefault(collection_path, {})

    @staticmethod
    def _strip(record: dict) -> dict:
        doc = copy.deepcopy(record)
        doc.pop("id", None)
        return doc

    @staticmethod
    def _with_id(record_id: str, doc: dict) -> dict:
        row = copy.deepcopy(doc)
        row["id"] = record_id
        return row

    async def _notify(self, collection_path: str) -> None:
        subs = [s for s in self._subscriptions if s.collection_path == collection_path]
        if subs:
            await asyncio.gather(*(self._deliver(s) for s in subs))

    async def _deliver(self, sub: _Subscription) -> None:
        rows = await self.query_records(sub.collection_path, sub.filters, sub.order_by)
        try:
            result = sub.on_change(rows)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # A broken listener must not fail the write that triggered it
            logger.error(
                f"Subscription callback failed for {sub.collection_path}",
                exc_info=True,
            )
