# fleetdesk/infra/pg_document_store_async.py
"""
Async PostgreSQL document store (asyncpg).

Every collection lives in the single ``documents`` table keyed by
(collection_path, id) with the record body in a jsonb column.  Equality
filters are pushed down as jsonb containment (served by the GIN index);
the remaining operators and ordering are evaluated in Python over the
narrowed row set.

Live queries use LISTEN/NOTIFY: a trigger announces the collection path
of every write on the ``documents_changed`` channel. One dedicated
connection (outside the pool) listens for the whole store and re-runs the
queries subscribed to the named collection.
"""
from __future__ import annotations

import asyncio
import inspect
import json
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import asyncpg

from fleetdesk.core.errors import NotFoundError, TransientIOError
from fleetdesk.core.ports import ChangeCallback, Unsubscribe
from fleetdesk.core.query import Filter, OrderBy, apply_query
from fleetdesk.infra.db_async import db_conn, open_listen_connection
from fleetdesk.infra.logging_config import get_logger
from fleetdesk.infra.memory_store import new_record_id
from fleetdesk.infra.metrics import inc_counter

logger = get_logger(__name__)

CHANGE_CHANNEL = "documents_changed"


def _row_to_record(row) -> dict:
    """Convert an asyncpg Record to a plain dict carrying its id."""
    data = row["data"]
    if isinstance(data, str):
        data = json.loads(data)
    record = dict(data)
    record["id"] = row["id"]
    return record


def _dump(record: dict) -> str:
    body = {k: v for k, v in record.items() if k != "id"}
    return json.dumps(body, default=str)


def _containment(filters: Sequence[Filter]) -> tuple[dict, list[Filter]]:
    """Split filters into a jsonb containment document and Python leftovers."""
    contained: dict = {}
    rest: list[Filter] = []
    for f in filters:
        if f.op == "==" and f.field not in contained and "." not in f.field:
            contained[f.field] = f.value
        else:
            rest.append(f)
    return contained, rest


@asynccontextmanager
async def _io(operation: str):
    """Translate driver/network failures into TransientIOError."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
        inc_counter("store_errors_total", operation=operation)
        raise TransientIOError(f"Document store {operation} failed: {exc}") from exc


class PostgresDocumentStore:
    """DocumentStore backed by the ``documents`` table."""

    def __init__(self) -> None:
        self._listen_conn: asyncpg.Connection | None = None
        self._listen_lock = asyncio.Lock()
        self._subscribers: dict[str, set[_Subscription]] = {}
        self._tasks: set[asyncio.Task] = set()

    async def add_record(self, collection_path: str, record: dict) -> str:
        record_id = new_record_id()
        async with _io("add"), db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO documents (collection_path, id, data)
                VALUES ($1, $2, $3::jsonb)
                """,
                collection_path,
                record_id,
                _dump(record),
            )
        return record_id

    async def set_record(self, collection_path: str, record_id: str, record: dict) -> None:
        async with _io("set"), db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO documents (collection_path, id, data)
                VALUES ($1, $2, $3::jsonb)
                ON CONFLICT (collection_path, id)
                DO UPDATE SET data = EXCLUDED.data, updated_at = now()
                """,
                collection_path,
                record_id,
                _dump(record),
            )

    async def update_record(self, collection_path: str, record_id: str, partial: dict) -> None:
        async with _io("update"), db_conn() as conn:
            status = await conn.execute(
                """
                UPDATE documents
                SET data = data || $3::jsonb, updated_at = now()
                WHERE collection_path = $1 AND id = $2
                """,
                collection_path,
                record_id,
                _dump(partial),
            )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if status.endswith(" 0"):
            raise NotFoundError(f"{collection_path}/{record_id} not found")

    async def delete_record(self, collection_path: str, record_id: str) -> None:
        async with _io("delete"), db_conn() as conn:
            await conn.execute(
                "DELETE FROM documents WHERE collection_path = $1 AND id = $2",
                collection_path,
                record_id,
            )

    async def get_record(self, collection_path: str, record_id: str) -> Optional[dict]:
        async with _io("get"), db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, data FROM documents WHERE collection_path = $1 AND id = $2",
                collection_path,
                record_id,
            )
        return _row_to_record(row) if row else None

    async def query_records(
            self,
            collection_path: str,
            filters: Sequence[Filter] = (),
            order_by: Optional[OrderBy] = None,
            limit: Optional[int] = None,
    ) -> list[dict]:
        contained, rest = _containment(filters)
        async with _io("query"), db_conn() as conn:
            if contained:
                rows = await conn.fetch(
                    """
                    SELECT id, data FROM documents
                    WHERE collection_path = $1 AND data @> $2::jsonb
                    """,
                    collection_path,
                    json.dumps(contained, default=str),
                )
            else:
                rows = await conn.fetch(
                    "SELECT id, data FROM documents WHERE collection_path = $1",
                    collection_path,
                )
        return apply_query((_row_to_record(r) for r in rows), rest, order_by, limit)

    async def subscribe(
            self,
            collection_path: str,
            on_change: ChangeCallback,
            filters: Sequence[Filter] = (),
            order_by: Optional[OrderBy] = None,
    ) -> Unsubscribe:
        subscription = _Subscription(self, collection_path, on_change, tuple(filters), order_by)
        await self._ensure_listening()
        self._subscribers.setdefault(collection_path, set()).add(subscription)
        await subscription.push()
        logger.debug(f"Subscribed to {collection_path}")

        async def unsubscribe() -> None:
            subscribers = self._subscribers.get(collection_path)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[collection_path]
            if not self._subscribers:
                await self._stop_listening()

        return unsubscribe

    async def close(self) -> None:
        """Drop all subscriptions and the LISTEN connection."""
        self._subscribers.clear()
        for task in list(self._tasks):
            task.cancel()
        await self._stop_listening()

    # ------------------------------------------------------------------
    # LISTEN connection
    # ------------------------------------------------------------------

    async def _ensure_listening(self) -> None:
        async with self._listen_lock:
            if self._listen_conn is not None:
                return
            async with _io("listen"):
                conn = await open_listen_connection()
                await conn.add_listener(CHANGE_CHANNEL, self._on_notify)
            self._listen_conn = conn
            logger.info(f"Listening on {CHANGE_CHANNEL}")

    async def _stop_listening(self) -> None:
        async with self._listen_lock:
            conn, self._listen_conn = self._listen_conn, None
            if conn is None:
                return
            try:
                await conn.remove_listener(CHANGE_CHANNEL, self._on_notify)
            finally:
                await conn.close()
            logger.info(f"Stopped listening on {CHANGE_CHANNEL}")

    def _on_notify(self, _conn, _pid, _channel, payload: str) -> None:
        for subscription in list(self._subscribers.get(payload, ())):
            self._spawn(subscription.push(), name=f"refresh:{payload}")

    def _spawn(self, coro, *, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()!r} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )


class _Subscription:
    """One live query: re-runs itself and hands the rows to its callback."""

    def __init__(self, store, collection_path, on_change, filters, order_by):
        self.store = store
        self.collection_path = collection_path
        self.on_change = on_change
        self.filters = filters
        self.order_by = order_by

    async def push(self) -> None:
        try:
            rows = await self.store.query_records(self.collection_path, self.filters, self.order_by)
            result = self.on_change(rows)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.error(
                f"Subscription refresh failed for {self.collection_path}",
                exc_info=True,
            )
