# tests/test_pg_document_store.py
"""Tests for the PostgreSQL document store (helpers and a mocked connection)."""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from fleetdesk.config import Settings
from fleetdesk.core.errors import NotFoundError, TransientIOError
from fleetdesk.core.query import OrderBy, where
from fleetdesk.infra.backend import create_backend
from fleetdesk.infra.migrations_async import validate_schema_version
from fleetdesk.infra.pg_document_store_async import (
    PostgresDocumentStore,
    _containment,
    _dump,
    _row_to_record,
)

MODULE = "fleetdesk.infra.pg_document_store_async"


def _fake_db_conn(conn):
    @asynccontextmanager
    async def fake(autocommit: bool = False):
        yield conn
    return fake


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestHelpers:
    def test_containment_splits_equality(self):
        contained, rest = _containment([
            where("status", "==", "pending"),
            where("createdAt", ">=", "2025-01-01"),
            where("customerId", "==", "cust_001"),
        ])
        assert contained == {"status": "pending", "customerId": "cust_001"}
        assert [f.field for f in rest] == ["createdAt"]

    def test_repeated_field_stays_in_python(self):
        contained, rest = _containment([where("status", "==", "a"), where("status", "==", "b")])
        assert contained == {"status": "a"}
        assert len(rest) == 1

    def test_row_to_record_accepts_text_json(self):
        assert _row_to_record({"id": "r1", "data": '{"a": 1}'}) == {"a": 1, "id": "r1"}
        assert _row_to_record({"id": "r1", "data": {"a": 1}}) == {"a": 1, "id": "r1"}

    def test_dump_drops_id(self):
        assert json.loads(_dump({"id": "x", "name": "Dana"})) == {"name": "Dana"}


class TestPostgresDocumentStore:
    @pytest.mark.asyncio
    async def test_query_pushes_down_equality(self):
        conn = AsyncMock()
        conn.fetch.return_value = [
            {"id": "d1", "data": {"status": "pending", "createdAt": "2025-01-02"}},
            {"id": "d2", "data": {"status": "pending", "createdAt": "2025-01-03"}},
        ]
        with patch(f"{MODULE}.db_conn", _fake_db_conn(conn)):
            rows = await PostgresDocumentStore().query_records(
                "dispatches",
                [where("status", "==", "pending")],
                order_by=OrderBy("createdAt", descending=True),
            )

        sql, path, doc = conn.fetch.await_args.args
        assert "data @> $2::jsonb" in sql
        assert path == "dispatches"
        assert json.loads(doc) == {"status": "pending"}
        assert [r["id"] for r in rows] == ["d2", "d1"]

    @pytest.mark.asyncio
    async def test_update_missing_row(self):
        conn = AsyncMock()
        conn.execute.return_value = "UPDATE 0"
        with patch(f"{MODULE}.db_conn", _fake_db_conn(conn)):
            with pytest.raises(NotFoundError):
                await PostgresDocumentStore().update_record("drivers", "ghost", {"name": "x"})

    @pytest.mark.asyncio
    async def test_driver_errors_become_transient(self):
        conn = AsyncMock()
        conn.fetchrow.side_effect = asyncpg.InterfaceError("connection closed")
        with patch(f"{MODULE}.db_conn", _fake_db_conn(conn)):
            with pytest.raises(TransientIOError):
                await PostgresDocumentStore().get_record("drivers", "drv_001")

    @pytest.mark.asyncio
    async def test_add_returns_generated_key(self):
        conn = AsyncMock()
        with patch(f"{MODULE}.db_conn", _fake_db_conn(conn)):
            record_id = await PostgresDocumentStore().add_record("notifications", {"title": "t"})

        _, path, stored_id, body = conn.execute.await_args.args
        assert path == "notifications"
        assert stored_id == record_id
        assert json.loads(body) == {"title": "t"}


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscribers_share_one_listen_connection(self):
        conn = AsyncMock()
        conn.fetch.return_value = [{"id": "n1", "data": {"title": "t"}}]
        listen_conn = AsyncMock()
        open_listen = AsyncMock(return_value=listen_conn)
        feed, drivers = [], []

        with patch(f"{MODULE}.db_conn", _fake_db_conn(conn)), \
                patch(f"{MODULE}.open_listen_connection", open_listen):
            store = PostgresDocumentStore()
            unsubscribe_feed = await store.subscribe("notifications", feed.append)
            unsubscribe_drivers = await store.subscribe("drivers", drivers.append)

            assert open_listen.await_count == 1
            channel, listener = listen_conn.add_listener.await_args.args
            assert channel == "documents_changed"

            listener(listen_conn, 1, channel, "notifications")
            await _drain()

            assert len(feed) == 2
            assert len(drivers) == 1
            assert feed[-1] == [{"title": "t", "id": "n1"}]

            await unsubscribe_feed()
            listen_conn.close.assert_not_awaited()
            await unsubscribe_drivers()

        listen_conn.remove_listener.assert_awaited_once()
        listen_conn.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_listening(self):
        conn = AsyncMock()
        conn.fetch.return_value = []
        listen_conn = AsyncMock()
        calls = []

        def on_change(rows):
            calls.append(rows)
            raise RuntimeError("render failed")

        with patch(f"{MODULE}.db_conn", _fake_db_conn(conn)), \
                patch(f"{MODULE}.open_listen_connection", AsyncMock(return_value=listen_conn)):
            store = PostgresDocumentStore()
            await store.subscribe("drivers", on_change)
            _, listener = listen_conn.add_listener.await_args.args
            listener(listen_conn, 1, "documents_changed", "drivers")
            listener(listen_conn, 1, "documents_changed", "drivers")
            await _drain()
            await store.close()

        assert len(calls) == 3
        listen_conn.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_listen_connect_failure_is_transient(self):
        with patch(f"{MODULE}.open_listen_connection", AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(TransientIOError):
                await PostgresDocumentStore().subscribe("drivers", lambda rows: None)


class TestSchemaVersion:
    @pytest.mark.asyncio
    async def test_matching_version(self):
        conn = AsyncMock()
        conn.fetchval.side_effect = [True, "001_documents.sql"]
        with patch("fleetdesk.infra.migrations_async.db_conn", _fake_db_conn(conn)):
            assert await validate_schema_version("001_documents.sql") == "001_documents.sql"

    @pytest.mark.asyncio
    async def test_mismatch_fails(self):
        conn = AsyncMock()
        conn.fetchval.side_effect = [True, "001_documents.sql"]
        with patch("fleetdesk.infra.migrations_async.db_conn", _fake_db_conn(conn)):
            with pytest.raises(RuntimeError, match="mismatch"):
                await validate_schema_version("002_more.sql")

    @pytest.mark.asyncio
    async def test_empty_database_fails(self):
        conn = AsyncMock()
        conn.fetchval.return_value = False
        with patch("fleetdesk.infra.migrations_async.db_conn", _fake_db_conn(conn)):
            with pytest.raises(RuntimeError, match="No migrations"):
                await validate_schema_version("001_documents.sql")

    @pytest.mark.asyncio
    async def test_postgres_backend_checks_schema_at_startup(self):
        s = Settings(store_backend="postgres")
        with patch("fleetdesk.infra.db_async.init_pool", AsyncMock()) as init_pool, \
                patch("fleetdesk.infra.db_async.close_pool", AsyncMock()) as close_pool, \
                patch("fleetdesk.infra.migrations_async.validate_schema_version",
                      AsyncMock(side_effect=RuntimeError("Schema version mismatch!"))):
            with pytest.raises(RuntimeError):
                await create_backend(s)

        init_pool.assert_awaited_once()
        close_pool.assert_awaited_once()
