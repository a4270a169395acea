# tests/test_fanout_engine.py
"""Tests for the notification fan-out engine."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.errors import ValidationGapError
from fleetdesk.core.notifications.engine import FanOutEngine
from fleetdesk.core.notifications.events import (
    AdminBroadcast,
    AssignedDriver,
    Audience,
    NewRequest,
    StatusChanged,
    parse_broadcast,
)
from fleetdesk.core.notifications.records import ADMIN, RecipientKind, driver
from fleetdesk.infra.metrics import get_metrics_collector


def _status_event(driver_ids=(), customer_id="cust_001") -> StatusChanged:
    return StatusChanged(
        dispatch_id="d1",
        status=DispatchStatus.ASSIGNED,
        pickup="A",
        dropoff="B",
        customer_id=customer_id,
        assignments=tuple(AssignedDriver(d, f"truck_{i}") for i, d in enumerate(driver_ids)),
    )


async def _count(store, path) -> int:
    return len(await store.query_records(path))


class TestStatusChangedFanOut:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("driver_ids", [
        (),
        ("drv_001",),
        ("drv_001", "drv_002", "drv_003", "drv_004"),
    ])
    async def test_one_admin_record_and_one_per_driver(self, seeded_store, engine, driver_ids):
        result = await engine.dispatch_event(_status_event(driver_ids))

        assert len(result.for_kind(RecipientKind.ADMIN)) == 1
        assert len(result.for_kind(RecipientKind.DRIVER)) == len(driver_ids)
        assert len(result.for_kind(RecipientKind.CUSTOMER)) == 1
        assert result.all_ok

        assert await _count(seeded_store, "notifications") == 1
        for driver_id in driver_ids:
            assert await _count(seeded_store, f"drivers/{driver_id}/notifications") == 1

    @pytest.mark.asyncio
    async def test_no_customer_no_customer_record(self, seeded_store, engine):
        result = await engine.dispatch_event(_status_event(("drv_001",), customer_id=None))
        assert result.for_kind(RecipientKind.CUSTOMER) == []
        assert len(result.outcomes) == 2

    @pytest.mark.asyncio
    async def test_records_use_engine_clock(self, seeded_store, engine):
        await engine.dispatch_event(_status_event(("drv_001",)))
        record = (await seeded_store.query_records("drivers/drv_001/notifications"))[0]
        assert record["createdAt"] == "2025-03-01T12:00:00+00:00"
        assert record["isRead"] is False


class TestBroadcastFanOut:
    @pytest.mark.asyncio
    async def test_all_drivers_matches_collection_size(self, seeded_store, engine):
        result = await engine.dispatch_event(AdminBroadcast(Audience.ALL_DRIVERS, "Yard", "Closed at 6"))

        drivers = await seeded_store.query_records("drivers")
        assert len(result.for_kind(RecipientKind.DRIVER)) == len(drivers) == 2
        assert await _count(seeded_store, "notifications") == 1

    @pytest.mark.asyncio
    async def test_all_drivers_with_no_drivers_still_writes_admin(self, store, engine_for):
        result = await engine_for(store).dispatch_event(AdminBroadcast(Audience.ALL_DRIVERS, "Yard", "Closed"))

        assert [o.recipient for o in result.outcomes] == [ADMIN]
        assert await _count(store, "notifications") == 1

    @pytest.mark.asyncio
    async def test_all_users_reaches_customers_and_drivers(self, seeded_store, engine):
        result = await engine.dispatch_event(AdminBroadcast(Audience.ALL_USERS, "Holiday", "Office closed"))
        assert len(result.for_kind(RecipientKind.CUSTOMER)) == 1
        assert len(result.for_kind(RecipientKind.DRIVER)) == 2

    @pytest.mark.asyncio
    async def test_specific_driver_by_identity_uid(self, seeded_store, engine):
        event = parse_broadcast({
            "audience": "specific-driver", "title": "Hi", "message": "Call ops", "recipientId": "auth-drv-2",
        })
        result = await engine.dispatch_event(event)
        assert [o.recipient for o in result.outcomes] == [ADMIN, driver("drv_002")]
        docs = await seeded_store.query_records("drivers/drv_002/notifications")
        assert docs[0]["type"] == "admin_message"

    @pytest.mark.asyncio
    async def test_specific_audience_without_recipient_writes_nothing(self, seeded_store, engine):
        with pytest.raises(ValidationGapError):
            await engine.dispatch_event(parse_broadcast({
                "audience": "specific-customer", "title": "t", "message": "m",
            }))
        assert await _count(seeded_store, "notifications") == 0

    def test_missing_title_is_validation_gap(self):
        with pytest.raises(ValidationGapError):
            parse_broadcast({"audience": "all-users", "title": " ", "message": "m"})

    def test_unknown_audience_is_validation_gap(self):
        with pytest.raises(ValidationGapError):
            parse_broadcast({"audience": "everyone", "title": "t", "message": "m"})


class TestPartialFailure:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_on", [1, 2, 3])
    async def test_other_writes_still_attempted(self, failing_store, engine_for, fail_on):
        store = await failing_store(fail_on)
        result = await engine_for(store).dispatch_event(_status_event(("drv_001", "drv_002")))

        assert store.add_calls == 4
        assert len(result.failed) == 1
        assert len(result.delivered) == 3
        assert result.failed[0].error

    @pytest.mark.asyncio
    async def test_failure_reported_per_recipient(self, failing_store, engine_for):
        store = await failing_store(1)
        result = await engine_for(store).dispatch_event(_status_event(("drv_001",)))

        payload = result.to_dict()
        assert payload["delivered"] == 2
        assert payload["failed"] == 1
        admin_outcome = next(o for o in payload["outcomes"] if o["recipientKind"] == "admin")
        assert admin_outcome["outcome"] == "err"
        assert admin_outcome["recordId"] is None

    @pytest.mark.asyncio
    async def test_successful_writes_are_kept(self, failing_store, engine_for):
        store = await failing_store(1)
        await engine_for(store).dispatch_event(_status_event(("drv_001",)))
        assert await _count(store, "notifications") == 0
        assert await _count(store, "customers/cust_001/notifications") == 1
        assert await _count(store, "drivers/drv_001/notifications") == 1

    @pytest.mark.asyncio
    async def test_failure_counter_incremented(self, failing_store, engine_for):
        collector = get_metrics_collector()
        failed_before = collector.get_counter("notifications_failed_total", recipient_kind="customer")
        written_before = collector.get_counter("notifications_written_total", recipient_kind="admin")
        store = await failing_store(2)
        await engine_for(store).dispatch_event(_status_event(("drv_001",)))
        assert collector.get_counter("notifications_failed_total", recipient_kind="customer") == failed_before + 1
        assert collector.get_counter("notifications_written_total", recipient_kind="admin") == written_before + 1


class TestEngineWithMockStore:
    @pytest.mark.asyncio
    async def test_new_request_writes_single_admin_record(self):
        store = AsyncMock()
        store.add_record.return_value = "n1"
        engine = FanOutEngine(store)

        result = await engine.dispatch_event(NewRequest("d1", "A", "B", customer_id="cust_001"))

        store.add_record.assert_awaited_once()
        path, doc = store.add_record.await_args.args
        assert path == "notifications"
        assert doc["type"] == "new_request"
        assert result.delivered[0].record_id == "n1"
