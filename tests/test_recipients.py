# tests/test_recipients.py
"""Tests for recipient planning and identifier resolution."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.notifications.events import (
    AdminBroadcast,
    AssignedDriver,
    Audience,
    ImageUploaded,
    NewRequest,
    StatusChanged,
)
from fleetdesk.core.notifications.records import ADMIN, RecipientKind, customer, driver
from fleetdesk.core.notifications.recipients import RecipientResolver, dedupe, plan_recipients


def _resolver(store) -> RecipientResolver:
    return RecipientResolver(store, "cust_", "drv_", 10)


class TestPlanRecipients:
    def test_new_request_goes_to_admin_only(self):
        plan = plan_recipients(NewRequest("d1", "A", "B", customer_id="cust_001"))
        assert plan.explicit == (ADMIN,)
        assert plan.roles == ()

    def test_status_changed_admin_customer_then_drivers(self):
        event = StatusChanged(
            "d1", DispatchStatus.ASSIGNED, "A", "B", customer_id="cust_001",
            assignments=(AssignedDriver("drv_001"), AssignedDriver("drv_002")),
        )
        plan = plan_recipients(event)
        assert plan.explicit == (ADMIN, customer("cust_001"), driver("drv_001"), driver("drv_002"))

    def test_status_changed_without_customer_or_drivers(self):
        plan = plan_recipients(StatusChanged("d1", DispatchStatus.ACCEPTED, "A", "B"))
        assert plan.explicit == (ADMIN,)

    def test_image_uploaded_skips_driver(self):
        event = ImageUploaded("d1", "drv_001", "trip", "u", "A", "B", customer_id="cust_001")
        assert plan_recipients(event).explicit == (ADMIN, customer("cust_001"))

    def test_broadcast_all_users_expands_both_roles(self):
        plan = plan_recipients(AdminBroadcast(Audience.ALL_USERS, "t", "m"))
        assert plan.explicit == (ADMIN,)
        assert plan.roles == (RecipientKind.CUSTOMER, RecipientKind.DRIVER)

    def test_broadcast_admin_only(self):
        plan = plan_recipients(AdminBroadcast(Audience.ADMIN_ONLY, "t", "m"))
        assert plan.explicit == (ADMIN,)
        assert plan.roles == ()

    def test_unknown_event_type(self):
        with pytest.raises(TypeError):
            plan_recipients(object())

    def test_dedupe_keeps_first_seen_order(self):
        assert dedupe([ADMIN, driver("a"), ADMIN, driver("a"), driver("b")]) == [
            ADMIN, driver("a"), driver("b"),
        ]


class TestShortCodes:
    def test_short_code_shape(self):
        resolver = _resolver(AsyncMock())
        assert resolver.is_short_code(RecipientKind.CUSTOMER, "cust_001")
        assert resolver.is_short_code(RecipientKind.DRIVER, "drv_abcdef")
        assert not resolver.is_short_code(RecipientKind.DRIVER, "cust_001")
        assert not resolver.is_short_code(RecipientKind.CUSTOMER, "cust_0000000001")
        assert not resolver.is_short_code(RecipientKind.CUSTOMER, "X7fk29dkq0aa")

    @pytest.mark.asyncio
    async def test_short_code_returned_without_scanning(self):
        store = AsyncMock()
        key = await _resolver(store).resolve_key(RecipientKind.CUSTOMER, "cust_001")
        assert key == "cust_001"
        store.query_records.assert_not_awaited()


class TestResolveKey:
    @pytest.mark.asyncio
    async def test_identity_uid_maps_to_row_key(self, seeded_store):
        key = await _resolver(seeded_store).resolve_key(RecipientKind.DRIVER, "auth-drv-1")
        assert key == "drv_001"

    @pytest.mark.asyncio
    async def test_short_code_field_matches_row(self, store):
        await store.set_record("customers", "rowkey123456789", {"customerId": "legacy-77"})
        key = await _resolver(store).resolve_key(RecipientKind.CUSTOMER, "legacy-77")
        assert key == "rowkey123456789"

    @pytest.mark.asyncio
    async def test_no_match_returns_identifier_unchanged(self, seeded_store):
        key = await _resolver(seeded_store).resolve_key(RecipientKind.CUSTOMER, "someone-else")
        assert key == "someone-else"

    @pytest.mark.asyncio
    async def test_failed_role_read_falls_back_to_identifier(self, broken_store):
        key = await _resolver(broken_store).resolve_key(RecipientKind.DRIVER, "auth-drv-1")
        assert key == "auth-drv-1"


class TestResolve:
    @pytest.mark.asyncio
    async def test_foreign_ids_resolved_and_deduped(self, seeded_store):
        event = StatusChanged(
            "d1", DispatchStatus.ASSIGNED, "A", "B", customer_id="auth-cust-1",
            assignments=(AssignedDriver("auth-drv-1"), AssignedDriver("drv_001")),
        )
        recipients = await _resolver(seeded_store).resolve(event)
        assert recipients == [ADMIN, customer("cust_001"), driver("drv_001")]

    @pytest.mark.asyncio
    async def test_role_rows_read_once_per_event(self, seeded_store):
        resolver = _resolver(seeded_store)
        calls = []
        original = seeded_store.query_records

        async def counting(path, *args, **kwargs):
            calls.append(path)
            return await original(path, *args, **kwargs)

        seeded_store.query_records = counting
        event = StatusChanged(
            "d1", DispatchStatus.ASSIGNED, "A", "B",
            assignments=(AssignedDriver("auth-drv-1"), AssignedDriver("auth-drv-2")),
        )
        recipients = await resolver.resolve(event)
        assert recipients == [ADMIN, driver("drv_001"), driver("drv_002")]
        assert calls == ["drivers"]

    @pytest.mark.asyncio
    async def test_all_drivers_expands_collection(self, seeded_store):
        recipients = await _resolver(seeded_store).resolve(AdminBroadcast(Audience.ALL_DRIVERS, "t", "m"))
        assert recipients[0] == ADMIN
        assert set(recipients[1:]) == {driver("drv_001"), driver("drv_002")}
