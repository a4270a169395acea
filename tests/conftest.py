# tests/conftest.py
"""Pytest configuration and fixtures"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fleetdesk.core.errors import TransientIOError  # noqa: E402
from fleetdesk.core.notifications.engine import FanOutEngine  # noqa: E402
from fleetdesk.core.notifications.recipients import RecipientResolver  # noqa: E402
from fleetdesk.infra.memory_store import InMemoryDocumentStore  # noqa: E402
from fleetdesk.infra.s3_storage import InMemoryBlobStore  # noqa: E402

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FailingDocumentStore(InMemoryDocumentStore):
    """In-memory store whose Nth ``add_record`` call raises."""

    def __init__(self, fail_on_call: int):
        super().__init__()
        self.fail_on_call = fail_on_call
        self.add_calls = 0

    async def add_record(self, collection_path: str, record: dict) -> str:
        self.add_calls += 1
        if self.add_calls == self.fail_on_call:
            raise TransientIOError(f"write {self.add_calls} to {collection_path} failed")
        return await super().add_record(collection_path, record)


class BrokenDocumentStore(InMemoryDocumentStore):
    """Every read and write raises."""

    async def add_record(self, collection_path, record):
        raise TransientIOError("store offline")

    async def set_record(self, collection_path, record_id, record):
        raise TransientIOError("store offline")

    async def update_record(self, collection_path, record_id, partial):
        raise TransientIOError("store offline")

    async def delete_record(self, collection_path, record_id):
        raise TransientIOError("store offline")

    async def get_record(self, collection_path, record_id):
        raise TransientIOError("store offline")

    async def query_records(self, collection_path, filters=(), order_by=None, limit=None):
        raise TransientIOError("store offline")


async def seed_directory(store) -> None:
    """One customer, two drivers and a truck, keyed by their short codes."""
    await store.set_record("customers", "cust_001", {
        "name": "Acme Freight", "customerId": "cust_001", "uid": "auth-cust-1",
    })
    await store.set_record("drivers", "drv_001", {
        "name": "Dana Driver", "driverId": "drv_001", "uid": "auth-drv-1", "status": "active",
    })
    await store.set_record("drivers", "drv_002", {
        "name": "Sam Wheeler", "driverId": "drv_002", "uid": "auth-drv-2", "status": "inactive",
    })
    await store.set_record("trucks", "truck_001", {
        "numberPlate": "KA-01-1234", "truckId": "truck_001", "status": "operational",
    })


def make_engine(store) -> FanOutEngine:
    resolver = RecipientResolver(store, "cust_", "drv_", 10)
    return FanOutEngine(store, resolver, clock=lambda: FIXED_NOW)


@pytest.fixture
def store():
    """Empty in-memory document store"""
    return InMemoryDocumentStore()


@pytest_asyncio.fixture
async def seeded_store():
    """In-memory store with the standard directory rows"""
    s = InMemoryDocumentStore()
    await seed_directory(s)
    return s


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def engine(seeded_store):
    return make_engine(seeded_store)


@pytest.fixture
def broken_store():
    return BrokenDocumentStore()


@pytest.fixture
def failing_store():
    """Factory: ``await failing_store(n)`` gives a seeded store failing on the nth add."""
    async def build(fail_on_call: int) -> FailingDocumentStore:
        s = FailingDocumentStore(fail_on_call)
        await seed_directory(s)
        return s
    return build


@pytest.fixture
def engine_for():
    """Factory: fan-out engine over any store with the fixed clock."""
    return make_engine


@pytest.fixture
def seed():
    """``await seed(store)`` adds the standard directory rows."""
    return seed_directory
