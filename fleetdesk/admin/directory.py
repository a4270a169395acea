# fleetdesk/admin/directory.py
"""
Customers, drivers and trucks.

Plain CRUD over the role collections under the neutral-value policy in
``fleetdesk.admin.guard``.  Customers and drivers get a short code
(``cust_xxxxxx`` / ``drv_xxxxxx``) that doubles as their storage key, so
notification fan-out can address them without a lookup.
"""
from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass

from fleetdesk.admin.guard import delete_blob_quietly, empty_list, failed, neutral_on_error, nothing
from fleetdesk.config import settings
from fleetdesk.core.dispatch.models import to_iso, utc_now
from fleetdesk.core.ports import (
    CUSTOMERS,
    DISPATCHES,
    DRIVERS,
    TRUCKS,
    BlobStore,
    ChangeCallback,
    DocumentStore,
)
from fleetdesk.core.query import OrderBy
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

_CODE_ALPHABET = string.ascii_lowercase + string.digits
NEWEST_FIRST = OrderBy("createdAt", descending=True)
UNKNOWN_TRUCK = "unknown"


@dataclass(frozen=True)
class Role:
    collection: str
    code_field: str | None = None
    code_prefix: str | None = None
    image_fields: tuple[str, ...] = ()


CUSTOMER_ROLE = Role(CUSTOMERS, "customerId", settings.customer_code_prefix, ("profileImage",))
DRIVER_ROLE = Role(DRIVERS, "driverId", settings.driver_code_prefix, ("profileImage", "licenseImage"))
TRUCK_ROLE = Role(TRUCKS, "truckId", None, ("images",))

ROLES = {role.collection: role for role in (CUSTOMER_ROLE, DRIVER_ROLE, TRUCK_ROLE)}


def generate_short_code(prefix: str, max_length: int | None = None) -> str:
    """``prefix`` plus random characters, exactly ``max_length`` long."""
    max_length = max_length or settings.short_code_max_length
    size = max(max_length - len(prefix), 4)
    return prefix + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(size))


class DirectoryService:

    def __init__(self, store: DocumentStore, blobs: BlobStore):
        self._store = store
        self._blobs = blobs

    @staticmethod
    def role(collection: str) -> Role:
        try:
            return ROLES[collection]
        except KeyError:
            raise ValueError(f"Unknown directory collection: {collection}") from None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @neutral_on_error(empty_list)
    async def list_rows(self, collection: str) -> list[dict]:
        return await self._store.query_records(self.role(collection).collection, order_by=NEWEST_FIRST)

    @neutral_on_error(nothing)
    async def get(self, collection: str, record_id: str) -> dict | None:
        return await self._store.get_record(self.role(collection).collection, record_id)

    async def subscribe(self, collection: str, on_change: ChangeCallback):
        return await self._store.subscribe(
            self.role(collection).collection, on_change, order_by=NEWEST_FIRST,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @neutral_on_error(nothing)
    async def create(self, collection: str, data: dict) -> dict | None:
        """Insert a row; returns it with its id, or None on failure."""
        role = self.role(collection)
        now = to_iso(utc_now())
        doc = {**data, "createdAt": now, "updatedAt": now}
        doc.pop("id", None)

        if role.code_prefix:
            code = doc.get(role.code_field) or generate_short_code(role.code_prefix)
            doc[role.code_field] = code
            if await self._store.get_record(role.collection, code) is not None:
                logger.warning(f"{role.collection}: short code {code} already taken")
                return None
            await self._store.set_record(role.collection, code, doc)
            record_id = code
        else:
            doc.setdefault(role.code_field, f"truck_{int(time.time() * 1000)}")
            record_id = await self._store.add_record(role.collection, doc)

        logger.info(f"{role.collection}: created {record_id}")
        return {"id": record_id, **doc}

    @neutral_on_error(failed)
    async def update(self, collection: str, record_id: str, patch: dict) -> bool:
        role = self.role(collection)
        changes = {k: v for k, v in patch.items() if k not in ("id", "createdAt")}
        changes["updatedAt"] = to_iso(utc_now())
        await self._store.update_record(role.collection, record_id, changes)
        return True

    @neutral_on_error(failed)
    async def delete(self, collection: str, record_id: str) -> bool:
        """Delete the row, then its stored images (best-effort)."""
        role = self.role(collection)
        row = await self._store.get_record(role.collection, record_id)
        if row is None:
            return False

        await self._store.delete_record(role.collection, record_id)
        if role.collection == TRUCKS:
            await self._unlink_truck(record_id, row.get("truckId"))

        for url in self._image_urls(row, role):
            await delete_blob_quietly(self._blobs, url)

        logger.info(f"{role.collection}: deleted {record_id}")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _image_urls(row: dict, role: Role) -> list[str]:
        urls: list[str] = []
        for name in role.image_fields:
            value = row.get(name)
            if isinstance(value, str) and value and not value.startswith("data:"):
                urls.append(value)
            elif isinstance(value, list):
                urls.extend(v for v in value if isinstance(v, str) and v)
        return urls

    async def _unlink_truck(self, record_id: str, truck_code: str | None) -> None:
        """Point assignments that used a deleted truck at 'unknown'."""
        keys = {k for k in (record_id, truck_code) if k}
        for dispatch in await self._store.query_records(DISPATCHES):
            assignments = dispatch.get("assignments") or []
            if not isinstance(assignments, list):
                continue
            if not any(a.get("truckId") in keys for a in assignments):
                continue
            patched = [
                {**a, "truckId": UNKNOWN_TRUCK} if a.get("truckId") in keys else a
                for a in assignments
            ]
            await self._store.update_record(DISPATCHES, dispatch["id"], {"assignments": patched})
            logger.info(f"Unlinked truck {record_id} from dispatch {dispatch['id']}")
