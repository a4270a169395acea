# fleetdesk/admin/admins.py
"""
Administrator accounts.

Admins sign in through ``AdminIdentityProvider``; this service manages the
``admins`` rows behind it.  New admins get a one-time temporary password
that is returned once and stored only as a hash.  Password hashes never
leave this module.
"""
from __future__ import annotations

import inspect
import secrets
import string
import time

from fleetdesk.admin.guard import delete_blob_quietly, empty_list, failed, neutral_on_error, nothing
from fleetdesk.core.dispatch.models import to_iso, utc_now
from fleetdesk.core.errors import ConflictError, ValidationGapError
from fleetdesk.core.ports import ADMINS, BlobStore, ChangeCallback, DocumentStore
from fleetdesk.core.query import OrderBy, where
from fleetdesk.infra.identity import hash_password
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

NEWEST_FIRST = OrderBy("createdAt", descending=True)
PROTECTED_FIELDS = ("id", "createdAt", "passwordHash", "email")


def generate_temp_password(length: int = 12) -> str:
    """Random password with lower, upper, digit and punctuation characters."""
    alphabet = string.ascii_letters + string.digits + "!@#$%&*?"
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if (
            any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)
            and any(c in "!@#$%&*?" for c in password)
        ):
            return password


def _public(row: dict) -> dict:
    return {k: v for k, v in row.items() if k != "passwordHash"}


class AdminAccountService:

    def __init__(self, store: DocumentStore, blobs: BlobStore):
        self._store = store
        self._blobs = blobs

    @neutral_on_error(empty_list)
    async def list_admins(self) -> list[dict]:
        rows = await self._store.query_records(ADMINS, order_by=NEWEST_FIRST)
        return [_public(r) for r in rows]

    @neutral_on_error(nothing)
    async def get(self, admin_id: str) -> dict | None:
        row = await self._store.get_record(ADMINS, admin_id)
        return _public(row) if row else None

    async def subscribe(self, on_change: ChangeCallback):
        async def redacted(rows: list[dict]) -> None:
            result = on_change([_public(r) for r in rows])
            if inspect.isawaitable(result):
                await result

        return await self._store.subscribe(ADMINS, redacted, order_by=NEWEST_FIRST)

    async def create(self, data: dict) -> dict:
        """
        Create an active admin.

        Returns ``{"admin": row, "tempPassword": ...}``; the password is not
        recoverable afterwards.

        Raises:
            ValidationGapError: missing name or email
            ConflictError: an admin with that email already exists
        """
        email = str(data.get("email") or "").strip().lower()
        name = str(data.get("name") or "").strip()
        if not email or not name:
            raise ValidationGapError("Admin name and email are required")

        if await self._store.query_records(ADMINS, [where("email", "==", email)]):
            raise ConflictError("An administrator with this email already exists")

        temp_password = generate_temp_password()
        now = to_iso(utc_now())
        admin_id = f"admin_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
        doc = {
            **{k: v for k, v in data.items() if k not in PROTECTED_FIELDS and k != "password"},
            "email": email,
            "name": name,
            "role": data.get("role") or "admin",
            "status": data.get("status") or "active",
            "permissions": data.get("permissions") or ["manage_all"],
            "passwordHash": hash_password(temp_password),
            "createdAt": now,
            "updatedAt": now,
        }
        await self._store.set_record(ADMINS, admin_id, doc)
        logger.info(f"admins: created {admin_id}")
        return {"admin": _public({"id": admin_id, **doc}), "tempPassword": temp_password}

    @neutral_on_error(failed)
    async def update(self, admin_id: str, patch: dict) -> bool:
        """Profile fields only; a ``password`` key re-hashes the password."""
        changes = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS and k != "password"}
        if patch.get("password"):
            changes["passwordHash"] = hash_password(str(patch["password"]))
        changes["updatedAt"] = to_iso(utc_now())
        await self._store.update_record(ADMINS, admin_id, changes)
        return True

    @neutral_on_error(failed)
    async def delete(self, admin_id: str) -> bool:
        row = await self._store.get_record(ADMINS, admin_id)
        if row is None:
            return False
        await self._store.delete_record(ADMINS, admin_id)
        if row.get("profileImage") and not str(row["profileImage"]).startswith("data:"):
            await delete_blob_quietly(self._blobs, row["profileImage"])
        logger.info(f"admins: deleted {admin_id}")
        return True

