# tests/test_admins.py
"""Tests for administrator account management."""
from __future__ import annotations

import pytest

from fleetdesk.admin.admins import AdminAccountService, generate_temp_password
from fleetdesk.core.errors import ConflictError, PermissionDeniedError, ValidationGapError
from fleetdesk.core.ports import Credential
from fleetdesk.infra.identity import AdminIdentityProvider, verify_password

SIGNING_KEY = "test-signing-key-0123456789abcdef"


class TestTempPassword:
    def test_mixes_character_classes(self):
        for _ in range(20):
            password = generate_temp_password()
            assert len(password) == 12
            assert any(c.islower() for c in password)
            assert any(c.isupper() for c in password)
            assert any(c.isdigit() for c in password)
            assert any(c in "!@#$%&*?" for c in password)


class TestCreate:
    @pytest.mark.asyncio
    async def test_temp_password_signs_in(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        created = await svc.create({"name": "Ops Lead", "email": " Ops@Fleet.test "})

        admin = created["admin"]
        assert admin["id"].startswith("admin_")
        assert admin["email"] == "ops@fleet.test"
        assert admin["status"] == "active"
        assert admin["permissions"] == ["manage_all"]
        assert "passwordHash" not in admin

        identity = AdminIdentityProvider(store, signing_key=SIGNING_KEY)
        principal = await identity.sign_in(Credential("ops@fleet.test", created["tempPassword"]))
        assert principal.uid == admin["id"]

    @pytest.mark.asyncio
    async def test_duplicate_email_is_conflict(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        await svc.create({"name": "Ops Lead", "email": "ops@fleet.test"})
        with pytest.raises(ConflictError):
            await svc.create({"name": "Other", "email": "OPS@fleet.test"})
        assert store.collection_size("admins") == 1

    @pytest.mark.asyncio
    async def test_requires_name_and_email(self, store, blobs):
        with pytest.raises(ValidationGapError):
            await AdminAccountService(store, blobs).create({"email": "ops@fleet.test"})

    @pytest.mark.asyncio
    async def test_caller_cannot_set_hash(self, store, blobs):
        created = await AdminAccountService(store, blobs).create({
            "name": "Ops", "email": "ops@fleet.test", "passwordHash": "plain", "password": "chosen",
        })
        stored = await store.get_record("admins", created["admin"]["id"])
        assert stored["passwordHash"].startswith("$pbkdf2-sha256$")
        assert "password" not in stored


class TestReadUpdateDelete:
    @pytest.mark.asyncio
    async def test_hash_never_leaves_service(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        created = await svc.create({"name": "Ops", "email": "ops@fleet.test"})
        admin_id = created["admin"]["id"]

        assert all("passwordHash" not in a for a in await svc.list_admins())
        assert "passwordHash" not in await svc.get(admin_id)
        assert await svc.get("admin_missing") is None

    @pytest.mark.asyncio
    async def test_subscribe_redacts_hash(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        await svc.create({"name": "Ops", "email": "ops@fleet.test"})
        seen: list[list[dict]] = []

        unsubscribe = await svc.subscribe(seen.append)
        await unsubscribe()

        assert seen and seen[0][0]["name"] == "Ops"
        assert "passwordHash" not in seen[0][0]

    @pytest.mark.asyncio
    async def test_update_rehashes_and_keeps_email(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        created = await svc.create({"name": "Ops", "email": "ops@fleet.test"})
        admin_id = created["admin"]["id"]

        ok = await svc.update(admin_id, {"name": "Ops Lead", "email": "x@y.z", "password": "n3w-Passw0rd"})

        assert ok is True
        stored = await store.get_record("admins", admin_id)
        assert stored["name"] == "Ops Lead"
        assert stored["email"] == "ops@fleet.test"
        assert verify_password("n3w-Passw0rd", stored["passwordHash"])
        assert not verify_password(created["tempPassword"], stored["passwordHash"])

    @pytest.mark.asyncio
    async def test_update_missing_admin_is_false(self, store, blobs):
        assert await AdminAccountService(store, blobs).update("admin_missing", {"name": "x"}) is False

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_image(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        url = await blobs.upload("profiles/admin.jpg", b"\xff\xd8", "image/jpeg")
        created = await svc.create({"name": "Ops", "email": "ops@fleet.test", "profileImage": url})
        admin_id = created["admin"]["id"]

        assert await svc.delete(admin_id) is True
        assert await store.get_record("admins", admin_id) is None
        assert blobs.objects == {}
        assert await svc.delete(admin_id) is False

    @pytest.mark.asyncio
    async def test_deleted_admin_cannot_sign_in(self, store, blobs):
        svc = AdminAccountService(store, blobs)
        created = await svc.create({"name": "Ops", "email": "ops@fleet.test"})
        await svc.delete(created["admin"]["id"])

        identity = AdminIdentityProvider(store, signing_key=SIGNING_KEY)
        with pytest.raises(PermissionDeniedError):
            await identity.sign_in(Credential("ops@fleet.test", created["tempPassword"]))
