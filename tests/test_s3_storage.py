# tests/test_s3_storage.py
"""Tests for the S3 blob store (boto3 client mocked)."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from fleetdesk.infra.s3_storage import InMemoryBlobStore, S3BlobStore


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _store(client=None, public_url="https://cdn.example.com/fleet") -> S3BlobStore:
    return S3BlobStore(client=client or MagicMock(), bucket="fleet", public_url=public_url)


class TestUrls:
    def test_public_url(self):
        assert _store().url_for("dispatches/d1/a.jpg") == "https://cdn.example.com/fleet/dispatches/d1/a.jpg"

    def test_key_from_public_url(self):
        store = _store()
        assert store.key_from_url("https://cdn.example.com/fleet/dispatches/d1/a%20b.jpg") == "dispatches/d1/a b.jpg"

    def test_key_from_foreign_url_strips_bucket(self):
        store = _store(public_url="")
        assert store.key_from_url("https://other.host/fleet/profiles/x.png") == "profiles/x.png"

    def test_bare_key(self):
        assert _store().key_from_url("/profiles/x.png") == "profiles/x.png"


class TestS3Operations:
    @pytest.mark.asyncio
    async def test_upload_puts_object_and_returns_url(self):
        client = MagicMock()
        store = _store(client)

        url = await store.upload("dispatches/d1/a.jpg", b"img", "image/jpeg")

        assert url == "https://cdn.example.com/fleet/dispatches/d1/a.jpg"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "fleet"
        assert kwargs["Key"] == "dispatches/d1/a.jpg"
        assert kwargs["ContentType"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_upload_failure_raises(self):
        client = MagicMock()
        client.put_object.side_effect = _client_error("AccessDenied", "PutObject")
        with pytest.raises(ClientError):
            await _store(client).upload("k", b"x")

    @pytest.mark.asyncio
    async def test_download_missing_is_none(self):
        client = MagicMock()
        client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")
        assert await _store(client).download("k") is None

    @pytest.mark.asyncio
    async def test_download_reads_body(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"data"))}
        assert await _store(client).download("https://cdn.example.com/fleet/k") == b"data"
        assert client.get_object.call_args.kwargs["Key"] == "k"

    @pytest.mark.asyncio
    async def test_delete_by_url(self):
        client = MagicMock()
        assert await _store(client).delete("https://cdn.example.com/fleet/profiles/x.png") is True
        client.delete_object.assert_called_once_with(Bucket="fleet", Key="profiles/x.png")

    @pytest.mark.asyncio
    async def test_delete_failure_is_swallowed(self):
        client = MagicMock()
        client.delete_object.side_effect = _client_error("InternalError", "DeleteObject")
        assert await _store(client).delete("profiles/x.png") is False


class TestInMemoryBlobStore:
    @pytest.mark.asyncio
    async def test_round_trip_by_url(self):
        blobs = InMemoryBlobStore()
        url = await blobs.upload("a/b.jpg", b"x")
        assert url == "memory://blobs/a/b.jpg"
        assert await blobs.download(url) == b"x"
        assert await blobs.delete(url) is True
        assert await blobs.delete(url) is False
