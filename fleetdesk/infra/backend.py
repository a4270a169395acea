# fleetdesk/infra/backend.py
"""
Backend handle: the store, blob store and identity provider one process
uses.  Built once at startup and passed down; nothing reads it from a
module global.
"""
from __future__ import annotations

from dataclasses import dataclass

from fleetdesk.config import Settings, settings as default_settings
from fleetdesk.core.ports import BlobStore, DocumentStore, IdentityProvider
from fleetdesk.infra.identity import AdminIdentityProvider
from fleetdesk.infra.logging_config import get_logger
from fleetdesk.infra.memory_store import InMemoryDocumentStore
from fleetdesk.infra.s3_storage import InMemoryBlobStore, S3BlobStore

logger = get_logger(__name__)


@dataclass
class Backend:
    store: DocumentStore
    blobs: BlobStore
    identity: IdentityProvider
    uses_pool: bool = False

    async def close(self) -> None:
        close_store = getattr(self.store, "close", None)
        if close_store is not None:
            await close_store()
        if self.uses_pool:
            from fleetdesk.infra.db_async import close_pool
            await close_pool()


def memory_backend(signing_key: str | None = None) -> Backend:
    """Everything in process memory (dev, demos, tests)."""
    store = InMemoryDocumentStore()
    return Backend(
        store=store,
        blobs=InMemoryBlobStore(),
        identity=AdminIdentityProvider(store, signing_key=signing_key),
    )


async def create_backend(s: Settings | None = None) -> Backend:
    s = s or default_settings

    if s.store_backend == "postgres":
        from fleetdesk.infra.db_async import close_pool, init_pool
        from fleetdesk.infra.migrations_async import validate_schema_version
        from fleetdesk.infra.pg_document_store_async import PostgresDocumentStore

        await init_pool()
        try:
            await validate_schema_version(s.expected_schema_version)
        except Exception:
            await close_pool()
            raise
        store: DocumentStore = PostgresDocumentStore()
        uses_pool = True
    else:
        store = InMemoryDocumentStore()
        uses_pool = False

    blobs: BlobStore = S3BlobStore() if s.s3_enabled else InMemoryBlobStore()
    logger.info(
        f"Backend ready: store={s.store_backend}, blobs={'s3' if s.s3_enabled else 'memory'}"
    )
    return Backend(
        store=store,
        blobs=blobs,
        identity=AdminIdentityProvider(store),
        uses_pool=uses_pool,
    )
