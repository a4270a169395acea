# fleetdesk/core/ports.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence

from fleetdesk.core.query import Filter, OrderBy

# Collection paths
CUSTOMERS = "customers"
DRIVERS = "drivers"
TRUCKS = "trucks"
DISPATCHES = "dispatches"
NOTIFICATIONS = "notifications"
DISPATCH_IMAGES = "dispatch_image"
ADMINS = "admins"

ChangeCallback = Callable[[list[dict]], Any]
Unsubscribe = Callable[[], Awaitable[None]]


# ============================================================================
# ASYNC PROTOCOLS
# ============================================================================

class DocumentStore(Protocol):
    """Collection-oriented document store.

    Records are plain dicts.  Every record returned by a read carries its
    storage key under ``"id"``.  Collection paths may be nested, e.g.
    ``customers/cust_001/notifications``.
    """

    async def add_record(self, collection_path: str, record: dict) -> str: ...

    async def set_record(self, collection_path: str, record_id: str, record: dict) -> None: ...

    async def update_record(self, collection_path: str, record_id: str, partial: dict) -> None:
        """Merge ``partial`` into an existing record. Raises NotFoundError if absent."""
        ...

    async def get_record(self, collection_path: str, record_id: str) -> Optional[dict]: ...

    async def delete_record(self, collection_path: str, record_id: str) -> None: ...

    async def query_records(
            self,
            collection_path: str,
            filters: Sequence[Filter] = (),
            order_by: Optional[OrderBy] = None,
            limit: Optional[int] = None,
    ) -> list[dict]: ...

    async def subscribe(
            self,
            collection_path: str,
            on_change: ChangeCallback,
            filters: Sequence[Filter] = (),
            order_by: Optional[OrderBy] = None,
    ) -> Unsubscribe:
        """Call ``on_change`` with the current result set now and after every
        write to the collection. Returns an async unsubscribe callable."""
        ...


class BlobStore(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store bytes at ``path`` and return a durable retrieval URL."""
        ...

    async def download(self, path: str) -> Optional[bytes]: ...

    async def delete(self, url_or_path: str) -> bool:
        """Best-effort delete. Never raises; returns False on failure."""
        ...


@dataclass(frozen=True)
class Credential:
    email: str
    password: str


@dataclass(frozen=True)
class Principal:
    uid: str
    email: str
    name: str = ""
    role: str = "admin"
    token: str | None = None
    profile: dict = field(default_factory=dict)


class IdentityProvider(Protocol):
    async def sign_in(self, credential: Credential) -> Principal: ...

    async def current_principal(self, token: str) -> Optional[Principal]: ...

    async def get_profile(self, uid: str) -> Optional[dict]: ...
