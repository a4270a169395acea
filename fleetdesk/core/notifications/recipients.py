# fleetdesk/core/notifications/recipients.py
"""
Recipient resolution.

``plan_recipients`` is pure: it derives who an event addresses from the
event alone.  ``RecipientResolver`` then turns that plan into storage
keys, expanding role-wide audiences and mapping foreign identifiers
(short codes, identity-provider uids) onto row ids.
"""
from __future__ import annotations

from dataclasses import dataclass

from fleetdesk.config import settings
from fleetdesk.core.notifications.events import (
    AdminBroadcast,
    Audience,
    DomainEvent,
    ImageUploaded,
    NewRequest,
    StatusChanged,
)
from fleetdesk.core.notifications.records import (
    ADMIN,
    ROLE_COLLECTIONS,
    Recipient,
    RecipientKind,
    customer,
    driver,
)
from fleetdesk.core.ports import DocumentStore
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

# Row fields that may hold a foreign identifier for the role
SHORT_CODE_FIELDS = {
    RecipientKind.CUSTOMER: "customerId",
    RecipientKind.DRIVER: "driverId",
}
IDENTITY_FIELD = "uid"

_BROADCAST_ROLES = {
    Audience.ALL_CUSTOMERS: (RecipientKind.CUSTOMER,),
    Audience.ALL_DRIVERS: (RecipientKind.DRIVER,),
    Audience.ALL_USERS: (RecipientKind.CUSTOMER, RecipientKind.DRIVER),
}


@dataclass(frozen=True)
class RecipientPlan:
    """Admin record first, then explicitly named recipients, then whole roles."""

    explicit: tuple[Recipient, ...]
    roles: tuple[RecipientKind, ...] = ()


def dedupe(recipients) -> list[Recipient]:
    seen: set[Recipient] = set()
    result = []
    for r in recipients:
        if r not in seen:
            seen.add(r)
            result.append(r)
    return result


def plan_recipients(event: DomainEvent) -> RecipientPlan:
    if isinstance(event, NewRequest):
        return RecipientPlan(explicit=(ADMIN,))

    if isinstance(event, StatusChanged):
        named = [ADMIN]
        if event.customer_id:
            named.append(customer(event.customer_id))
        named.extend(driver(a.driver_id) for a in event.assignments if a.driver_id)
        return RecipientPlan(explicit=tuple(dedupe(named)))

    if isinstance(event, ImageUploaded):
        named = [ADMIN]
        if event.customer_id:
            named.append(customer(event.customer_id))
        return RecipientPlan(explicit=tuple(named))

    if isinstance(event, AdminBroadcast):
        if event.audience == Audience.SPECIFIC_CUSTOMER:
            return RecipientPlan(explicit=(ADMIN, customer(event.recipient_id)))
        if event.audience == Audience.SPECIFIC_DRIVER:
            return RecipientPlan(explicit=(ADMIN, driver(event.recipient_id)))
        return RecipientPlan(explicit=(ADMIN,), roles=_BROADCAST_ROLES.get(event.audience, ()))

    raise TypeError(f"Unsupported event type: {type(event).__name__}")


class RecipientResolver:
    """Maps planned recipients onto storage keys using the document store."""

    def __init__(
            self,
            store: DocumentStore,
            customer_prefix: str | None = None,
            driver_prefix: str | None = None,
            max_short_code_length: int | None = None,
    ):
        self._store = store
        self._prefixes = {
            RecipientKind.CUSTOMER: customer_prefix or settings.customer_code_prefix,
            RecipientKind.DRIVER: driver_prefix or settings.driver_code_prefix,
        }
        self._max_len = max_short_code_length or settings.short_code_max_length

    def is_short_code(self, kind: RecipientKind, identifier: str) -> bool:
        prefix = self._prefixes.get(kind)
        return bool(prefix) and len(identifier) <= self._max_len and prefix in identifier

    async def resolve_key(
            self,
            kind: RecipientKind,
            identifier: str,
            rows: list[dict] | None = None,
    ) -> str:
        """Storage key for ``identifier`` within the role collection.

        Short codes are returned as-is.  Anything else is matched against
        the row id, short-code field and identity uid of every row; with no
        match the identifier comes back unchanged.
        """
        if kind == RecipientKind.ADMIN or self.is_short_code(kind, identifier):
            return identifier

        if rows is None:
            rows = await self._role_rows(kind)

        code_field = SHORT_CODE_FIELDS[kind]
        for row in rows:
            if identifier in (row.get("id"), row.get(code_field), row.get(IDENTITY_FIELD)):
                return row["id"]

        logger.debug(f"No {kind.value} row matches {identifier!r}; using it as the key")
        return identifier

    async def resolve(self, event: DomainEvent) -> list[Recipient]:
        """Concrete, de-duplicated recipient list for ``event``."""
        plan = plan_recipients(event)
        role_cache: dict[RecipientKind, list[dict]] = {}

        async def rows_for(kind: RecipientKind) -> list[dict]:
            if kind not in role_cache:
                role_cache[kind] = await self._role_rows(kind)
            return role_cache[kind]

        resolved: list[Recipient] = []
        for recipient in plan.explicit:
            if recipient.kind == RecipientKind.ADMIN or self.is_short_code(recipient.kind, recipient.id):
                resolved.append(recipient)
                continue
            key = await self.resolve_key(recipient.kind, recipient.id, await rows_for(recipient.kind))
            resolved.append(Recipient(recipient.kind, key))

        for kind in plan.roles:
            resolved.extend(Recipient(kind, row["id"]) for row in await rows_for(kind))

        return dedupe(resolved)

    async def _role_rows(self, kind: RecipientKind) -> list[dict]:
        try:
            return await self._store.query_records(ROLE_COLLECTIONS[kind])
        except Exception:
            # Resolution degrades to "use the identifier as given"
            logger.warning(f"Could not read {ROLE_COLLECTIONS[kind]} for recipient resolution", exc_info=True)
            return []
