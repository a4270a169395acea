# fleetdesk/core/dispatch/availability.py
"""
Driver and truck availability per service day.

A dispatch occupies its drivers and trucks on its service day: the date of
``requestedTime`` when that parses, else the (UTC) date it was created.
Only dispatches that are ``assigned`` or ``in-progress`` hold anyone, and
an assignment the driver already completed frees them for the rest of the
day.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from fleetdesk.core.dispatch.models import Dispatch, parse_iso, utc_now
from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.ports import DISPATCHES, DRIVERS, TRUCKS, DocumentStore
from fleetdesk.core.query import where
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

HOLDING_STATUSES = (DispatchStatus.ASSIGNED, DispatchStatus.IN_PROGRESS)
RELEASED_ASSIGNMENT_STATUSES = (DispatchStatus.COMPLETED, DispatchStatus.CANCELLED)
AVAILABLE_DRIVER_STATUSES = ("available", "operational", "active")
UNLINKED_TRUCK = "unknown"


def service_date(dispatch: Dispatch) -> date:
    requested = parse_iso(dispatch.requested_time)
    if requested is not None:
        return requested.date()
    return (dispatch.created_at or utc_now()).date()


@dataclass(frozen=True)
class BusySlot:
    """One driver (and maybe truck) held by one dispatch on one day."""

    dispatch_id: str
    driver_id: str
    truck_id: str | None
    status: DispatchStatus
    day: date

    def to_dict(self) -> dict:
        return {
            "dispatchId": self.dispatch_id,
            "driverId": self.driver_id,
            "truckId": self.truck_id,
            "status": self.status.value,
            "date": self.day.isoformat(),
        }


@dataclass(frozen=True)
class Availability:
    driver_id: str | None
    truck_id: str | None
    driver_busy_with: str | None = None
    truck_busy_with: str | None = None

    @property
    def driver_available(self) -> bool:
        return self.driver_busy_with is None

    @property
    def truck_available(self) -> bool:
        return self.truck_busy_with is None

    @property
    def available(self) -> bool:
        return self.driver_available and self.truck_available

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "driverAvailable": self.driver_available,
            "truckAvailable": self.truck_available,
            "driverBusyWith": self.driver_busy_with,
            "truckBusyWith": self.truck_busy_with,
        }


class AvailabilityService:
    """Who is booked on a given day, read from the dispatches collection."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def busy_slots(self, day: date, exclude_dispatch_id: str | None = None) -> list[BusySlot]:
        rows = await self._store.query_records(
            DISPATCHES,
            [where("status", "in", [s.value for s in HOLDING_STATUSES])],
        )
        slots: list[BusySlot] = []
        for row in rows:
            if row["id"] == exclude_dispatch_id:
                continue
            try:
                dispatch = Dispatch.from_document(row)
            except Exception:
                logger.warning(f"Skipping unreadable dispatch {row.get('id')} in availability scan", exc_info=True)
                continue
            if service_date(dispatch) != day:
                continue
            slots.extend(
                BusySlot(
                    dispatch_id=dispatch.id,
                    driver_id=a.driver_id,
                    truck_id=a.truck_id if a.truck_id != UNLINKED_TRUCK else None,
                    status=a.status,
                    day=day,
                )
                for a in dispatch.assignments
                if a.status not in RELEASED_ASSIGNMENT_STATUSES
            )
        return slots

    async def check(
            self,
            day: date,
            driver_id: str | None = None,
            truck_id: str | None = None,
            exclude_dispatch_id: str | None = None,
    ) -> Availability:
        driver_busy = truck_busy = None
        for slot in await self.busy_slots(day, exclude_dispatch_id):
            if driver_id and driver_busy is None and slot.driver_id == driver_id:
                driver_busy = slot.dispatch_id
            if truck_id and truck_busy is None and slot.truck_id == truck_id:
                truck_busy = slot.dispatch_id
        return Availability(driver_id, truck_id, driver_busy, truck_busy)

    async def conflicts(
            self,
            day: date,
            pairs: Iterable[tuple[str, str | None]],
            exclude_dispatch_id: str | None = None,
    ) -> list[str]:
        """Human-readable clashes for (driver, truck) pairs; empty when all are free."""
        slots = await self.busy_slots(day, exclude_dispatch_id)
        busy_drivers = {s.driver_id: s.dispatch_id for s in slots}
        busy_trucks = {s.truck_id: s.dispatch_id for s in slots if s.truck_id}

        clashes: list[str] = []
        for driver_id, truck_id in pairs:
            if driver_id in busy_drivers:
                clashes.append(f"driver {driver_id} is on dispatch {busy_drivers[driver_id]}")
            if truck_id and truck_id in busy_trucks:
                clashes.append(f"truck {truck_id} is on dispatch {busy_trucks[truck_id]}")
        return clashes

    async def available_drivers(self, day: date) -> list[dict]:
        busy = {s.driver_id for s in await self.busy_slots(day)}
        drivers = await self._store.query_records(DRIVERS)
        return [
            d for d in drivers
            if str(d.get("status", "")).lower() in AVAILABLE_DRIVER_STATUSES
            and d["id"] not in busy
            and d.get("driverId") not in busy
        ]

    async def available_trucks(self, day: date, truck_type: str | None = None) -> list[dict]:
        busy = {s.truck_id for s in await self.busy_slots(day) if s.truck_id}
        trucks = await self._store.query_records(TRUCKS)
        return [
            t for t in trucks
            if str(t.get("status", "")).lower() == "operational"
            and t["id"] not in busy
            and t.get("truckId") not in busy
            and (truck_type is None or str(t.get("truckType", "")).lower() == truck_type.lower())
        ]
