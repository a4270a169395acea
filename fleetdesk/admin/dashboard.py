# fleetdesk/admin/dashboard.py
from __future__ import annotations

import asyncio
from datetime import timedelta

from fleetdesk.core.dispatch.models import parse_iso, utc_now
from fleetdesk.core.ports import CUSTOMERS, DISPATCHES, DRIVERS, TRUCKS, DocumentStore
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

RECENT_WINDOW = timedelta(days=7)

EMPTY_STATS = {
    "totalDrivers": 0,
    "activeDrivers": 0,
    "totalTrucks": 0,
    "availableTrucks": 0,
    "totalTrips": 0,
    "completedTrips": 0,
    "pendingTrips": 0,
    "totalUsers": 0,
    "recentTrips": 0,
}


async def dashboard_stats(store: DocumentStore, now=None) -> dict:
    """Headline counters for the dashboard. All zeros if any read fails."""
    try:
        drivers, trucks, trips, customers = await asyncio.gather(
            store.query_records(DRIVERS),
            store.query_records(TRUCKS),
            store.query_records(DISPATCHES),
            store.query_records(CUSTOMERS),
        )
    except Exception:
        logger.error("Dashboard stats query failed", exc_info=True)
        return dict(EMPTY_STATS)

    cutoff = (now or utc_now()) - RECENT_WINDOW
    recent = 0
    for trip in trips:
        created = parse_iso(trip.get("createdAt"))
        if created is not None and created >= cutoff:
            recent += 1

    return {
        "totalDrivers": len(drivers),
        "activeDrivers": sum(1 for d in drivers if d.get("status") == "active"),
        "totalTrucks": len(trucks),
        "availableTrucks": sum(1 for t in trucks if t.get("status") == "operational"),
        "totalTrips": len(trips),
        "completedTrips": sum(1 for t in trips if t.get("status") == "completed"),
        "pendingTrips": sum(1 for t in trips if t.get("status") in ("pending", "assigned")),
        "totalUsers": len(customers),
        "recentTrips": recent,
    }
