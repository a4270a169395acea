# fleetdesk/core/dispatch/workflow.py
"""
Dispatch status workflow.

Every move follows the same shape:

1. read the dispatch (this snapshot supplies route and assignment context)
2. check the move against the transition table
3. write the new status
4. read the dispatch back for the persisted status
5. fan out StatusChanged

The status write and the notification writes are separate; a failed
notification never undoes the status change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from fleetdesk.core.dispatch.availability import AvailabilityService, service_date
from fleetdesk.core.dispatch.models import Assignment, Dispatch, to_iso, utc_now
from fleetdesk.core.dispatch.status import (
    DispatchStatus,
    ensure_assignment_transition,
    ensure_transition,
    rollup_status,
)
from fleetdesk.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationGapError,
)
from fleetdesk.core.notifications.engine import FanOutEngine, FanOutResult
from fleetdesk.core.notifications.events import AssignedDriver, NewRequest, StatusChanged
from fleetdesk.core.ports import DISPATCHES, DRIVERS, DocumentStore
from fleetdesk.infra.logging_config import LogContext, get_logger

logger = get_logger(__name__)


@dataclass
class TransitionResult:
    dispatch: Dispatch
    notifications: FanOutResult | None = None

    def to_dict(self) -> dict:
        return {
            "dispatch": {"id": self.dispatch.id, **self.dispatch.to_document()},
            "notifications": self.notifications.to_dict() if self.notifications else None,
        }


@dataclass(frozen=True)
class AssignmentInput:
    driver_id: str
    truck_id: str | None = None
    notes: str | None = None


class DispatchWorkflow:
    """Persists dispatch status moves and fans out their notifications."""

    def __init__(self, store: DocumentStore, notifier: FanOutEngine):
        self._store = store
        self._notifier = notifier
        self._availability = AvailabilityService(store)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, dispatch_id: str) -> Dispatch:
        doc = await self._store.get_record(DISPATCHES, dispatch_id)
        if doc is None:
            raise NotFoundError(f"Dispatch '{dispatch_id}' not found")
        return Dispatch.from_document(doc)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_request(self, data: dict) -> TransitionResult:
        """Store a new ``pending`` dispatch and notify the admin feed."""
        if not data.get("sourceLocation") or not data.get("destinationLocation"):
            raise ValidationGapError("sourceLocation and destinationLocation are required")

        now = utc_now()
        doc = {
            **{k: v for k, v in data.items() if k not in ("id", "status", "assignments")},
            "status": DispatchStatus.PENDING.value,
            "assignments": [],
            "statusChangedAt": {DispatchStatus.PENDING.value: to_iso(now)},
            "createdAt": to_iso(now),
            "updatedAt": to_iso(now),
        }
        dispatch_id = await self._store.add_record(DISPATCHES, doc)
        dispatch = await self.get(dispatch_id)

        LogContext(logger, dispatch_id=dispatch_id).info("Dispatch request created")
        result = await self._notifier.dispatch_event(NewRequest(
            dispatch_id=dispatch.id,
            pickup=dispatch.pickup,
            dropoff=dispatch.dropoff,
            customer_id=dispatch.customer_id,
            customer_name=dispatch.customer_name,
            requested_time=dispatch.requested_time,
        ))
        return TransitionResult(dispatch=dispatch, notifications=result)

    # ------------------------------------------------------------------
    # Admin moves
    # ------------------------------------------------------------------

    async def accept(self, dispatch_id: str, actor_name: str | None = None) -> TransitionResult:
        return await self.transition(dispatch_id, DispatchStatus.ACCEPTED, actor_name=actor_name)

    async def reject(self, dispatch_id: str, reason: str | None = None,
                     actor_name: str | None = None) -> TransitionResult:
        return await self.transition(
            dispatch_id, DispatchStatus.REJECTED, actor_name=actor_name, reason=reason,
        )

    async def cancel(self, dispatch_id: str, reason: str | None = None,
                     actor_name: str | None = None) -> TransitionResult:
        return await self.transition(
            dispatch_id, DispatchStatus.CANCELLED, actor_name=actor_name, reason=reason,
        )

    async def assign(
            self,
            dispatch_id: str,
            assignments: Iterable[AssignmentInput],
            actor_name: str | None = None,
    ) -> TransitionResult:
        """Attach drivers/trucks and move to ``assigned``.

        Raises ConflictError when a driver or truck is already booked on
        another dispatch the same service day.
        """
        inputs = list(assignments)
        if not inputs:
            raise ValidationGapError("At least one driver assignment is required")
        driver_ids = [a.driver_id for a in inputs]
        if any(not d for d in driver_ids):
            raise ValidationGapError("Every assignment needs a driverId")
        if len(set(driver_ids)) != len(driver_ids):
            raise ValidationGapError("A driver can only be assigned once per dispatch")

        snapshot = await self.get(dispatch_id)
        ensure_transition(snapshot.status, DispatchStatus.ASSIGNED)
        clashes = await self._availability.conflicts(
            service_date(snapshot),
            [(a.driver_id, a.truck_id) for a in inputs],
            exclude_dispatch_id=dispatch_id,
        )
        if clashes:
            raise ConflictError(f"Already booked on {service_date(snapshot).isoformat()}: {'; '.join(clashes)}")

        now = utc_now()
        names = await self._driver_names(driver_ids)
        new_assignments = [
            Assignment(
                driver_id=a.driver_id,
                truck_id=a.truck_id,
                notes=a.notes,
                driver_name=names.get(a.driver_id),
                assigned_at=now,
            )
            for a in inputs
        ]
        return await self.transition(
            dispatch_id,
            DispatchStatus.ASSIGNED,
            actor_name=actor_name,
            assignments=new_assignments,
        )

    async def start(self, dispatch_id: str, actor_name: str | None = None) -> TransitionResult:
        """Admin override: every assignment and the dispatch go in-progress."""
        return await self.transition(dispatch_id, DispatchStatus.IN_PROGRESS, actor_name=actor_name)

    async def complete(self, dispatch_id: str, actor_name: str | None = None) -> TransitionResult:
        return await self.transition(dispatch_id, DispatchStatus.COMPLETED, actor_name=actor_name)

    async def transition(
            self,
            dispatch_id: str,
            new_status: DispatchStatus | str,
            *,
            actor_name: str | None = None,
            reason: str | None = None,
            assignments: list[Assignment] | None = None,
    ) -> TransitionResult:
        requested = DispatchStatus.parse(new_status)
        snapshot = await self.get(dispatch_id)
        ensure_transition(snapshot.status, requested)

        if requested == DispatchStatus.ASSIGNED and not (assignments or snapshot.assignments):
            raise ValidationGapError("Cannot assign a dispatch without driver assignments")

        now = utc_now()
        patch = self._status_patch(snapshot, requested, now)
        if assignments is not None:
            patch["assignments"] = [a.to_document() for a in assignments]
        elif requested in (DispatchStatus.IN_PROGRESS, DispatchStatus.COMPLETED):
            # Dispatch-level start/complete carries every driver along
            for assignment in snapshot.assignments:
                if assignment.status != requested and assignment.status != DispatchStatus.COMPLETED:
                    assignment.move_to(requested, now)
            patch["assignments"] = [a.to_document() for a in snapshot.assignments]
        if reason and requested in (DispatchStatus.REJECTED, DispatchStatus.CANCELLED):
            patch["rejectionReason"] = reason

        await self._store.update_record(DISPATCHES, dispatch_id, patch)
        return await self._after_write(snapshot, actor_name=actor_name, reason=reason)

    # ------------------------------------------------------------------
    # Driver moves
    # ------------------------------------------------------------------

    async def update_assignment_status(
            self,
            dispatch_id: str,
            driver_id: str,
            new_status: DispatchStatus | str,
            actor_name: str | None = None,
    ) -> TransitionResult:
        """
        Move one driver's assignment and re-derive the dispatch status.

        StatusChanged is fanned out only when the derived dispatch status
        actually changes.
        """
        requested = DispatchStatus.parse(new_status)
        snapshot = await self.get(dispatch_id)

        if snapshot.status not in (DispatchStatus.ASSIGNED, DispatchStatus.IN_PROGRESS):
            raise InvalidTransitionError(snapshot.status.value, requested.value)

        assignment = snapshot.assignment_for(driver_id)
        if assignment is None:
            raise NotFoundError(f"Driver '{driver_id}' is not assigned to dispatch '{dispatch_id}'")
        ensure_assignment_transition(assignment.status, requested)

        now = utc_now()
        assignment.move_to(requested, now)
        overall = rollup_status((a.status for a in snapshot.assignments), snapshot.status)

        patch = {
            "assignments": [a.to_document() for a in snapshot.assignments],
            "updatedAt": to_iso(now),
        }
        if overall != snapshot.status:
            ensure_transition(snapshot.status, overall)
            patch.update(self._status_patch(snapshot, overall, now))

        await self._store.update_record(DISPATCHES, dispatch_id, patch)
        LogContext(logger, dispatch_id=dispatch_id).info(
            f"Assignment {driver_id} -> {requested.value} (dispatch {overall.value})"
        )

        if overall == snapshot.status:
            return TransitionResult(dispatch=await self.get(dispatch_id))
        return await self._after_write(snapshot, actor_name=actor_name or assignment.driver_name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _status_patch(snapshot: Dispatch, status: DispatchStatus, now) -> dict:
        changed_at = dict(snapshot.status_changed_at)
        changed_at[status.value] = to_iso(now)
        return {
            "status": status.value,
            "statusChangedAt": changed_at,
            "updatedAt": to_iso(now),
        }

    async def _after_write(
            self,
            snapshot: Dispatch,
            actor_name: str | None = None,
            reason: str | None = None,
    ) -> TransitionResult:
        persisted = await self.get(snapshot.id)
        LogContext(logger, dispatch_id=snapshot.id).info(
            f"Dispatch status {snapshot.status.value} -> {persisted.status.value}"
        )

        # Assignment list from the persisted row so a fresh assignment is
        # notified; route text from the pre-write snapshot.
        event = StatusChanged(
            dispatch_id=snapshot.id,
            status=persisted.status,
            pickup=snapshot.pickup,
            dropoff=snapshot.dropoff,
            customer_id=snapshot.customer_id,
            assignments=tuple(
                AssignedDriver(a.driver_id, a.truck_id, a.driver_name) for a in persisted.assignments
            ),
            reference=snapshot.reference,
            previous_status=snapshot.status,
            actor_name=actor_name,
            reason=reason,
        )
        result = await self._notifier.dispatch_event(event)
        return TransitionResult(dispatch=persisted, notifications=result)

    async def _driver_names(self, driver_ids: list[str]) -> dict[str, str]:
        names: dict[str, str] = {}
        for driver_id in driver_ids:
            try:
                row = await self._store.get_record(DRIVERS, driver_id)
            except Exception:
                logger.warning(f"Driver lookup failed for {driver_id}", exc_info=True)
                continue
            if row and row.get("name"):
                names[driver_id] = row["name"]
        return names
