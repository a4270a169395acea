# fleetdesk/admin/services.py
"""
Service container for the admin API.

Route handlers receive one ``AdminServices`` built from the process
``Backend``; every service shares the same store, blob store and
fan-out engine.
"""
from __future__ import annotations

from dataclasses import dataclass

from fleetdesk.admin.admins import AdminAccountService
from fleetdesk.admin.dispatches import DispatchQueries
from fleetdesk.admin.directory import DirectoryService
from fleetdesk.admin.images import DispatchImageService
from fleetdesk.admin.notifications import NotificationService
from fleetdesk.core.dispatch.availability import AvailabilityService
from fleetdesk.core.dispatch.workflow import DispatchWorkflow
from fleetdesk.core.notifications.engine import FanOutEngine
from fleetdesk.core.notifications.recipients import RecipientResolver
from fleetdesk.infra.backend import Backend


@dataclass
class AdminServices:
    backend: Backend
    engine: FanOutEngine
    workflow: DispatchWorkflow
    dispatches: DispatchQueries
    directory: DirectoryService
    notifications: NotificationService
    images: DispatchImageService
    availability: AvailabilityService
    admins: AdminAccountService


def build_services(backend: Backend) -> AdminServices:
    resolver = RecipientResolver(backend.store)
    engine = FanOutEngine(backend.store, resolver)
    return AdminServices(
        backend=backend,
        engine=engine,
        workflow=DispatchWorkflow(backend.store, engine),
        dispatches=DispatchQueries(backend.store),
        directory=DirectoryService(backend.store, backend.blobs),
        notifications=NotificationService(backend.store, engine, resolver),
        images=DispatchImageService(backend.store, backend.blobs, engine),
        availability=AvailabilityService(backend.store),
        admins=AdminAccountService(backend.store, backend.blobs),
    )
