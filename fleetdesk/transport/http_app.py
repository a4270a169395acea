# fleetdesk/transport/http_app.py
"""
HTTP surface of the dispatch admin backend.

Security layers:
1. Public: /health and POST /auth/login
2. Protected: every /admin route and /metrics (ADMIN_TOKEN or identity token)
3. No information leakage in production (docs disabled, sanitized 500s)

Route handlers stay thin: they validate the body with the pydantic models
in ``fleetdesk.admin.models``, call one service and shape the response.
Domain errors (``FleetError``) are mapped to their HTTP status by a single
exception handler.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from fleetdesk.admin.dashboard import dashboard_stats
from fleetdesk.admin.directory import ROLES
from fleetdesk.admin.models import (
    AdminInput,
    AdminPatch,
    AssignmentStatusRequest,
    AssignRequest,
    BroadcastRequest,
    CreateDispatchRequest,
    CustomerInput,
    DirectoryPatch,
    DriverInput,
    LoginRequest,
    TransitionRequest,
    TruckInput,
)
from fleetdesk.admin.services import AdminServices, build_services
from fleetdesk.config import settings, validate_or_warn
from fleetdesk.core.dispatch.models import utc_now
from fleetdesk.core.dispatch.status import DispatchStatus
from fleetdesk.core.dispatch.workflow import AssignmentInput
from fleetdesk.core.errors import FleetError, NotFoundError
from fleetdesk.core.notifications.records import RecipientKind
from fleetdesk.core.ports import CUSTOMERS, DRIVERS, TRUCKS, Credential, Principal
from fleetdesk.infra.backend import Backend, create_backend
from fleetdesk.infra.logging_config import get_logger, setup_logging
from fleetdesk.infra.metrics import get_metrics_collector
from fleetdesk.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from fleetdesk.transport.security import require_admin_auth, sanitize_error_message

setup_logging(level=settings.log_level, use_json=settings.log_json or settings.is_production)

logger = get_logger(__name__)

DIRECTORY_INPUTS = {
    CUSTOMERS: CustomerInput,
    DRIVERS: DriverInput,
    TRUCKS: TruckInput,
}

INBOX_KINDS = {
    "customers": RecipientKind.CUSTOMER,
    "drivers": RecipientKind.DRIVER,
}


def _services(request: Request) -> AdminServices:
    return request.app.state.services


def _parse(model, payload: dict):
    try:
        return model(**payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _directory_collection(collection: str) -> str:
    if collection not in ROLES:
        raise HTTPException(status_code=404, detail="Not found")
    return collection


def _inbox_kind(kind: str) -> RecipientKind:
    try:
        return INBOX_KINDS[kind]
    except KeyError:
        raise HTTPException(status_code=404, detail="Not found") from None


def create_app(backend: Backend | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    ``backend`` is injected by tests; in a real process the lifespan
    builds it from settings (memory or Postgres store, S3 or memory blobs).
    """

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        logger.info(f"Starting application (env={settings.app_env})")

        # Fail fast in prod on missing settings, warn otherwise
        validate_or_warn(settings)

        owned = backend is None
        active = backend if backend is not None else await create_backend(settings)
        fastapi_app.state.services = build_services(active)
        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application")
        if owned:
            await active.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Fleetdesk",
        description="Dispatch admin backend with notification fan-out",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )

    if settings.is_production or settings.is_staging:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
            allow_credentials=False,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
            allow_headers=["Content-Type", "Authorization"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(app)
    _register_public_routes(app)
    _register_dispatch_routes(app)
    _register_image_routes(app)
    _register_notification_routes(app)
    _register_availability_routes(app)
    _register_admin_account_routes(app)
    # Catch-all /admin/{collection} routes go last
    _register_directory_routes(app)
    return app


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(FleetError)
    async def fleet_error_handler(request: Request, exc: FleetError):
        if exc.status_code >= 500:
            logger.error(f"Domain error: {exc.detail}", extra={"status_code": exc.status_code})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": sanitize_error_message(exc, settings.is_production)},
        )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

def _register_public_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health():
        """Liveness check for load balancers."""
        return {"status": "healthy"}

    @app.get("/metrics", dependencies=[Depends(require_admin_auth)])
    def metrics():
        if not settings.enable_metrics:
            raise HTTPException(status_code=404, detail="Not found")
        return get_metrics_collector().get_metrics()

    @app.post("/auth/login")
    async def login(payload: dict, request: Request):
        req = _parse(LoginRequest, payload)
        identity = _services(request).backend.identity
        principal = await identity.sign_in(Credential(email=req.email, password=req.password))
        return {
            "token": principal.token,
            "uid": principal.uid,
            "email": principal.email,
            "name": principal.name,
            "role": principal.role,
        }

    @app.get("/auth/me")
    async def me(principal: Principal = Depends(require_admin_auth)):
        return {
            "uid": principal.uid,
            "email": principal.email,
            "name": principal.name,
            "role": principal.role,
            "profile": principal.profile,
        }

    @app.get("/admin/dashboard", dependencies=[Depends(require_admin_auth)])
    async def admin_dashboard(request: Request):
        return await dashboard_stats(_services(request).backend.store)


# ============================================================================
# AVAILABILITY / SCHEDULE
# ============================================================================

def _service_day(value: str | None) -> date:
    if not value:
        return utc_now().date()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date '{value}', expected YYYY-MM-DD") from None


def _register_availability_routes(app: FastAPI) -> None:

    @app.get("/admin/availability", dependencies=[Depends(require_admin_auth)])
    async def admin_check_availability(
            request: Request,
            on: str | None = Query(default=None, alias="date"),
            driver_id: str | None = Query(default=None, alias="driverId"),
            truck_id: str | None = Query(default=None, alias="truckId"),
    ):
        day = _service_day(on)
        result = await _services(request).availability.check(day, driver_id=driver_id, truck_id=truck_id)
        return {"date": day.isoformat(), **result.to_dict()}

    @app.get("/admin/availability/drivers", dependencies=[Depends(require_admin_auth)])
    async def admin_available_drivers(request: Request, on: str | None = Query(default=None, alias="date")):
        day = _service_day(on)
        drivers = await _services(request).availability.available_drivers(day)
        return {"date": day.isoformat(), "drivers": drivers}

    @app.get("/admin/availability/trucks", dependencies=[Depends(require_admin_auth)])
    async def admin_available_trucks(
            request: Request,
            on: str | None = Query(default=None, alias="date"),
            truck_type: str | None = Query(default=None, alias="truckType"),
    ):
        day = _service_day(on)
        trucks = await _services(request).availability.available_trucks(day, truck_type=truck_type)
        return {"date": day.isoformat(), "trucks": trucks}

    @app.get("/admin/schedule", dependencies=[Depends(require_admin_auth)])
    async def admin_schedule(request: Request, on: str | None = Query(default=None, alias="date")):
        day = _service_day(on)
        slots = await _services(request).availability.busy_slots(day)
        return {"date": day.isoformat(), "assignments": [s.to_dict() for s in slots]}


# ============================================================================
# ADMIN ACCOUNTS
# ============================================================================

def _register_admin_account_routes(app: FastAPI) -> None:

    @app.get("/admin/admins", dependencies=[Depends(require_admin_auth)])
    async def admin_list_admins(request: Request):
        return {"admins": await _services(request).admins.list_admins()}

    @app.post("/admin/admins", status_code=201, dependencies=[Depends(require_admin_auth)])
    async def admin_create_admin(payload: dict, request: Request):
        req = _parse(AdminInput, payload)
        return await _services(request).admins.create(req.to_document())

    @app.get("/admin/admins/{admin_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_get_admin(admin_id: str, request: Request):
        row = await _services(request).admins.get(admin_id)
        if row is None:
            raise NotFoundError(f"Admin '{admin_id}' not found")
        return row

    @app.patch("/admin/admins/{admin_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_update_admin(admin_id: str, payload: dict, request: Request):
        patch = _parse(AdminPatch, payload).to_document()
        return {"ok": await _services(request).admins.update(admin_id, patch)}

    @app.delete("/admin/admins/{admin_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_delete_admin(admin_id: str, request: Request):
        return {"ok": await _services(request).admins.delete(admin_id)}


# ============================================================================
# DIRECTORY (customers / drivers / trucks)
# ============================================================================

def _register_directory_routes(app: FastAPI) -> None:

    @app.get("/admin/{collection}", dependencies=[Depends(require_admin_auth)])
    async def admin_list_rows(collection: str, request: Request):
        collection = _directory_collection(collection)
        rows = await _services(request).directory.list_rows(collection)
        return {collection: rows}

    @app.post("/admin/{collection}", status_code=201, dependencies=[Depends(require_admin_auth)])
    async def admin_create_row(collection: str, payload: dict, request: Request):
        collection = _directory_collection(collection)
        req = _parse(DIRECTORY_INPUTS[collection], payload)
        row = await _services(request).directory.create(collection, req.to_document())
        if row is None:
            raise HTTPException(status_code=409, detail=f"Could not create {collection} record")
        return row

    @app.get("/admin/{collection}/{record_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_get_row(collection: str, record_id: str, request: Request):
        collection = _directory_collection(collection)
        row = await _services(request).directory.get(collection, record_id)
        if row is None:
            raise NotFoundError(f"{collection} record '{record_id}' not found")
        return row

    @app.patch("/admin/{collection}/{record_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_update_row(collection: str, record_id: str, payload: dict, request: Request):
        collection = _directory_collection(collection)
        patch = _parse(DirectoryPatch, payload).to_document()
        ok = await _services(request).directory.update(collection, record_id, patch)
        return {"ok": ok}

    @app.delete("/admin/{collection}/{record_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_delete_row(collection: str, record_id: str, request: Request):
        collection = _directory_collection(collection)
        ok = await _services(request).directory.delete(collection, record_id)
        return {"ok": ok}


# ============================================================================
# DISPATCHES
# ============================================================================

def _register_dispatch_routes(app: FastAPI) -> None:

    @app.get("/admin/dispatches", dependencies=[Depends(require_admin_auth)])
    async def admin_list_dispatches(request: Request, status: str | None = None):
        rows = await _services(request).dispatches.list_dispatches(status)
        return {"dispatches": rows}

    @app.post("/admin/dispatches", status_code=201, dependencies=[Depends(require_admin_auth)])
    async def admin_create_dispatch(payload: dict, request: Request):
        req = _parse(CreateDispatchRequest, payload)
        result = await _services(request).workflow.create_request(req.to_document())
        return result.to_dict()

    @app.get("/admin/dispatches/{dispatch_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_get_dispatch(dispatch_id: str, request: Request):
        row = await _services(request).dispatches.get(dispatch_id)
        if row is None:
            raise NotFoundError(f"Dispatch '{dispatch_id}' not found")
        return row

    @app.post("/admin/dispatches/{dispatch_id}/transition")
    async def admin_transition_dispatch(
            dispatch_id: str,
            payload: dict,
            request: Request,
            principal: Principal = Depends(require_admin_auth),
    ):
        """Move a dispatch to ``status`` (accepted, rejected, in-progress, completed, cancelled)."""
        req = _parse(TransitionRequest, payload)
        status = DispatchStatus.parse(req.status)
        if status == DispatchStatus.ASSIGNED:
            raise HTTPException(status_code=400, detail="Use /assign to assign drivers")
        result = await _services(request).workflow.transition(
            dispatch_id, status, actor_name=principal.name or None, reason=req.reason,
        )
        return result.to_dict()

    @app.post("/admin/dispatches/{dispatch_id}/assign")
    async def admin_assign_dispatch(
            dispatch_id: str,
            payload: dict,
            request: Request,
            principal: Principal = Depends(require_admin_auth),
    ):
        req = _parse(AssignRequest, payload)
        inputs = [
            AssignmentInput(driver_id=a.driver_id, truck_id=a.truck_id, notes=a.notes)
            for a in req.assignments
        ]
        result = await _services(request).workflow.assign(
            dispatch_id, inputs, actor_name=principal.name or None,
        )
        return result.to_dict()

    @app.post(
        "/admin/dispatches/{dispatch_id}/assignments/{driver_id}/status",
        dependencies=[Depends(require_admin_auth)],
    )
    async def admin_assignment_status(dispatch_id: str, driver_id: str, payload: dict, request: Request):
        req = _parse(AssignmentStatusRequest, payload)
        result = await _services(request).workflow.update_assignment_status(
            dispatch_id, driver_id, req.status,
        )
        return result.to_dict()


# ============================================================================
# DISPATCH IMAGES
# ============================================================================

def _register_image_routes(app: FastAPI) -> None:

    @app.get("/admin/dispatches/{dispatch_id}/images", dependencies=[Depends(require_admin_auth)])
    async def admin_list_images(
            dispatch_id: str,
            request: Request,
            driver_id: str | None = None,
            grouped: bool = False,
    ):
        images = _services(request).images
        if grouped:
            return {"drivers": await images.grouped_by_driver(dispatch_id)}
        if driver_id:
            return {"images": await images.list_for_driver(dispatch_id, driver_id)}
        return {"images": await images.list_for_dispatch(dispatch_id)}

    @app.post(
        "/admin/dispatches/{dispatch_id}/images",
        status_code=201,
        dependencies=[Depends(require_admin_auth)],
    )
    async def admin_upload_image(
            dispatch_id: str,
            request: Request,
            file: UploadFile = File(...),
            driver_id: str = Form(..., alias="driverId"),
            image_type: str = Form("trip", alias="imageType"),
            notes: str | None = Form(None),
    ):
        data = await file.read()
        result = await _services(request).images.upload(
            dispatch_id,
            driver_id,
            file.filename or "image.jpg",
            data,
            content_type=file.content_type or "image/jpeg",
            image_type=image_type,
            notes=notes,
        )
        return result.to_dict()

    @app.delete("/admin/images/{image_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_delete_image(image_id: str, request: Request):
        return {"ok": await _services(request).images.delete(image_id)}


# ============================================================================
# NOTIFICATIONS
# ============================================================================

def _register_notification_routes(app: FastAPI) -> None:

    @app.get("/admin/notifications", dependencies=[Depends(require_admin_auth)])
    async def admin_notification_feed(request: Request, limit: int | None = None):
        svc = _services(request).notifications
        return {
            "notifications": await svc.list_feed(limit),
            "unread": await svc.unread_count(),
        }

    @app.post("/admin/notifications/broadcast")
    async def admin_broadcast(
            payload: dict,
            request: Request,
            principal: Principal = Depends(require_admin_auth),
    ):
        req = _parse(BroadcastRequest, payload)
        result = await _services(request).notifications.send_broadcast(
            req.to_payload(sender_id=principal.uid, sender_name=principal.name or None)
        )
        return result.to_dict()

    @app.post("/admin/notifications/read-all", dependencies=[Depends(require_admin_auth)])
    async def admin_mark_all_read(request: Request):
        return {"updated": await _services(request).notifications.mark_all_as_read()}

    @app.post("/admin/notifications/{notification_id}/read", dependencies=[Depends(require_admin_auth)])
    async def admin_mark_read(notification_id: str, request: Request):
        return {"ok": await _services(request).notifications.mark_as_read(notification_id)}

    @app.delete("/admin/notifications/{notification_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_delete_notification(notification_id: str, request: Request):
        return {"ok": await _services(request).notifications.delete(notification_id)}

    @app.get("/admin/inbox/{kind}/{recipient_id}", dependencies=[Depends(require_admin_auth)])
    async def admin_inbox(kind: str, recipient_id: str, request: Request, limit: int | None = None):
        recipient_kind = _inbox_kind(kind)
        svc = _services(request).notifications
        return {
            "notifications": await svc.list_inbox(recipient_kind, recipient_id, limit),
            "unread": await svc.unread_count(recipient_kind, recipient_id),
        }

    @app.post(
        "/admin/inbox/{kind}/{recipient_id}/{notification_id}/read",
        dependencies=[Depends(require_admin_auth)],
    )
    async def admin_inbox_mark_read(kind: str, recipient_id: str, notification_id: str, request: Request):
        recipient_kind = _inbox_kind(kind)
        ok = await _services(request).notifications.mark_as_read(
            notification_id, recipient_kind, recipient_id,
        )
        return {"ok": ok}


app = create_app()
