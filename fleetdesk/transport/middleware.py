# fleetdesk/transport/middleware.py
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from fleetdesk.infra.logging_config import get_logger, LogContext
from fleetdesk.infra.metrics import observe_histogram
from fleetdesk.transport.security import SecurityHeaders

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request for tracing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its status and duration"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        request_id = getattr(request.state, "request_id", "unknown")
        start_time = time.perf_counter()
        log_ctx = LogContext(logger, request_id=request_id)

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            log_ctx.error(
                f"Request failed: {request.method} {request.url.path} "
                f"error={exc.__class__.__name__} duration={duration_ms:.2f}ms",
                exc_info=True
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        log_ctx.info(
            f"{request.method} {request.url.path} "
            f"status={response.status_code} duration={duration_ms:.2f}ms"
        )
        observe_histogram("http_request_seconds", duration_ms / 1000, method=request.method)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)
