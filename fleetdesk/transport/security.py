# fleetdesk/transport/security.py
"""
Admin authentication and response hardening.

Two bearer credentials are accepted on admin routes:
- the static ADMIN_TOKEN (scripts, service-to-service)
- an identity token issued by ``POST /auth/login``

Tokens are compared in constant time and never logged.
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fleetdesk.config import settings
from fleetdesk.core.ports import Principal
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

# Security scheme for OpenAPI docs - shows "Authorize" button
bearer_scheme = HTTPBearer(
    scheme_name="Admin Token",
    description="ADMIN_TOKEN or an identity token from /auth/login",
    auto_error=False,
)

SERVICE_PRINCIPAL = Principal(uid="service", email="", name="Service token", role="service")


def _is_admin_token(token: str) -> bool:
    return bool(settings.admin_token) and hmac.compare_digest(token, settings.admin_token)


async def require_admin_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """
    Resolve the caller of an admin route.

    Usage:
        @app.get("/admin/endpoint")
        async def admin_endpoint(principal: Principal = Depends(require_admin_auth)):
            ...
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    if _is_admin_token(token):
        return SERVICE_PRINCIPAL

    identity = request.app.state.services.backend.identity
    principal = await identity.current_principal(token)
    if principal is not None:
        request.state.principal = principal
        return principal

    logger.warning("Admin auth failed: invalid or expired token", extra={"path": request.url.path})
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )


class SecurityHeaders:
    """OWASP recommended headers for a JSON API."""

    @staticmethod
    def add_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"

        return response


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """Detailed messages in dev, generic ones in production."""
    if not is_production:
        return str(error)

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "TransientIOError": "Service temporarily unavailable",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }
    return generic_messages.get(type(error).__name__, "An error occurred")
