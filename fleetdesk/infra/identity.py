# fleetdesk/infra/identity.py
"""
Admin identity provider.

Admins live in the ``admins`` collection with a passlib pbkdf2_sha256
password hash. Signing in yields an HS256 JWT (``sub`` = admin id, ``exp``)
which ``current_principal`` verifies before loading the profile.
"""
from __future__ import annotations

import time
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from fleetdesk.config import settings
from fleetdesk.core.errors import PermissionDeniedError, ValidationGapError
from fleetdesk.core.ports import ADMINS, Credential, DocumentStore, Principal
from fleetdesk.core.query import where
from fleetdesk.infra.logging_config import get_logger
from fleetdesk.infra.metrics import FleetMetrics

logger = get_logger(__name__)

TOKEN_ALGORITHM = "HS256"

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    pbkdf2_sha256__rounds=310_000,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """False for a wrong password and for a stored hash passlib cannot parse."""
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        logger.warning("Stored admin password hash is malformed")
        return False


class AdminIdentityProvider:
    """IdentityProvider over the ``admins`` collection."""

    def __init__(
            self,
            store: DocumentStore,
            signing_key: str | None = None,
            ttl_seconds: int | None = None,
    ):
        self._store = store
        self._signing_key = signing_key if signing_key is not None else settings.effective_signing_key
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.identity_token_ttl_seconds

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, uid: str, now: float | None = None) -> str:
        if not self._signing_key:
            raise RuntimeError("IDENTITY_SIGNING_KEY (or ADMIN_TOKEN) required for sign-in")
        issued_at = int(now if now is not None else time.time())
        claims = {"sub": uid, "iat": issued_at, "exp": issued_at + self._ttl}
        return jwt.encode(claims, self._signing_key, algorithm=TOKEN_ALGORITHM)

    def verify_token(self, token: str) -> str | None:
        """Returns the uid for a valid, unexpired token, else None."""
        if not self._signing_key or not token:
            return None
        try:
            claims = jwt.decode(token, self._signing_key, algorithms=[TOKEN_ALGORITHM])
        except (JWTError, ValueError, TypeError):
            return None
        uid = claims.get("sub")
        return uid if isinstance(uid, str) and uid else None

    # ------------------------------------------------------------------
    # IdentityProvider
    # ------------------------------------------------------------------

    async def sign_in(self, credential: Credential) -> Principal:
        email = (credential.email or "").strip().lower()
        if not email or not credential.password:
            raise ValidationGapError("Email and password are required")

        rows = await self._store.query_records(ADMINS, [where("email", "==", email)])
        admin = rows[0] if rows else None

        if admin is None or not verify_password(credential.password, admin.get("passwordHash", "")):
            FleetMetrics.sign_in(False)
            logger.warning(f"Admin sign-in rejected: email={email}")
            raise PermissionDeniedError("Invalid email or password")

        if admin.get("status", "active") != "active":
            FleetMetrics.sign_in(False)
            raise PermissionDeniedError("Admin account is not active")

        FleetMetrics.sign_in(True)
        logger.info(f"Admin signed in: uid={admin['id']}")
        return self._principal(admin, token=self.issue_token(admin["id"]))

    async def current_principal(self, token: str) -> Optional[Principal]:
        uid = self.verify_token(token)
        if uid is None:
            return None
        profile = await self.get_profile(uid)
        if profile is None or profile.get("status", "active") != "active":
            return None
        return self._principal(profile, token=token)

    async def get_profile(self, uid: str) -> Optional[dict]:
        profile = await self._store.get_record(ADMINS, uid)
        if profile is not None:
            profile.pop("passwordHash", None)
        return profile

    @staticmethod
    def _principal(admin: dict, token: str | None) -> Principal:
        profile = {k: v for k, v in admin.items() if k != "passwordHash"}
        return Principal(
            uid=admin["id"],
            email=admin.get("email", ""),
            name=admin.get("name", ""),
            role=admin.get("role", "admin"),
            token=token,
            profile=profile,
        )
