# fleetdesk/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False  # JSON logs; forced on in prod

    # Document store backend
    # "memory"   - in-process dict store (dev, tests, demos)
    # "postgres" - JSONB documents table via asyncpg
    store_backend: Literal["memory", "postgres"] = "memory"

    # Database
    expected_schema_version: str = "001_documents.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 20
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000
    pg_idle_in_tx_timeout_ms: int = 30000

    # Security
    admin_token: str | None = None  # Machine access: Authorization: Bearer <admin_token>
    identity_signing_key: str | None = None  # HMAC key for identity tokens; falls back to admin_token
    identity_token_ttl_seconds: int = 43200  # 12 hours
    allowed_origins: list[str] = ["*"]

    # S3/Bucket Storage (dispatch images, profile photos)
    s3_endpoint_url: str | None = None  # e.g., https://s3.amazonaws.com or https://xyz.r2.cloudflarestorage.com
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_bucket_name: str | None = None
    s3_region: str = "auto"
    s3_public_url: str | None = None  # Public URL prefix for serving files (e.g., https://cdn.example.com)
    s3_force_path_style: bool = True

    # Recipient short codes
    # Identifiers shaped like a short code (prefix + up to N chars) are used
    # as storage keys directly; anything else is resolved by scanning the role.
    customer_code_prefix: str = "cust_"
    driver_code_prefix: str = "drv_"
    short_code_max_length: int = 10

    # Notifications
    notification_feed_limit: int = 100  # Max records returned by feed/inbox listings

    # Monitoring & Metrics
    enable_metrics: bool = True
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def s3_enabled(self) -> bool:
        """Check if S3 storage is configured"""
        return bool(
            self.s3_endpoint_url
            and self.s3_access_key
            and self.s3_secret_key
            and self.s3_bucket_name
        )

    @property
    def effective_signing_key(self) -> str | None:
        return self.identity_signing_key or self.admin_token

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("admin_token", self.admin_token),
            ("identity_signing_key or admin_token", self.effective_signing_key),
        ]
        if self.store_backend == "postgres":
            required_fields.append(("database_url", self.database_url))

        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.store_backend == "memory":
        warnings.append("prod: store_backend=memory (all records are lost on restart).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if not s.effective_signing_key:
        warnings.append("identity_signing_key and admin_token are empty (admin sign-in is disabled).")

    if not s.s3_enabled:
        warnings.append("S3 storage is not configured (dispatch images are kept in memory only).")
    elif not s.s3_public_url:
        warnings.append("s3_enabled=True but s3_public_url is not set (image URLs point at the raw endpoint).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
