"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SECRETS_DIR = Path("/run/secrets")

DEMO_DEFAULTS = {
    "SUPABASE_URL": "http://localhost:54321",
    "SUPABASE_SERVICE_ROLE_KEY": "demo-service-role-key",
    "SUPABASE_JWT_SECRET": "demo-jwt-secret-change-me-in-production-0000",
    "AUDIT_LOG_SIGNING_KEY": "demo-audit-signing-key-change-in-production",
}


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = SECRETS_DIR / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("[settings] loaded %s from %s", secret_name, SECRETS_DIR)
                return secret_value
        except OSError as exc:
            logger.warning("[settings] failed to read %s/%s: %s", SECRETS_DIR, secret_name, exc)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _bool_env(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


def _list_env(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.environ.get(name, default).split(",") if item.strip()]


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Hosted backend
    supabase_url: str
    service_role_key: str
    jwt_secret: str
    jwt_audience: str = "authenticated"
    request_timeout: int = 10

    # Object store
    avatar_bucket: str = "avatars"

    # Roles allowed to call the admin API and issue invites
    admin_roles: list[str] = field(default_factory=lambda: ["admin", "owner"])

    # Re-allocation attempts when a badge code collides on insert
    badge_allocation_retries: int = 3

    # Public origin used for invite links
    app_base_url: str = "http://localhost:3000"

    # Audit
    audit_log_signing_key: str = ""


def _require(value: Optional[str], var_name: str, demo_mode: bool) -> str:
    """Return value, the demo default, or fail in production mode."""
    if value:
        return value
    if demo_mode:
        logger.warning("[demo-mode] using default for %s", var_name)
        return DEMO_DEFAULTS[var_name]
    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _bool_env("DEMO_MODE")

    supabase_url = _require(os.environ.get("SUPABASE_URL"), "SUPABASE_URL", demo_mode)
    service_role_key = _require(
        _load_secret_from_file("supabase_service_role_key", "SUPABASE_SERVICE_ROLE_KEY"),
        "SUPABASE_SERVICE_ROLE_KEY",
        demo_mode,
    )
    jwt_secret = _require(
        _load_secret_from_file("supabase_jwt_secret", "SUPABASE_JWT_SECRET"),
        "SUPABASE_JWT_SECRET",
        demo_mode,
    )

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = DEMO_DEFAULTS["AUDIT_LOG_SIGNING_KEY"]
    if audit_log_signing_key:
        # roster.audit resolves the key lazily from the environment
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key

    try:
        retries = max(0, int(os.environ.get("BADGE_ALLOCATION_RETRIES", "3")))
        timeout = max(1, int(os.environ.get("REQUEST_TIMEOUT", "10")))
    except ValueError as exc:
        raise RuntimeError(f"Invalid numeric setting: {exc}") from exc

    return AppConfig(
        demo_mode=demo_mode,
        supabase_url=supabase_url.rstrip("/"),
        service_role_key=service_role_key,
        jwt_secret=jwt_secret,
        jwt_audience=os.environ.get("SUPABASE_JWT_AUDIENCE", "authenticated"),
        request_timeout=timeout,
        avatar_bucket=os.environ.get("AVATAR_BUCKET", "avatars"),
        admin_roles=_list_env("ADMIN_ROLES", "admin,owner"),
        badge_allocation_retries=retries,
        app_base_url=os.environ.get("APP_BASE_URL", "http://localhost:3000").rstrip("/"),
        audit_log_signing_key=audit_log_signing_key,
    )
