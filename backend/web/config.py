"""
Configuration and startup security checks for ClearCourse Studio.

Why: A multi-tenant LMS holds learner data and takes payments. We must prevent
accidental insecure deployments while keeping local development friction-free.

Permissions: The caller needs no special privileges. Functions here only read
environment variables; `ensure_secure_config_on_startup` raises `SystemExit`
on fatal misconfiguration.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

logger = logging.getLogger("clearcourse.config")

_DUMMY_KEYS = {"", "DUMMY_DO_NOT_USE", "CHANGE_ME", "YOUR_SERVICE_ROLE_KEY"}


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config.invalid_float key=%s value=%r", key, raw)
        return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config.invalid_int key=%s value=%r", key, raw)
        return default


@dataclass(frozen=True)
class Settings:
    environment: str = "dev"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    stripe_publishable_key: str = ""
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    email_provider: str = "console"
    email_api_key: str = ""
    email_from: str = "ClearCourse Studio <noreply@clearcoursestudio.com>"
    app_base_url: str = "http://localhost:8000"
    support_email: str = "support@clearcoursestudio.com"
    datastore_backend: str = "supabase"
    sessions_backend: str = "memory"
    session_ttl_seconds: int = 3600
    profile_retry_attempts: int = 5
    profile_retry_base_delay: float = 0.25
    profile_retry_multiplier: float = 2.0

    @property
    def is_production(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build `Settings` from environment variables (or the given mapping)."""
    src: Mapping[str, str] = os.environ if env is None else env
    return Settings(
        environment=(src.get("CLEARCOURSE_ENV") or "dev").strip().lower(),
        supabase_url=(src.get("SUPABASE_URL") or "").strip(),
        supabase_anon_key=(src.get("SUPABASE_ANON_KEY") or "").strip(),
        supabase_service_role_key=(src.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        stripe_publishable_key=(src.get("STRIPE_PUBLISHABLE_KEY") or "").strip(),
        stripe_secret_key=(src.get("STRIPE_SECRET_KEY") or "").strip(),
        stripe_webhook_secret=(src.get("STRIPE_WEBHOOK_SECRET") or "").strip(),
        email_provider=(src.get("EMAIL_PROVIDER") or "console").strip().lower(),
        email_api_key=(src.get("EMAIL_API_KEY") or "").strip(),
        email_from=(src.get("EMAIL_FROM") or Settings.email_from).strip(),
        app_base_url=(src.get("APP_BASE_URL") or Settings.app_base_url).strip().rstrip("/"),
        support_email=(src.get("SUPPORT_EMAIL") or Settings.support_email).strip(),
        datastore_backend=(src.get("DATASTORE_BACKEND") or "supabase").strip().lower(),
        sessions_backend=(src.get("SESSIONS_BACKEND") or "memory").strip().lower(),
        session_ttl_seconds=_env_int(src, "SESSION_TTL_SECONDS", 3600),
        profile_retry_attempts=max(1, _env_int(src, "PROFILE_RETRY_ATTEMPTS", 5)),
        profile_retry_base_delay=max(0.0, _env_float(src, "PROFILE_RETRY_BASE_DELAY", 0.25)),
        profile_retry_multiplier=max(1.0, _env_float(src, "PROFILE_RETRY_MULTIPLIER", 2.0)),
    )


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_environment(settings: Settings) -> ValidationReport:
    """Check required variables and key formats.

    Behavior:
        - Missing Supabase URL/anon key is an error unless the in-memory
          datastore is configured.
        - A missing Stripe publishable key is an error in production and a
          warning otherwise.
        - Key/environment mismatches (test key in production, live key in
          development) and non-Supabase hosts only warn.
    """
    report = ValidationReport()
    prod = settings.is_production

    if settings.datastore_backend != "memory":
        if not settings.supabase_url:
            report.errors.append("Missing required environment variable: SUPABASE_URL")
        if not settings.supabase_anon_key:
            report.errors.append("Missing required environment variable: SUPABASE_ANON_KEY")

    if not settings.stripe_publishable_key:
        msg = "STRIPE_PUBLISHABLE_KEY is not set (payments disabled)"
        (report.errors if prod else report.warnings).append(msg)
    else:
        key = settings.stripe_publishable_key
        if not key.startswith(("pk_test_", "pk_live_")):
            report.errors.append("STRIPE_PUBLISHABLE_KEY must start with pk_test_ or pk_live_")
        elif prod and key.startswith("pk_test_"):
            report.warnings.append("Using a Stripe test key in production")
        elif not prod and key.startswith("pk_live_"):
            report.warnings.append("Using a Stripe live key in development")

    if settings.supabase_url:
        parsed = urlparse(settings.supabase_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            report.errors.append("SUPABASE_URL is not a valid URL")
        elif "supabase.co" not in parsed.netloc and parsed.hostname not in ("localhost", "127.0.0.1"):
            report.warnings.append("SUPABASE_URL does not point at a supabase.co host")

    return report


def ensure_secure_config_on_startup(settings: Optional[Settings] = None) -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Supabase service role key must be set and not a known dummy placeholder.
    - The in-memory datastore must not run in production.
    - SUPABASE_URL must use https.
    - STRIPE_SECRET_KEY must not be a test key.
    - The console e-mail provider must not run in production.
    - DATABASE_URL must not explicitly disable TLS.
    """
    settings = settings or load_settings()
    if not settings.is_production:
        return  # dev/test remain permissive

    # 1) Supabase service role key
    if settings.supabase_service_role_key.upper() in _DUMMY_KEYS:
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    # 2) No offline backend in production
    if settings.datastore_backend == "memory":
        raise SystemExit("Refusing to start: DATASTORE_BACKEND=memory is not allowed in production/staging.")

    # 3) Transport security towards the hosted backend
    if not settings.supabase_url.lower().startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")

    # 4) Payments must use live credentials
    if settings.stripe_secret_key.startswith("sk_test_"):
        raise SystemExit("Refusing to start: STRIPE_SECRET_KEY is a test key in production.")

    # 5) Transactional mail must actually be delivered
    if settings.email_provider == "console":
        raise SystemExit("Refusing to start: EMAIL_PROVIDER=console is not allowed in production/staging.")

    # 6) Postgres TLS: basic guard to avoid explicit disable
    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    report = validate_environment(settings)
    if not report.ok:
        raise SystemExit("Refusing to start: " + "; ".join(report.errors))
    for warning in report.warnings:
        logger.warning("config.warning %s", warning)


__all__ = [
    "Settings",
    "ValidationReport",
    "ensure_secure_config_on_startup",
    "load_settings",
    "validate_environment",
]
