"""
Configuration and startup security checks for Academy.

Why: Admins manage paid course content and learners' progress. We must prevent
accidental insecure deployments without burdening local development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - A database DSN must be configured (in-memory repos lose all data on
      restart and are not shared between workers).
    - The DSN must not explicitly disable TLS.
    """

    env = os.getenv("ACADEMY_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Persistence must be real
    dsn = (os.getenv("ACADEMY_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if not dsn:
        raise SystemExit(
            "Refusing to start: ACADEMY_DATABASE_URL/DATABASE_URL is unset in production."
        )

    # 2) Postgres TLS: basic guard to avoid explicit disable
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: database DSN contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

