"""
Centralized persistence configuration for Academy.

Intent:
    Provide a single source of truth for the database DSN and the small set of
    numeric limits used by the catalog, learning and audit contexts. Prevents
    drift across repositories and enables simple testing.

Behavior:
    - get_database_dsn() reads ACADEMY_DATABASE_URL, then DATABASE_URL. Returns
      None when neither is set so callers can fall back to in-memory repos.
    - get_lock_timeout_ms() bounds how long a structural lesson mutation waits
      for the per-course lock before failing as a retryable error.
    - get_note_max_chars() caps learner note size.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
from typing import Optional


LOCK_TIMEOUT_MS_DEFAULT = 5000
NOTE_MAX_CHARS_DEFAULT = 20000


def get_database_dsn() -> Optional[str]:
    """Return the configured Postgres DSN or None.

    Env:
        ACADEMY_DATABASE_URL – preferred; otherwise DATABASE_URL.
    """
    for var in ("ACADEMY_DATABASE_URL", "DATABASE_URL"):
        value = (os.getenv(var) or "").strip()
        if value:
            return value
    return None


__all__ = [
    "LOCK_TIMEOUT_MS_DEFAULT",
    "NOTE_MAX_CHARS_DEFAULT",
    "get_database_dsn",
]

# --- Numeric limits -------------------------------------------------------------

def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_lock_timeout_ms() -> int:
    """Maximum wait for the per-course lock (default 5s, clamped to 60s)."""
    return _parse_int_env("ACADEMY_LOCK_TIMEOUT_MS", LOCK_TIMEOUT_MS_DEFAULT, contract_max=60_000)


def get_note_max_chars() -> int:
    """Maximum lesson note length (default/clamped 20000 characters)."""
    return _parse_int_env("ACADEMY_NOTE_MAX_CHARS", NOTE_MAX_CHARS_DEFAULT, contract_max=NOTE_MAX_CHARS_DEFAULT)


__all__ += [
    "get_lock_timeout_ms",
    "get_note_max_chars",
]
