"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and give every test a clean,
in-memory application state (catalog, learner state, audit log, sessions).
Tests that need Postgres opt in explicitly and skip when it is unreachable.
"""
import importlib
import os
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that would otherwise leak across tests.

    Behavior:
        - Default to the dev environment unless a test opts into prod.
        - Hide any configured DSN so module-level repos fall back to memory.
        - Reset proxy trust and strict CSRF switches.
    """
    for var in (
        "ACADEMY_ENV",
        "ACADEMY_TRUST_PROXY",
        "STRICT_CSRF_ADMIN",
        "ACADEMY_LOCK_TIMEOUT_MS",
        "ACADEMY_NOTE_MAX_CHARS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_app_state(monkeypatch: pytest.MonkeyPatch):
    """Swap in fresh in-memory repos, audit sink and session store per test."""
    from audit.log import MemoryAuditLog
    from identity_access.stores import SessionStore

    catalog = importlib.import_module("routes.catalog")
    learning = importlib.import_module("routes.learning")
    audit = importlib.import_module("routes.audit")
    catalog.set_repo(catalog._Repo())
    learning.set_repo(learning._Repo())
    audit.set_audit_sink(MemoryAuditLog())

    main = importlib.import_module("main")
    monkeypatch.setattr(main, "SESSION_STORE", SessionStore(), raising=False)
    yield
