"Academy course platform API"
from __future__ import annotations

import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from identity_access.stores import SessionStore

# Ensure imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via ACADEMY_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("ACADEMY_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
# Support both "flat" (container image) and package (repo test) layouts.
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

# --- App Setup ------------------------------------------------------------------

logger = logging.getLogger("academy.web")
SESSION_COOKIE_NAME = "academy_session"

app = FastAPI(title="Academy", description="Course platform backend", version="0.1.0")

from routes.audit import audit_router
from routes.catalog import catalog_router
from routes.learning import learning_router

SESSION_STORE = SessionStore()


def _environment() -> str:
    return (os.getenv("ACADEMY_ENV", "dev") or "dev").lower()


def _primary_role(roles: list[str]) -> str:
    lowered = [r.lower() for r in roles if isinstance(r, str)]
    return "admin" if "admin" in lowered else "learner"


# --- Auth Middleware ------------------------------------------------------------


def _is_public_path(path: str) -> bool:
    return path in ("/health", "/api/courses", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    # Expose minimal, read-only user context for downstream handlers.
    request.state.user = {"sub": rec.sub, "name": rec.name, "role": _primary_role(rec.roles), "roles": rec.roles}
    return await call_next(request)


# --- Security Headers Middleware ------------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault(
        "Content-Security-Policy",
        "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
    )
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if _environment() in ("prod", "production"):
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    # HSTS: always on (dev = prod)
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routers --------------------------------------------------------------------

app.include_router(catalog_router)
app.include_router(learning_router)
app.include_router(audit_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
