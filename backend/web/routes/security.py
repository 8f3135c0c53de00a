"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the same-origin check and the CSRF guard used by the catalog, learner
and audit adapters. Keeping a single implementation avoids security drift.
"""
from __future__ import annotations

import os
from typing import Tuple
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> Tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _parse_server(request: Request) -> Tuple[str, str, int]:
    """Return (scheme, host, port) the client believes it is talking to.

    X-Forwarded-* headers are only honored when ACADEMY_TRUST_PROXY=true.
    """
    trust_proxy = (os.getenv("ACADEMY_TRUST_PROXY", "false") or "").lower() == "true"
    if not trust_proxy:
        scheme = (request.url.scheme or "http").lower()
        host = (request.url.hostname or "").lower()
        port = int(request.url.port) if request.url.port else _default_port(scheme)
        return scheme, host, port

    xf_proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "").split(",")[0].strip()
    xf_host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
    scheme = (xf_proto or request.url.scheme or "http").lower()
    if ":" in xf_host:
        host_only, port_str = xf_host.rsplit(":", 1)
        host = host_only.lower()
        try:
            port = int(port_str)
        except ValueError:
            port = _default_port(scheme)
    else:
        host = (xf_host or (request.url.hostname or "")).lower()
        port = int(request.url.port) if request.url.port else _default_port(scheme)
    xf_port = (request.headers.get("x-forwarded-port") or "").split(",")[0].strip()
    if xf_port:
        try:
            port = int(xf_port)
        except ValueError:
            port = _default_port(scheme)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def _strict_csrf_enabled() -> bool:
    prod_env = (os.getenv("ACADEMY_ENV", "dev") or "").lower() in {"prod", "production"}
    strict_toggle = (os.getenv("STRICT_CSRF_ADMIN", "false") or "").lower() == "true"
    return prod_env or strict_toggle


def csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    Behavior:
        - In production or when STRICT_CSRF_ADMIN=true, require that either
          Origin or Referer is present AND same-origin. Missing or foreign
          headers result in 403 with detail=csrf_violation.
        - Otherwise fall back to best-effort `_is_same_origin`, which permits
          requests without these headers (server-to-server calls).
    """
    if _strict_csrf_enabled():
        origin_present = request.headers.get("origin") or request.headers.get("referer")
        if not origin_present or not _is_same_origin(request):
            return JSONResponse(
                {"error": "forbidden", "detail": "csrf_violation"},
                status_code=403,
                headers={"Cache-Control": "private, no-store"},
            )
        return None
    if not _is_same_origin(request):
        return JSONResponse(
            {"error": "forbidden", "detail": "csrf_violation"},
            status_code=403,
            headers={"Cache-Control": "private, no-store"},
        )
    return None
