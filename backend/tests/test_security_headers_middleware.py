"""
Global security headers and session enforcement middleware.

Every response carries the baseline security headers; COOP is added in prod.
Non-public paths without a valid session answer 401 with private caching.
"""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore

pytestmark = pytest.mark.anyio("asyncio")


def _assert_base_headers(hdrs) -> None:
    assert "Content-Security-Policy" in hdrs
    assert hdrs.get("X-Frame-Options") == "DENY"
    assert hdrs.get("X-Content-Type-Options") == "nosniff"
    assert "Referrer-Policy" in hdrs
    assert "Permissions-Policy" in hdrs
    assert "Strict-Transport-Security" in hdrs


async def test_public_routes_include_security_headers(monkeypatch: pytest.MonkeyPatch):
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://app.localhost:8100") as c:
        health = await c.get("/health")
        courses = await c.get("/api/courses")
    assert health.status_code == 200
    assert courses.status_code == 200
    _assert_base_headers(health.headers)
    _assert_base_headers(courses.headers)
    assert "Cross-Origin-Opener-Policy" not in health.headers

    monkeypatch.setenv("ACADEMY_ENV", "prod")
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://app.localhost:8100") as c:
        prod = await c.get("/health")
    assert prod.headers.get("Cross-Origin-Opener-Policy") == "same-origin"


async def test_missing_or_unknown_session_is_401_with_headers():
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as c:
        missing = await c.get("/api/admin/courses")
        c.cookies.set(main.SESSION_COOKIE_NAME, "not-a-session")
        unknown = await c.get("/api/enrollments")
    for resp in (missing, unknown):
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthenticated"}
        assert resp.headers.get("Cache-Control") == "private, no-store"
        _assert_base_headers(resp.headers)


async def test_expired_session_is_rejected():
    sess = main.SESSION_STORE.create(sub="u-exp", name="Old", roles=["admin"], ttl_seconds=-5)
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sess.session_id)
        resp = await c.get("/api/admin/courses")
    assert resp.status_code == 401
    assert main.SESSION_STORE.get(sess.session_id) is None
