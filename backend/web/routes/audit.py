"""Audit log endpoint and the process-wide audit sink."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from audit.log import AuditSinkProtocol, DBAuditLog, MemoryAuditLog

audit_router = APIRouter(tags=["Audit"])
logger = logging.getLogger("academy.web.audit")


def _build_default_sink() -> AuditSinkProtocol:
    try:
        return DBAuditLog()
    except RuntimeError as exc:
        logger.warning("Audit sink unavailable (%s); using in-memory fallback", exc)
        return MemoryAuditLog()


_SINK: AuditSinkProtocol | None = None


def get_audit_sink() -> AuditSinkProtocol:
    global _SINK
    if _SINK is None:
        _SINK = _build_default_sink()
    return _SINK


def set_audit_sink(sink: AuditSinkProtocol) -> None:
    """Allow tests to swap the audit sink implementation."""
    global _SINK
    _SINK = sink


def _private_response(body: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


@audit_router.get("/api/admin/audit")
async def list_audit_logs(request: Request, q: str = "", page: int = 1, take: int = 50):
    """
    Return audit records newest first.

    Behavior:
        - `take` is clamped to 1..200 (default 50); `q` matches action, entity
          or summary case-insensitively.
        - 200 with `{items, page, pages, total}`.

    Permissions:
        Caller must have the `admin` role. Everybody else receives 404 so the
        endpoint is not discoverable.
    """
    user = getattr(request.state, "user", None)
    roles = (user or {}).get("roles")
    if not isinstance(roles, list) or "admin" not in roles:
        return _private_response({"error": "not_found"}, status_code=404)
    take = max(1, min(take, 200))
    page = max(1, page)
    query = (q or "").strip()
    sink = get_audit_sink()
    total = await asyncio.to_thread(sink.count_records, q=query)
    items = await asyncio.to_thread(sink.list_records, q=query, limit=take, offset=(page - 1) * take)
    pages = max(1, -(-total // take))
    return _private_response({"items": items, "page": page, "pages": pages, "total": total}, status_code=200)
