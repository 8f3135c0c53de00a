"""
Audit trail for sensitive admin operations.

Why:
    Admins change shared catalog data (courses, lesson order). Each change is
    recorded as `{action, entity, summary, payload, actor_id, created_at}` so
    operators can reconstruct who did what.

Behavior:
    - `write_audit_log` never raises. A failing sink is logged and reported via
      the boolean return value; the primary mutation has already committed and
      must not be rolled back because the trail is unavailable.
    - Two sinks: `DBAuditLog` (Postgres `public.audit_logs`) and
      `MemoryAuditLog` for tests and offline development.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol
from uuid import uuid4

import psycopg
from psycopg.types.json import Json

from storage.config import get_database_dsn

logger = logging.getLogger("academy.audit")


@dataclass
class AuditRecord:
    id: str
    action: str
    entity: str
    summary: Optional[str]
    payload: Any
    actor_id: Optional[str]
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class AuditSinkProtocol(Protocol):
    def record(self, *, action: str, entity: str, summary: Optional[str], payload: Any, actor_id: Optional[str]) -> None:
        ...

    def list_records(self, *, q: str, limit: int, offset: int) -> List[dict]:
        ...

    def count_records(self, *, q: str) -> int:
        ...


def _matches(rec: AuditRecord, q: str) -> bool:
    needle = q.lower()
    return any(needle in (value or "").lower() for value in (rec.action, rec.entity, rec.summary))


class MemoryAuditLog:
    def __init__(self) -> None:
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def record(self, *, action: str, entity: str, summary: Optional[str], payload: Any, actor_id: Optional[str]) -> None:
        rec = AuditRecord(
            id=str(uuid4()),
            action=action,
            entity=entity,
            summary=summary,
            payload=payload,
            actor_id=actor_id,
        )
        with self._lock:
            self._records.append(rec)

    def _filtered(self, q: str) -> List[AuditRecord]:
        with self._lock:
            items = list(self._records)
        if q:
            items = [r for r in items if _matches(r, q)]
        # newest first; append order breaks ties within the same timestamp
        return list(reversed(items))

    def list_records(self, *, q: str, limit: int, offset: int) -> List[dict]:
        items = self._filtered(q)[offset: offset + limit]
        return [
            {
                "id": r.id,
                "action": r.action,
                "entity": r.entity,
                "summary": r.summary,
                "payload": r.payload,
                "actor_id": r.actor_id,
                "created_at": r.created_at,
            }
            for r in items
        ]

    def count_records(self, *, q: str) -> int:
        return len(self._filtered(q))


class DBAuditLog:
    """Postgres-backed audit sink. Each write uses its own short transaction."""

    def __init__(self, dsn: Optional[str] = None) -> None:
        resolved = dsn or get_database_dsn()
        if not resolved:
            raise RuntimeError("Database DSN unavailable for DBAuditLog")
        self._dsn = resolved

    def record(self, *, action: str, entity: str, summary: Optional[str], payload: Any, actor_id: Optional[str]) -> None:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.audit_logs (action, entity, summary, payload, actor_id)
                    values (%s, %s, %s, %s, %s)
                    """,
                    (action, entity, summary, Json(payload) if payload is not None else None, actor_id),
                )
                conn.commit()

    def list_records(self, *, q: str, limit: int, offset: int) -> List[dict]:
        pattern = f"%{q}%" if q else None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select id::text,
                           action,
                           entity,
                           summary,
                           payload,
                           actor_id,
                           to_char(created_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')
                    from public.audit_logs
                    where %s::text is null
                       or action ilike %s or entity ilike %s or coalesce(summary, '') ilike %s
                    order by created_at desc, id desc
                    limit %s offset %s
                    """,
                    (pattern, pattern, pattern, pattern, limit, offset),
                )
                rows = cur.fetchall() or []
        return [
            {
                "id": r[0],
                "action": r[1],
                "entity": r[2],
                "summary": r[3],
                "payload": r[4],
                "actor_id": r[5],
                "created_at": r[6],
            }
            for r in rows
        ]

    def count_records(self, *, q: str) -> int:
        pattern = f"%{q}%" if q else None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select count(*)
                    from public.audit_logs
                    where %s::text is null
                       or action ilike %s or entity ilike %s or coalesce(summary, '') ilike %s
                    """,
                    (pattern, pattern, pattern, pattern),
                )
                row = cur.fetchone()
        return int(row[0]) if row else 0


def write_audit_log(
    sink: Optional[AuditSinkProtocol],
    *,
    action: str,
    entity: str,
    summary: Optional[str] = None,
    payload: Any = None,
    actor_id: Optional[str] = None,
) -> bool:
    """Record an audit entry, returning False instead of raising on failure."""
    if sink is None:
        return False
    try:
        sink.record(action=action, entity=entity, summary=summary, payload=payload, actor_id=actor_id)
    except Exception as exc:
        logger.warning("Audit write failed for %s/%s: %s", entity, action, exc.__class__.__name__)
        return False
    return True


__all__ = [
    "AuditRecord",
    "AuditSinkProtocol",
    "MemoryAuditLog",
    "DBAuditLog",
    "write_audit_log",
]
