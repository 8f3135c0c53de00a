"""
Postgres-backed repository for the catalog (courses & ordered lessons).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Returns plain dicts to keep the web adapter independent of ORM.

Ordering & concurrency:
- Lesson positions per course form a dense sequence 1..N, enforced by
  `unique (course_id, position) deferrable initially immediate`.
- Every structural mutation locks the parent course row (`for update`) for the
  duration of its transaction. This serializes insert/move/delete/reorder on
  the same course while leaving other courses unblocked.
- Bulk shifts run with the unique constraint deferred to commit so that
  intermediate row states inside a single UPDATE never trip it; the moved or
  inserted lesson is written last.
- Lock waits are bounded (`lock_timeout`); serialization failures, deadlocks
  and lock timeouts surface as `LessonOrderTransientError`, unique violations
  as `LessonOrderConflict`.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.errors import (
    DeadlockDetected,
    LockNotAvailable,
    QueryCanceled,
    SerializationFailure,
    UniqueViolation,
)
from psycopg.types.json import Json

from catalog.ordering import (
    LessonOrderConflict,
    LessonOrderTransientError,
    Shift,
    UNSET,
    next_append_position,
    plan_delete,
    plan_insert,
    plan_move,
    validate_full_order,
)
from storage.config import get_database_dsn, get_lock_timeout_ms

logger = logging.getLogger("academy.catalog.repo")

_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""

_LESSON_COLUMNS_SQL = f"""
    id::text,
    course_id::text,
    position,
    title,
    media_ref,
    {_TS.format(col="created_at")},
    {_TS.format(col="updated_at")}
"""

_COURSE_COLUMNS_SQL = f"""
    c.id::text,
    c.title,
    c.slug,
    c.description,
    c.level,
    c.duration_hours,
    c.price_inr,
    c.points,
    c.published,
    c.coming_soon,
    {_TS.format(col="c.created_at")},
    {_TS.format(col="c.updated_at")},
    (select count(*) from public.lessons l where l.course_id = c.id)
"""

_COURSE_UPDATABLE = (
    "title",
    "slug",
    "description",
    "level",
    "duration_hours",
    "price_inr",
    "points",
    "published",
    "coming_soon",
)


def _lesson_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "course_id": row[1],
        "position": int(row[2]),
        "title": row[3],
        "media_ref": row[4],
        "created_at": row[5],
        "updated_at": row[6],
    }


def _course_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "title": row[1],
        "slug": row[2],
        "description": row[3],
        "level": row[4],
        "duration_hours": int(row[5]) if row[5] is not None else None,
        "price_inr": int(row[6]) if row[6] is not None else None,
        "points": list(row[7] or []),
        "published": bool(row[8]),
        "coming_soon": bool(row[9]),
        "created_at": row[10],
        "updated_at": row[11],
        "lesson_count": int(row[12] or 0),
    }


@contextmanager
def _structural_errors(operation: str, course_id: str) -> Iterator[None]:
    """Translate driver failures of a structural mutation into domain errors."""
    try:
        yield
    except UniqueViolation as exc:
        logger.warning("Lesson %s on course %s hit a position conflict", operation, course_id)
        raise LessonOrderConflict("position_conflict") from exc
    except (SerializationFailure, DeadlockDetected, LockNotAvailable, QueryCanceled) as exc:
        logger.warning("Lesson %s on course %s not serialized (%s)", operation, course_id, exc.__class__.__name__)
        raise LessonOrderTransientError("retry") from exc
    except psycopg.OperationalError as exc:
        logger.error("Lesson %s on course %s failed: storage unavailable", operation, course_id, exc_info=True)
        raise LessonOrderTransientError("storage_unavailable") from exc


class DBCatalogRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize a Postgres-backed catalog repository.

        Parameters:
            dsn: Optional explicit DSN. When omitted, resolves from
                 ACADEMY_DATABASE_URL / DATABASE_URL.

        Behavior:
            - Raises RuntimeError when no DSN is configured so the web layer
              can fall back to the in-memory repo.
            - Does not open a connection eagerly; connections are per-call.
        """
        resolved = dsn or get_database_dsn()
        if not resolved:
            raise RuntimeError("Database DSN unavailable for DBCatalogRepo")
        self._dsn = resolved

    # --- Locking helpers -------------------------------------------------------
    @staticmethod
    def _lock_course(cur, course_id: str) -> bool:
        """Take the per-course structural lock; False when the course is missing."""
        cur.execute("select set_config('lock_timeout', %s, true)", (f"{get_lock_timeout_ms()}ms",))
        cur.execute("select id from public.courses where id = %s for update", (course_id,))
        return cur.fetchone() is not None

    @staticmethod
    def _defer_position_constraint(cur) -> None:
        cur.execute("set constraints lessons_course_id_position_key deferred")

    @staticmethod
    def _count_lessons(cur, course_id: str) -> int:
        cur.execute("select count(*) from public.lessons where course_id = %s", (course_id,))
        return int(cur.fetchone()[0])

    @staticmethod
    def _apply_shift(cur, course_id: str, shift: Shift, *, exclude_id: Optional[str] = None) -> None:
        query = "update public.lessons set position = position + %s where course_id = %s and position >= %s"
        params: List[Any] = [shift.delta, course_id, shift.lo]
        if shift.hi is not None:
            query += " and position <= %s"
            params.append(shift.hi)
        if exclude_id is not None:
            query += " and id <> %s"
            params.append(exclude_id)
        cur.execute(query, tuple(params))

    # --- Courses ----------------------------------------------------------------
    def course_exists(self, course_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select 1 from public.courses where id = %s", (course_id,))
                return cur.fetchone() is not None

    def create_course(self, **fields: Any) -> dict:
        columns = [name for name in _COURSE_UPDATABLE if name in fields]
        values = [Json(fields[name]) if name == "points" else fields[name] for name in columns]
        query = sql.SQL("insert into public.courses ({cols}) values ({vals}) returning id::text").format(
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, values)
                    course_id = cur.fetchone()[0]
                    conn.commit()
        except UniqueViolation as exc:
            raise ValueError("slug_taken") from exc
        created = self.get_course(course_id)
        if created is None:
            raise RuntimeError("courses insert returned no row")
        return created

    def get_course(self, id_or_slug: str) -> Optional[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_COURSE_COLUMNS_SQL}
                    from public.courses c
                    where c.id::text = %s or c.slug = %s
                    limit 1
                    """,
                    (id_or_slug, id_or_slug),
                )
                row = cur.fetchone()
        return _course_row_to_dict(row) if row else None

    def list_courses(self, *, q: str, limit: int, offset: int) -> List[dict]:
        pattern = f"%{q}%" if q else None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_COURSE_COLUMNS_SQL}
                    from public.courses c
                    where %s::text is null
                       or c.title ilike %s or c.slug ilike %s or coalesce(c.level, '') ilike %s
                    order by c.created_at desc, c.id
                    limit %s offset %s
                    """,
                    (pattern, pattern, pattern, pattern, limit, offset),
                )
                rows = cur.fetchall() or []
        return [_course_row_to_dict(r) for r in rows]

    def count_courses(self, *, q: str) -> int:
        pattern = f"%{q}%" if q else None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select count(*)
                    from public.courses c
                    where %s::text is null
                       or c.title ilike %s or c.slug ilike %s or coalesce(c.level, '') ilike %s
                    """,
                    (pattern, pattern, pattern, pattern),
                )
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def list_published_courses(self) -> List[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_COURSE_COLUMNS_SQL}
                    from public.courses c
                    where c.published
                    order by c.title asc, c.id
                    """
                )
                rows = cur.fetchall() or []
        return [_course_row_to_dict(r) for r in rows]

    def update_course(self, course_id: str, **fields: Any) -> Optional[dict]:
        columns = [name for name in _COURSE_UPDATABLE if name in fields]
        if not columns:
            return self.get_course(course_id)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder()) for c in columns
        )
        values = [Json(fields[name]) if name == "points" else fields[name] for name in columns]
        query = sql.SQL(
            "update public.courses set {assignments}, updated_at = now() where id = %s returning id::text"
        ).format(assignments=assignments)
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, [*values, course_id])
                    row = cur.fetchone()
                    if not row:
                        return None
                    conn.commit()
        except UniqueViolation as exc:
            raise ValueError("slug_taken") from exc
        return self.get_course(course_id)

    def delete_course(self, course_id: str) -> bool:
        """Delete a course; lessons, enrollments, progress and notes cascade."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.courses where id = %s returning id", (course_id,))
                row = cur.fetchone()
                conn.commit()
        return row is not None

    # --- Lessons ----------------------------------------------------------------
    def list_lessons(self, course_id: str) -> List[dict]:
        """Return lessons of a course ordered by `position, id`."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_LESSON_COLUMNS_SQL}
                    from public.lessons
                    where course_id = %s
                    order by position asc, id
                    """,
                    (course_id,),
                )
                rows = cur.fetchall() or []
        return [_lesson_row_to_dict(r) for r in rows]

    def get_lesson(self, course_id: str, lesson_id: str) -> Optional[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_LESSON_COLUMNS_SQL}
                    from public.lessons
                    where id = %s and course_id = %s
                    """,
                    (lesson_id, course_id),
                )
                row = cur.fetchone()
        return _lesson_row_to_dict(row) if row else None

    def append_lesson(self, course_id: str, *, title: str, media_ref: Optional[str]) -> dict:
        """Create a lesson at position N+1 under the course lock."""
        with _structural_errors("append", course_id):
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if not self._lock_course(cur, course_id):
                        raise LookupError("course_not_found")
                    next_pos = next_append_position(self._count_lessons(cur, course_id))
                    cur.execute(
                        f"""
                        insert into public.lessons (course_id, position, title, media_ref)
                        values (%s, %s, %s, %s)
                        returning {_LESSON_COLUMNS_SQL}
                        """,
                        (course_id, next_pos, title, media_ref),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise RuntimeError("lessons insert returned no row")
                    conn.commit()
        return _lesson_row_to_dict(row)

    def insert_lesson_at(self, course_id: str, position: int, *, title: str, media_ref: Optional[str]) -> dict:
        """Open a slot at `position` (siblings at or after it move +1), then insert."""
        with _structural_errors("insert", course_id):
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if not self._lock_course(cur, course_id):
                        raise LookupError("course_not_found")
                    shift = plan_insert(position, self._count_lessons(cur, course_id))
                    self._defer_position_constraint(cur)
                    self._apply_shift(cur, course_id, shift)
                    cur.execute(
                        f"""
                        insert into public.lessons (course_id, position, title, media_ref)
                        values (%s, %s, %s, %s)
                        returning {_LESSON_COLUMNS_SQL}
                        """,
                        (course_id, position, title, media_ref),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise RuntimeError("lessons insert returned no row")
                    conn.commit()
        return _lesson_row_to_dict(row)

    def update_lesson(
        self,
        course_id: str,
        lesson_id: str,
        *,
        title: Any = UNSET,
        media_ref: Any = UNSET,
        position: Any = UNSET,
    ) -> Optional[dict]:
        """Update lesson fields; a `position` moves the lesson within its course.

        Behavior:
            - Returns None when the course or lesson is not found.
            - The move target is clamped into [1, N]; equal targets only apply
              the other field updates.
            - Siblings shift first, the moved lesson is written last.
        """
        with _structural_errors("move", course_id):
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if not self._lock_course(cur, course_id):
                        return None
                    cur.execute(
                        "select position from public.lessons where id = %s and course_id = %s",
                        (lesson_id, course_id),
                    )
                    found = cur.fetchone()
                    if not found:
                        return None
                    sets: List[sql.Composable] = []
                    params: List[Any] = []
                    if position is not UNSET:
                        plan = plan_move(int(found[0]), int(position), self._count_lessons(cur, course_id))
                        if not plan.is_noop:
                            self._defer_position_constraint(cur)
                            self._apply_shift(cur, course_id, plan.shift, exclude_id=lesson_id)
                            sets.append(sql.SQL("position = %s"))
                            params.append(plan.target)
                    if title is not UNSET:
                        sets.append(sql.SQL("title = %s"))
                        params.append(title)
                    if media_ref is not UNSET:
                        sets.append(sql.SQL("media_ref = %s"))
                        params.append(media_ref)
                    sets.append(sql.SQL("updated_at = now()"))
                    query = sql.SQL(
                        "update public.lessons set {sets} where id = %s and course_id = %s returning "
                        + _LESSON_COLUMNS_SQL
                    ).format(sets=sql.SQL(", ").join(sets))
                    cur.execute(query, (*params, lesson_id, course_id))
                    row = cur.fetchone()
                    conn.commit()
        return _lesson_row_to_dict(row) if row else None

    def delete_lesson(self, course_id: str, lesson_id: str) -> bool:
        """Delete a lesson and close the gap (later siblings move -1)."""
        with _structural_errors("delete", course_id):
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if not self._lock_course(cur, course_id):
                        return False
                    cur.execute(
                        "delete from public.lessons where id = %s and course_id = %s returning position",
                        (lesson_id, course_id),
                    )
                    row = cur.fetchone()
                    if not row:
                        return False
                    self._defer_position_constraint(cur)
                    self._apply_shift(cur, course_id, plan_delete(int(row[0])))
                    conn.commit()
        return True

    def replace_lesson_order(self, course_id: str, lesson_ids: List[str]) -> List[dict]:
        """Atomically rewrite every position to the index (1-based) in `lesson_ids`.

        Behavior:
            - LookupError when the course does not exist.
            - LessonOrderConflict unless `lesson_ids` is a bijection onto the
              course's current lessons; nothing is written in that case.
        """
        with _structural_errors("reorder", course_id):
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if not self._lock_course(cur, course_id):
                        raise LookupError("course_not_found")
                    cur.execute(
                        "select id::text from public.lessons where course_id = %s order by position asc, id",
                        (course_id,),
                    )
                    existing = [r[0] for r in (cur.fetchall() or [])]
                    ordered_ids = validate_full_order(existing, lesson_ids)
                    self._defer_position_constraint(cur)
                    cur.execute(
                        """
                        with new_order as (
                          select lid, ord from unnest(%s::uuid[], %s::int[]) as t(lid, ord)
                        )
                        update public.lessons l
                        set position = n.ord,
                            updated_at = now()
                        from new_order n
                        where l.id = n.lid
                          and l.course_id = %s
                        """,
                        (ordered_ids, list(range(1, len(ordered_ids) + 1)), course_id),
                    )
                    cur.execute(
                        f"""
                        select {_LESSON_COLUMNS_SQL}
                        from public.lessons
                        where course_id = %s
                        order by position asc, id
                        """,
                        (course_id,),
                    )
                    rows = cur.fetchall() or []
                    conn.commit()
        return [_lesson_row_to_dict(r) for r in rows]

    # --- Operator maintenance ---------------------------------------------------
    def find_non_dense_courses(self) -> List[dict]:
        """Report courses whose lesson positions are not exactly 1..N."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select course_id::text,
                           count(*) as n,
                           min(position),
                           max(position),
                           count(distinct position)
                    from public.lessons
                    group by course_id
                    having min(position) <> 1
                        or max(position) <> count(*)
                        or count(distinct position) <> count(*)
                    order by course_id
                    """
                )
                rows = cur.fetchall() or []
        return [
            {"course_id": r[0], "count": int(r[1]), "min": int(r[2]), "max": int(r[3]), "distinct": int(r[4])}
            for r in rows
        ]

    def compact_positions(self, course_id: str) -> List[dict]:
        """Renumber a course's lessons to 1..N keeping their relative order."""
        with _structural_errors("compact", course_id):
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if not self._lock_course(cur, course_id):
                        raise LookupError("course_not_found")
                    self._defer_position_constraint(cur)
                    cur.execute(
                        """
                        with ordered as (
                          select id, row_number() over (order by position asc, id) as rn
                          from public.lessons
                          where course_id = %s
                        )
                        update public.lessons l
                        set position = o.rn
                        from ordered o
                        where l.id = o.id
                        """,
                        (course_id,),
                    )
                    conn.commit()
        return self.list_lessons(course_id)
