"""Postgres-backed repository for the learner area (enrollments, progress, notes)."""

from __future__ import annotations

from typing import List, Optional, Tuple

import psycopg

from storage.config import get_database_dsn

_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""


class DBLearningRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        resolved = dsn or get_database_dsn()
        if not resolved:
            raise RuntimeError("Database DSN unavailable for DBLearningRepo")
        self._dsn = resolved

    # --- Enrollments ------------------------------------------------------------
    def add_enrollment(self, *, user_sub: str, course_id: str) -> Tuple[dict, bool]:
        """Insert the enrollment unless present; returns (row, created)."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.enrollments (user_sub, course_id)
                    values (%s, %s)
                    on conflict (user_sub, course_id) do nothing
                    returning course_id::text, {_TS.format(col="started_at")}
                    """,
                    (user_sub, course_id),
                )
                row = cur.fetchone()
                created = row is not None
                if row is None:
                    cur.execute(
                        f"""
                        select course_id::text, {_TS.format(col="started_at")}
                        from public.enrollments
                        where user_sub = %s and course_id = %s
                        """,
                        (user_sub, course_id),
                    )
                    row = cur.fetchone()
                conn.commit()
        if row is None:
            raise RuntimeError("enrollment upsert returned no row")
        return {"course_id": row[0], "started_at": row[1]}, created

    def list_enrollments(self, *, user_sub: str) -> List[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select course_id::text, {_TS.format(col="started_at")}
                    from public.enrollments
                    where user_sub = %s
                    order by started_at asc, course_id
                    """,
                    (user_sub,),
                )
                rows = cur.fetchall() or []
        return [{"course_id": r[0], "started_at": r[1]} for r in rows]

    @staticmethod
    def _enrollment_filter(user_sub: Optional[str], course_id: Optional[str]) -> Tuple[str, list]:
        clauses, params = [], []
        if user_sub:
            clauses.append("user_sub = %s")
            params.append(user_sub)
        if course_id:
            clauses.append("course_id = %s")
            params.append(course_id)
        where = ("where " + " and ".join(clauses)) if clauses else ""
        return where, params

    def search_enrollments(
        self, *, user_sub: Optional[str], course_id: Optional[str], limit: int, offset: int
    ) -> List[dict]:
        """Admin listing across learners, newest enrollment first."""
        where, params = self._enrollment_filter(user_sub, course_id)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select user_sub, course_id::text, {_TS.format(col="started_at")}
                    from public.enrollments
                    {where}
                    order by started_at desc, user_sub, course_id
                    limit %s offset %s
                    """,
                    (*params, int(limit), int(offset)),
                )
                rows = cur.fetchall() or []
        return [{"user_sub": r[0], "course_id": r[1], "started_at": r[2]} for r in rows]

    def count_enrollments(self, *, user_sub: Optional[str], course_id: Optional[str]) -> int:
        where, params = self._enrollment_filter(user_sub, course_id)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select count(*) from public.enrollments {where}", tuple(params))
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def remove_enrollment(self, *, user_sub: str, course_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    delete from public.enrollments
                    where user_sub = %s and course_id = %s
                    returning course_id::text
                    """,
                    (user_sub, course_id),
                )
                row = cur.fetchone()
                conn.commit()
        return row is not None

    # --- Progress ---------------------------------------------------------------
    def get_progress(self, *, user_sub: str, course_id: str, lesson_id: str) -> Optional[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select position_seconds, completed, {_TS.format(col="updated_at")}
                    from public.lesson_progress
                    where user_sub = %s and course_id = %s and lesson_id = %s
                    """,
                    (user_sub, course_id, lesson_id),
                )
                row = cur.fetchone()
        if not row:
            return None
        return {"position_seconds": int(row[0]), "completed": bool(row[1]), "updated_at": row[2]}

    def list_completed_lesson_ids(self, *, user_sub: str, course_id: str) -> List[str]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select lesson_id::text
                    from public.lesson_progress
                    where user_sub = %s and course_id = %s and completed
                    """,
                    (user_sub, course_id),
                )
                rows = cur.fetchall() or []
        return [r[0] for r in rows]

    def upsert_progress(
        self,
        *,
        user_sub: str,
        course_id: str,
        lesson_id: str,
        position_seconds: int,
        completed: bool,
    ) -> dict:
        """Upsert progress; position only grows and completion is sticky."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.lesson_progress (user_sub, course_id, lesson_id, position_seconds, completed)
                    values (%s, %s, %s, %s, %s)
                    on conflict (user_sub, course_id, lesson_id) do update
                    set position_seconds = greatest(public.lesson_progress.position_seconds, excluded.position_seconds),
                        completed = public.lesson_progress.completed or excluded.completed,
                        updated_at = now()
                    returning position_seconds, completed, {_TS.format(col="updated_at")}
                    """,
                    (user_sub, course_id, lesson_id, position_seconds, completed),
                )
                row = cur.fetchone()
                conn.commit()
        if row is None:
            raise RuntimeError("lesson_progress upsert returned no row")
        return {"position_seconds": int(row[0]), "completed": bool(row[1]), "updated_at": row[2]}

    # --- Notes ------------------------------------------------------------------
    def get_note(self, *, user_sub: str, course_id: str, lesson_id: str) -> Optional[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select content, {_TS.format(col="updated_at")}
                    from public.lesson_notes
                    where user_sub = %s and course_id = %s and lesson_id = %s
                    """,
                    (user_sub, course_id, lesson_id),
                )
                row = cur.fetchone()
        return {"content": row[0], "updated_at": row[1]} if row else None

    def upsert_note(self, *, user_sub: str, course_id: str, lesson_id: str, content: str) -> dict:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.lesson_notes (user_sub, course_id, lesson_id, content)
                    values (%s, %s, %s, %s)
                    on conflict (user_sub, course_id, lesson_id) do update
                    set content = excluded.content,
                        updated_at = now()
                    returning content, {_TS.format(col="updated_at")}
                    """,
                    (user_sub, course_id, lesson_id, content),
                )
                row = cur.fetchone()
                conn.commit()
        if row is None:
            raise RuntimeError("lesson_notes upsert returned no row")
        return {"content": row[0], "updated_at": row[1]}
