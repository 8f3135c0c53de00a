"""Learner API routes: enrollments, lesson progress and lesson notes."""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from learning.usecases.admin_enrollments import (
    EnrollmentAlreadyExists,
    GrantEnrollmentInput,
    GrantEnrollmentUseCase,
    ListAllEnrollmentsInput,
    ListAllEnrollmentsUseCase,
    RevokeEnrollmentInput,
    RevokeEnrollmentUseCase,
)
from learning.usecases.enrollments import (
    EnrollInput,
    EnrollUseCase,
    ListEnrollmentsInput,
    ListEnrollmentsUseCase,
)
from learning.usecases.notes import GetNoteInput, GetNoteUseCase, SaveNoteInput, SaveNoteUseCase
from learning.usecases.progress import (
    GetProgressInput,
    GetProgressUseCase,
    OutOfOrderCompletion,
    RecordProgressInput,
    RecordProgressUseCase,
)
from . import catalog as catalog_routes
from .audit import get_audit_sink
from .security import csrf_guard

learning_router = APIRouter(tags=["Learning"])
logger = logging.getLogger("academy.web.learning")


def _cache_headers() -> dict[str, str]:
    return {"Cache-Control": "private, no-store"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- In-memory persistence -------------------------------------------------------


class _Repo:
    """In-memory learner state keyed by (user_sub, course_id[, lesson_id])."""

    def __init__(self) -> None:
        self.enrollments: Dict[Tuple[str, str], str] = {}
        self.progress: Dict[Tuple[str, str, str], dict] = {}
        self.notes: Dict[Tuple[str, str, str], dict] = {}
        self._lock = threading.Lock()

    def add_enrollment(self, *, user_sub: str, course_id: str) -> Tuple[dict, bool]:
        with self._lock:
            key = (user_sub, course_id)
            created = key not in self.enrollments
            if created:
                self.enrollments[key] = _now_iso()
            return {"course_id": course_id, "started_at": self.enrollments[key]}, created

    def list_enrollments(self, *, user_sub: str) -> List[dict]:
        with self._lock:
            rows = [
                {"course_id": course_id, "started_at": started_at}
                for (sub, course_id), started_at in self.enrollments.items()
                if sub == user_sub
            ]
        return rows

    def _matching(self, user_sub: Optional[str], course_id: Optional[str]) -> List[dict]:
        rows = [
            {"user_sub": sub, "course_id": cid, "started_at": started_at}
            for (sub, cid), started_at in self.enrollments.items()
            if (not user_sub or sub == user_sub) and (not course_id or cid == course_id)
        ]
        rows.sort(key=lambda r: (r["started_at"], r["user_sub"], r["course_id"]), reverse=True)
        return rows

    def search_enrollments(
        self, *, user_sub: Optional[str], course_id: Optional[str], limit: int, offset: int
    ) -> List[dict]:
        with self._lock:
            return self._matching(user_sub, course_id)[offset: offset + limit]

    def count_enrollments(self, *, user_sub: Optional[str], course_id: Optional[str]) -> int:
        with self._lock:
            return len(self._matching(user_sub, course_id))

    def remove_enrollment(self, *, user_sub: str, course_id: str) -> bool:
        with self._lock:
            return self.enrollments.pop((user_sub, course_id), None) is not None

    def get_progress(self, *, user_sub: str, course_id: str, lesson_id: str) -> Optional[dict]:
        row = self.progress.get((user_sub, course_id, lesson_id))
        return dict(row) if row else None

    def list_completed_lesson_ids(self, *, user_sub: str, course_id: str) -> List[str]:
        with self._lock:
            return [
                lesson_id
                for (sub, cid, lesson_id), row in self.progress.items()
                if sub == user_sub and cid == course_id and row["completed"]
            ]

    def upsert_progress(
        self,
        *,
        user_sub: str,
        course_id: str,
        lesson_id: str,
        position_seconds: int,
        completed: bool,
    ) -> dict:
        with self._lock:
            key = (user_sub, course_id, lesson_id)
            existing = self.progress.get(key) or {"position_seconds": 0, "completed": False}
            row = {
                "position_seconds": max(int(existing["position_seconds"]), position_seconds),
                "completed": bool(existing["completed"]) or completed,
                "updated_at": _now_iso(),
            }
            self.progress[key] = row
            return dict(row)

    def get_note(self, *, user_sub: str, course_id: str, lesson_id: str) -> Optional[dict]:
        row = self.notes.get((user_sub, course_id, lesson_id))
        return dict(row) if row else None

    def upsert_note(self, *, user_sub: str, course_id: str, lesson_id: str, content: str) -> dict:
        with self._lock:
            row = {"content": content, "updated_at": _now_iso()}
            self.notes[(user_sub, course_id, lesson_id)] = row
            return dict(row)


try:
    from learning.repo_db import DBLearningRepo  # type: ignore
except ImportError as exc:  # pragma: no cover - psycopg missing in minimal envs
    DBLearningRepo = None  # type: ignore
    _DB_REPO_IMPORT_ERROR: Exception | None = exc
else:
    _DB_REPO_IMPORT_ERROR = None


def _build_default_repo():
    if DBLearningRepo is None:
        if _DB_REPO_IMPORT_ERROR:
            logger.warning("Learning repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return _Repo()
    try:
        return DBLearningRepo()
    except RuntimeError as exc:
        logger.warning("Learning repo unavailable (%s); using in-memory fallback", exc)
        return _Repo()


# Lazily construct the repository so that `.env` is loaded before a DSN is
# resolved. Tests can override via set_repo().
_REPO = None


def _get_repo():
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:  # pragma: no cover - used in tests
    global _REPO
    _REPO = repo


# --- Request models --------------------------------------------------------------


class EnrollPayload(BaseModel):
    course_id: object | None = None


class ProgressPayload(BaseModel):
    course_id: object | None = None
    lesson_id: object | None = None
    position_seconds: object | None = None
    completed: object | None = None


class NotePayload(BaseModel):
    course_id: object | None = None
    lesson_id: object | None = None
    content: object | None = None


class AdminEnrollmentPayload(BaseModel):
    user_sub: object | None = None
    course_id: object | None = None


def _require_user(request: Request):
    user = getattr(request.state, "user", None)
    sub = str((user or {}).get("sub") or "")
    if not sub:
        return None, JSONResponse({"error": "unauthenticated"}, status_code=401, headers=_cache_headers())
    return sub, None


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _ids(course_id: object, lesson_id: object) -> Tuple[str, str]:
    """Return canonical ids (empty when absent); ValueError when one is not a UUID."""
    out = []
    for value in (_text(course_id), _text(lesson_id)):
        if value:
            value = catalog_routes._canonical_uuid(value)
            if value is None:
                raise ValueError("invalid_ids")
        out.append(value)
    return out[0], out[1]


def _bad_request(detail: str) -> JSONResponse:
    return JSONResponse({"error": "bad_request", "detail": detail}, status_code=400, headers=_cache_headers())


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "not_found"}, status_code=404, headers=_cache_headers())


# --- Enrollments -----------------------------------------------------------------
# Use cases call blocking repos; they run in worker threads to keep the loop free.


@learning_router.get("/api/enrollments")
async def list_enrollments(request: Request):
    """List the caller's enrolled courses with completion counts.

    Behavior:
        - 200 with `{courses: [{id, slug, title, done, total, pct}]}`, oldest
          enrollment first.
    """
    sub, error = _require_user(request)
    if error:
        return error
    use_case = ListEnrollmentsUseCase(_get_repo(), catalog_routes._get_repo())
    courses = await asyncio.to_thread(use_case.execute, ListEnrollmentsInput(user_sub=sub))
    return JSONResponse({"courses": courses}, headers=_cache_headers())


@learning_router.post("/api/enrollments")
async def enroll(request: Request, payload: EnrollPayload):
    """Enroll the caller into a published course.

    Behavior:
        - 201 when the enrollment was created, 200 when it already existed.
        - 400 when `course_id` is missing; 404 for unknown or unpublished courses.
    """
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    use_case = EnrollUseCase(_get_repo(), catalog_routes._get_repo())
    try:
        enrollment, created = await asyncio.to_thread(
            use_case.execute, EnrollInput(user_sub=sub, course_id=_text(payload.course_id))
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _not_found()
    return JSONResponse(enrollment, status_code=201 if created else 200, headers=_cache_headers())


# --- Admin: enrollments ----------------------------------------------------------


@learning_router.get("/api/admin/enrollments")
async def list_admin_enrollments(
    request: Request, user_sub: str = "", course_id: str = "", page: int = 1, take: int = 20
):
    """Page through all enrollments (admin only).

    Behavior:
        - Optional filters `user_sub` and `course_id`; newest first.
        - `take` is clamped to 1..100 (default 20), `page` starts at 1.
        - 200 with `{items, total, page, pages, take}`; 400 on a malformed course id.
    """
    _, error = catalog_routes._require_admin(request)
    if error:
        return error
    course_ref = _text(course_id)
    if course_ref:
        course_ref = catalog_routes._canonical_uuid(course_ref)
        if course_ref is None:
            return _bad_request("invalid_course_id")
    use_case = ListAllEnrollmentsUseCase(_get_repo(), catalog_routes._get_repo())
    result = await asyncio.to_thread(
        use_case.execute,
        ListAllEnrollmentsInput(user_sub=_text(user_sub), course_id=course_ref, page=page, take=take),
    )
    return JSONResponse(result, headers=_cache_headers())


@learning_router.post("/api/admin/enrollments")
async def grant_admin_enrollment(request: Request, payload: AdminEnrollmentPayload):
    """Grant a learner access to a course (admin only).

    Behavior:
        - 201 with `{user_sub, course_id, started_at}`; drafts may be granted.
        - 400 when `user_sub` or `course_id` is missing; 404 unknown course;
          409 when the learner is already enrolled.
    """
    user, error = catalog_routes._require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    course_ref = _text(payload.course_id)
    use_case = GrantEnrollmentUseCase(_get_repo(), catalog_routes._get_repo(), audit=get_audit_sink())
    try:
        enrollment = await asyncio.to_thread(
            use_case.execute,
            GrantEnrollmentInput(
                user_sub=_text(payload.user_sub),
                course_id=catalog_routes._canonical_ref(course_ref) if course_ref else "",
                actor_id=catalog_routes._current_sub(user),
            ),
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _not_found()
    except EnrollmentAlreadyExists:
        return JSONResponse(
            {"error": "conflict", "detail": "already_enrolled"}, status_code=409, headers=_cache_headers()
        )
    return JSONResponse(enrollment, status_code=201, headers=_cache_headers())


@learning_router.delete("/api/admin/enrollments")
async def revoke_admin_enrollment(request: Request, payload: AdminEnrollmentPayload):
    """Revoke one enrollment identified by `{user_sub, course_id}` (204).

    Progress and notes stay in place. 400 on missing or malformed ids; 404
    when no such enrollment exists.
    """
    user, error = catalog_routes._require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    course_ref = _text(payload.course_id)
    if course_ref:
        course_ref = catalog_routes._canonical_uuid(course_ref)
        if course_ref is None:
            return _bad_request("invalid_course_id")
    use_case = RevokeEnrollmentUseCase(_get_repo(), audit=get_audit_sink())
    try:
        await asyncio.to_thread(
            use_case.execute,
            RevokeEnrollmentInput(
                user_sub=_text(payload.user_sub),
                course_id=course_ref,
                actor_id=catalog_routes._current_sub(user),
            ),
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _not_found()
    return Response(status_code=204, headers=_cache_headers())


# --- Lesson progress -------------------------------------------------------------


@learning_router.get("/api/lesson-progress")
async def get_lesson_progress(request: Request, course_id: str = "", lesson_id: str = ""):
    """Return `{position_seconds, completed, updated_at}`; defaults when absent."""
    sub, error = _require_user(request)
    if error:
        return error
    try:
        c, lesson = _ids(course_id, lesson_id)
        body = await asyncio.to_thread(
            GetProgressUseCase(_get_repo()).execute, GetProgressInput(user_sub=sub, course_id=c, lesson_id=lesson)
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    return JSONResponse(body, headers=_cache_headers())


@learning_router.post("/api/lesson-progress")
async def record_lesson_progress(request: Request, payload: ProgressPayload):
    """Upsert progress for a lesson.

    Behavior:
        - 200 with the stored progress. Position never regresses; completion
          never reverts.
        - 409 `out_of_order` when earlier lessons are not completed yet.
        - 404 when the lesson does not belong to the course.
    """
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    use_case = RecordProgressUseCase(_get_repo(), catalog_routes._get_repo())
    try:
        c, lesson = _ids(payload.course_id, payload.lesson_id)
        body = await asyncio.to_thread(
            use_case.execute,
            RecordProgressInput(
                user_sub=sub,
                course_id=c,
                lesson_id=lesson,
                position_seconds=payload.position_seconds,
                completed=payload.completed,
            ),
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _not_found()
    except OutOfOrderCompletion:
        return JSONResponse(
            {
                "error": "out_of_order",
                "detail": "complete previous lessons before marking this one complete",
            },
            status_code=409,
            headers=_cache_headers(),
        )
    return JSONResponse(body, headers=_cache_headers())


# --- Lesson notes ----------------------------------------------------------------


@learning_router.get("/api/lesson-notes")
async def get_lesson_note(request: Request, course_id: str = "", lesson_id: str = ""):
    sub, error = _require_user(request)
    if error:
        return error
    try:
        c, lesson = _ids(course_id, lesson_id)
        body = await asyncio.to_thread(
            GetNoteUseCase(_get_repo()).execute, GetNoteInput(user_sub=sub, course_id=c, lesson_id=lesson)
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    return JSONResponse(body, headers=_cache_headers())


@learning_router.post("/api/lesson-notes")
async def save_lesson_note(request: Request, payload: NotePayload):
    """Create or replace the caller's note for a lesson (max 20000 characters)."""
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    use_case = SaveNoteUseCase(_get_repo(), catalog_routes._get_repo())
    try:
        c, lesson = _ids(payload.course_id, payload.lesson_id)
        body = await asyncio.to_thread(
            use_case.execute, SaveNoteInput(user_sub=sub, course_id=c, lesson_id=lesson, content=payload.content)
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _not_found()
    return JSONResponse(body, headers=_cache_headers())
