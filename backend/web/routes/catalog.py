"""
Catalog API routes: admin course management, ordered lessons and the public
course listing.

Why:
    Admins curate courses and the order of their lessons. The adapter enforces
    authentication (middleware) and authorization (admin role) and delegates
    validation to the catalog services and persistence to an injected
    repository.

Notes:
    - Persistence: Prefers the Postgres-backed repo when a DSN is configured;
      falls back to an in-memory repo for tests/local offline work. Tests can
      call `set_repo` to override the implementation for isolation.
    - Lesson positions are dense (1..N) per course. Both repos serialize
      structural mutations per course and share the shift arithmetic in
      `catalog.ordering`.
    - Errors: 400 validation, 403 non-admin, 404 unknown, 409 ordering
      conflict, 503 retryable storage contention (with Retry-After).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import asdict, dataclass, is_dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from catalog.ordering import (
    LessonOrderConflict,
    LessonOrderTransientError,
    UNSET,
    is_dense,
    next_append_position,
    plan_delete,
    plan_insert,
    plan_move,
    validate_full_order,
)
from catalog.services.courses import CoursesService
from catalog.services.lessons import LessonsService
from .audit import get_audit_sink
from .security import csrf_guard

catalog_router = APIRouter(tags=["Catalog"])
logger = logging.getLogger("academy.web.catalog")

RETRY_AFTER_SECONDS = "1"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- In-memory persistence -------------------------------------------------------


@dataclass
class Course:
    id: str
    title: str
    slug: str
    description: str | None
    level: str | None
    duration_hours: int | None
    price_inr: int | None
    points: List[str]
    published: bool
    coming_soon: bool
    created_at: str
    updated_at: str
    lesson_count: int = 0


@dataclass
class LessonData:
    id: str
    course_id: str
    position: int
    title: str
    media_ref: str | None
    created_at: str
    updated_at: str


_COURSE_FIELDS = (
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


class _Repo:
    """Thread-safe in-memory catalog.

    `lesson_ids_by_course[course_id]` is kept sorted by position. Structural
    lesson mutations hold the course's lock for their whole duration, the
    in-process counterpart of `select ... for update` on the course row.
    """

    def __init__(self) -> None:
        self.courses: Dict[str, Course] = {}
        self.lessons: Dict[str, LessonData] = {}
        self.lesson_ids_by_course: Dict[str, List[str]] = {}
        self._course_locks: Dict[str, threading.Lock] = {}
        self._meta_lock = threading.Lock()

    def _lock_for(self, course_id: str) -> threading.Lock:
        with self._meta_lock:
            lock = self._course_locks.get(course_id)
            if lock is None:
                lock = threading.Lock()
                self._course_locks[course_id] = lock
            return lock

    def _with_count(self, course: Course) -> Course:
        return replace(course, lesson_count=len(self.lesson_ids_by_course.get(course.id, [])))

    def _resolve(self, id_or_slug: str) -> Optional[Course]:
        course = self.courses.get(id_or_slug)
        if course is not None:
            return course
        for candidate in self.courses.values():
            if candidate.slug == id_or_slug:
                return candidate
        return None

    # Courses
    def course_exists(self, course_id: str) -> bool:
        return course_id in self.courses

    def create_course(self, **fields: Any) -> Course:
        with self._meta_lock:
            if any(c.slug == fields["slug"] for c in self.courses.values()):
                raise ValueError("slug_taken")
            now = _now_iso()
            course = Course(
                id=str(uuid4()),
                title=fields["title"],
                slug=fields["slug"],
                description=fields.get("description"),
                level=fields.get("level"),
                duration_hours=fields.get("duration_hours"),
                price_inr=fields.get("price_inr"),
                points=list(fields.get("points") or []),
                published=bool(fields.get("published", False)),
                coming_soon=bool(fields.get("coming_soon", True)),
                created_at=now,
                updated_at=now,
            )
            self.courses[course.id] = course
            self.lesson_ids_by_course[course.id] = []
        return self._with_count(course)

    def get_course(self, id_or_slug: str) -> Optional[Course]:
        course = self._resolve(id_or_slug)
        return self._with_count(course) if course else None

    def _search(self, q: str) -> List[Course]:
        items = list(self.courses.values())[::-1]
        if q:
            needle = q.lower()
            items = [
                c for c in items
                if needle in c.title.lower() or needle in c.slug.lower() or needle in (c.level or "").lower()
            ]
        return items

    def list_courses(self, *, q: str, limit: int, offset: int) -> List[Course]:
        return [self._with_count(c) for c in self._search(q)[offset: offset + limit]]

    def count_courses(self, *, q: str) -> int:
        return len(self._search(q))

    def list_published_courses(self) -> List[Course]:
        published = [c for c in self.courses.values() if c.published]
        published.sort(key=lambda c: (c.title, c.id))
        return [self._with_count(c) for c in published]

    def update_course(self, course_id: str, **fields: Any) -> Optional[Course]:
        with self._meta_lock:
            course = self.courses.get(course_id)
            if course is None:
                return None
            slug = fields.get("slug")
            if slug and any(c.slug == slug and c.id != course_id for c in self.courses.values()):
                raise ValueError("slug_taken")
            for name in _COURSE_FIELDS:
                if name in fields:
                    setattr(course, name, list(fields[name]) if name == "points" else fields[name])
            course.updated_at = _now_iso()
        return self._with_count(course)

    def delete_course(self, course_id: str) -> bool:
        with self._lock_for(course_id):
            if self.courses.pop(course_id, None) is None:
                return False
            for lesson_id in self.lesson_ids_by_course.pop(course_id, []):
                self.lessons.pop(lesson_id, None)
        return True

    # Lessons
    def _ordered(self, course_id: str) -> List[LessonData]:
        return [self.lessons[lid] for lid in self.lesson_ids_by_course.get(course_id, [])]

    def _shift(self, course_id: str, shift, *, exclude_id: Optional[str] = None) -> None:
        for lesson in self._ordered(course_id):
            if lesson.id != exclude_id and shift.applies_to(lesson.position):
                lesson.position += shift.delta

    def _resort(self, course_id: str) -> None:
        ids = self.lesson_ids_by_course.get(course_id, [])
        ids.sort(key=lambda lid: (self.lessons[lid].position, lid))

    def list_lessons(self, course_id: str) -> List[LessonData]:
        return [replace(lesson) for lesson in self._ordered(course_id)]

    def get_lesson(self, course_id: str, lesson_id: str) -> Optional[LessonData]:
        lesson = self.lessons.get(lesson_id)
        if lesson is None or lesson.course_id != course_id:
            return None
        return replace(lesson)

    def _new_lesson(self, course_id: str, position: int, title: str, media_ref: Optional[str]) -> LessonData:
        now = _now_iso()
        lesson = LessonData(
            id=str(uuid4()),
            course_id=course_id,
            position=position,
            title=title,
            media_ref=media_ref,
            created_at=now,
            updated_at=now,
        )
        self.lessons[lesson.id] = lesson
        self.lesson_ids_by_course.setdefault(course_id, []).append(lesson.id)
        return lesson

    def append_lesson(self, course_id: str, *, title: str, media_ref: Optional[str]) -> LessonData:
        with self._lock_for(course_id):
            if course_id not in self.courses:
                raise LookupError("course_not_found")
            count = len(self.lesson_ids_by_course.get(course_id, []))
            lesson = self._new_lesson(course_id, next_append_position(count), title, media_ref)
            return replace(lesson)

    def insert_lesson_at(self, course_id: str, position: int, *, title: str, media_ref: Optional[str]) -> LessonData:
        with self._lock_for(course_id):
            if course_id not in self.courses:
                raise LookupError("course_not_found")
            shift = plan_insert(position, len(self.lesson_ids_by_course.get(course_id, [])))
            self._shift(course_id, shift)
            lesson = self._new_lesson(course_id, position, title, media_ref)
            self._resort(course_id)
            return replace(lesson)

    def update_lesson(
        self,
        course_id: str,
        lesson_id: str,
        *,
        title: Any = UNSET,
        media_ref: Any = UNSET,
        position: Any = UNSET,
    ) -> Optional[LessonData]:
        with self._lock_for(course_id):
            lesson = self.lessons.get(lesson_id)
            if lesson is None or lesson.course_id != course_id or course_id not in self.courses:
                return None
            if position is not UNSET:
                plan = plan_move(lesson.position, int(position), len(self.lesson_ids_by_course[course_id]))
                if not plan.is_noop:
                    self._shift(course_id, plan.shift, exclude_id=lesson_id)
                    lesson.position = plan.target
                    self._resort(course_id)
            if title is not UNSET:
                lesson.title = title
            if media_ref is not UNSET:
                lesson.media_ref = media_ref
            lesson.updated_at = _now_iso()
            return replace(lesson)

    def delete_lesson(self, course_id: str, lesson_id: str) -> bool:
        with self._lock_for(course_id):
            lesson = self.lessons.get(lesson_id)
            if lesson is None or lesson.course_id != course_id:
                return False
            del self.lessons[lesson_id]
            self.lesson_ids_by_course[course_id].remove(lesson_id)
            self._shift(course_id, plan_delete(lesson.position))
            return True

    def replace_lesson_order(self, course_id: str, lesson_ids: List[str]) -> List[LessonData]:
        with self._lock_for(course_id):
            if course_id not in self.courses:
                raise LookupError("course_not_found")
            ordered = validate_full_order(self.lesson_ids_by_course.get(course_id, []), lesson_ids)
            now = _now_iso()
            for index, lid in enumerate(ordered, start=1):
                self.lessons[lid].position = index
                self.lessons[lid].updated_at = now
            self.lesson_ids_by_course[course_id] = list(ordered)
            return self.list_lessons(course_id)

    # Operator maintenance
    def find_non_dense_courses(self) -> List[dict]:
        report = []
        for course_id in sorted(self.lesson_ids_by_course):
            positions = [lesson.position for lesson in self._ordered(course_id)]
            if positions and not is_dense(positions):
                report.append(
                    {
                        "course_id": course_id,
                        "count": len(positions),
                        "min": min(positions),
                        "max": max(positions),
                        "distinct": len(set(positions)),
                    }
                )
        return report

    def compact_positions(self, course_id: str) -> List[LessonData]:
        with self._lock_for(course_id):
            if course_id not in self.courses:
                raise LookupError("course_not_found")
            self._resort(course_id)
            for index, lesson in enumerate(self._ordered(course_id), start=1):
                lesson.position = index
            return self.list_lessons(course_id)


try:
    from catalog.repo_db import DBCatalogRepo  # type: ignore
except ImportError as exc:  # pragma: no cover - psycopg missing in minimal envs
    DBCatalogRepo = None  # type: ignore
    _DB_REPO_IMPORT_ERROR: Exception | None = exc
else:
    _DB_REPO_IMPORT_ERROR = None


def _build_default_repo():
    """Prefer the DB-backed catalog repo; fall back to in-memory if unavailable."""
    if DBCatalogRepo is None:
        if _DB_REPO_IMPORT_ERROR:
            logger.warning("Catalog repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return _Repo()
    try:
        return DBCatalogRepo()
    except RuntimeError as exc:
        logger.warning("Catalog repo unavailable (%s); using in-memory fallback", exc)
        return _Repo()


_REPO = None


def _get_repo():
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:
    """Allow tests to swap the catalog repository implementation."""
    global _REPO
    _REPO = repo


def _courses_service() -> CoursesService:
    return CoursesService(_get_repo(), audit=get_audit_sink())


def _lessons_service() -> LessonsService:
    return LessonsService(_get_repo(), audit=get_audit_sink())


# --- Request models --------------------------------------------------------------
# Loose typing throughout: validation happens in the services so that invalid
# input maps to 400 instead of FastAPI's 422.


class CourseCreatePayload(BaseModel):
    title: object | None = None
    slug: object | None = None
    description: object | None = None
    level: object | None = None
    duration_hours: object | None = None
    price_inr: object | None = None
    points: object | None = None
    published: object | None = None
    coming_soon: object | None = None


class CourseUpdatePayload(CourseCreatePayload):
    pass


class LessonCreatePayload(BaseModel):
    title: object | None = None
    position: object | None = None
    media_ref: object | None = None


class LessonUpdatePayload(BaseModel):
    title: object | None = None
    position: object | None = None
    media_ref: object | None = None


class LessonReorderPayload(BaseModel):
    lesson_ids: object | None = None


# --- Helpers ---------------------------------------------------------------------


def _role_in(user: dict | None, role: str) -> bool:
    if not user:
        return False
    roles = user.get("roles") or []
    if not isinstance(roles, list):
        return False
    return role in roles


def _current_sub(user: dict | None) -> str:
    if not user:
        return ""
    sub = user.get("sub")
    return str(sub) if sub else ""


def _require_admin(request: Request):
    """Return (user, error_response) ensuring caller has the admin role."""
    user = getattr(request.state, "user", None)
    if not _role_in(user, "admin"):
        return None, _private_error({"error": "forbidden"}, status_code=403)
    return user, None


def _is_uuid_like(value: str) -> bool:
    """Best-effort UUID format check without coercing FastAPI to return 422."""
    try:
        UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers."""
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _private_error(payload: dict, *, status_code: int, headers: dict | None = None) -> JSONResponse:
    merged = {"Cache-Control": "private, no-store"}
    if headers:
        merged.update(headers)
    return JSONResponse(content=payload, status_code=status_code, headers=merged)


def _bad_request(detail: str) -> JSONResponse:
    return _private_error({"error": "bad_request", "detail": detail}, status_code=400)


def _ordering_error(exc: Exception) -> JSONResponse:
    """Map ordering failures raised below the service to contract responses."""
    if isinstance(exc, LessonOrderTransientError):
        return _private_error(
            {"error": "service_unavailable", "detail": "retry"},
            status_code=503,
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    return _private_error({"error": "conflict", "detail": str(exc) or "conflict"}, status_code=409)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return dict(obj)
    if is_dataclass(obj):
        return asdict(obj)
    return dict(getattr(obj, "__dict__", {}))


def _serialize_course(course: Any) -> Dict[str, Any]:
    data = _as_dict(course)
    return {
        "id": data.get("id"),
        "title": data.get("title"),
        "slug": data.get("slug"),
        "description": data.get("description"),
        "level": data.get("level"),
        "duration_hours": data.get("duration_hours"),
        "price_inr": data.get("price_inr"),
        "points": list(data.get("points") or []),
        "published": bool(data.get("published")),
        "coming_soon": bool(data.get("coming_soon")),
        "lesson_count": int(data.get("lesson_count") or 0),
        "created_at": data.get("created_at"),
        "updated_at": data.get("updated_at"),
    }


def _serialize_public_course(course: Any) -> Dict[str, Any]:
    data = _serialize_course(course)
    for internal in ("published", "created_at", "updated_at"):
        data.pop(internal, None)
    return data


def _serialize_lesson(lesson: Any) -> Dict[str, Any]:
    data = _as_dict(lesson)
    return {
        "id": data.get("id"),
        "course_id": data.get("course_id"),
        "position": data.get("position"),
        "title": data.get("title"),
        "media_ref": data.get("media_ref"),
        "created_at": data.get("created_at"),
        "updated_at": data.get("updated_at"),
    }


def _canonical_uuid(value: object) -> Optional[str]:
    """Return the lower-case canonical form of a UUID string, or None if malformed."""
    if not isinstance(value, str) or not _is_uuid_like(value):
        return None
    return str(UUID(value))


def _canonical_ref(id_or_slug: str) -> str:
    return _canonical_uuid(id_or_slug) or id_or_slug


def _canonical_uuid_list(values: object) -> object:
    """Lower-case canonical UUID strings so ids compare equal across repos."""
    if not isinstance(values, list):
        return values
    out = []
    for value in values:
        canonical = _canonical_uuid(value)
        if canonical is None:
            raise ValueError("invalid_lesson_ids")
        out.append(canonical)
    return out


# --- Public routes ---------------------------------------------------------------


@catalog_router.get("/api/courses")
async def list_public_courses():
    """List published courses ordered by title (no authentication required)."""
    items = await asyncio.to_thread(_courses_service().list_published_courses)
    return JSONResponse(content=[_serialize_public_course(c) for c in items], status_code=200)


# --- Admin: courses --------------------------------------------------------------


@catalog_router.get("/api/admin/courses")
async def list_admin_courses(request: Request, q: str = "", page: int = 1, take: int = 20):
    """Paginated course list for admins.

    Behavior:
        - `take` is clamped to 1..100 (default 20), `page` starts at 1.
        - `q` searches title, slug and level case-insensitively.
        - 200 with `{items, total, page, pages, take}`.
    """
    _, error = _require_admin(request)
    if error:
        return error
    result = await asyncio.to_thread(_courses_service().list_courses, q=q, page=page, take=take)
    result["items"] = [_serialize_course(c) for c in result["items"]]
    return _json_private(result)


@catalog_router.post("/api/admin/courses")
async def create_admin_course(request: Request, payload: CourseCreatePayload):
    """Create a course (admin only).

    Behavior:
        - 201 with the created course (unpublished, `coming_soon` by default).
        - 400 when title or slug are missing or invalid.
        - 409 when the slug is already taken.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    fields = payload.model_dump(mode="python", exclude_unset=True)
    try:
        course = await asyncio.to_thread(_courses_service().create_course, fields, actor_id=_current_sub(user))
    except ValueError as exc:
        if str(exc) == "slug_taken":
            return _private_error({"error": "conflict", "detail": "slug_taken"}, status_code=409)
        return _bad_request(str(exc))
    logger.info("Course created id=%s", _as_dict(course).get("id"))
    return _json_private(_serialize_course(course), status_code=201)


@catalog_router.get("/api/admin/courses/{id_or_slug}")
async def get_admin_course(request: Request, id_or_slug: str):
    """Return one course (by id or slug) including its ordered lessons."""
    _, error = _require_admin(request)
    if error:
        return error
    try:
        course = await asyncio.to_thread(_courses_service().get_course, _canonical_ref(id_or_slug))
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    body = _serialize_course(course)
    lessons = await asyncio.to_thread(_get_repo().list_lessons, body["id"])
    body["lessons"] = [_serialize_lesson(lesson) for lesson in lessons]
    return _json_private(body)


@catalog_router.patch("/api/admin/courses/{id_or_slug}")
async def update_admin_course(request: Request, id_or_slug: str, payload: CourseUpdatePayload):
    """Partially update a course.

    Behavior:
        - 200 with the updated course.
        - 400 on empty payload or invalid fields; 404 unknown; 409 slug taken.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    fields = payload.model_dump(mode="python", exclude_unset=True)
    try:
        course = await asyncio.to_thread(
            _courses_service().update_course, _canonical_ref(id_or_slug), fields, actor_id=_current_sub(user)
        )
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    except ValueError as exc:
        if str(exc) == "slug_taken":
            return _private_error({"error": "conflict", "detail": "slug_taken"}, status_code=409)
        return _bad_request(str(exc))
    return _json_private(_serialize_course(course))


@catalog_router.delete("/api/admin/courses/{id_or_slug}")
async def delete_admin_course(request: Request, id_or_slug: str):
    """Delete a course and its lessons (204)."""
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    try:
        await asyncio.to_thread(
            _courses_service().delete_course, _canonical_ref(id_or_slug), actor_id=_current_sub(user)
        )
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


# --- Admin: lessons --------------------------------------------------------------
# Repos block on row locks (psycopg) or per-course mutexes (in-memory); every call
# runs in a worker thread so a mutation waiting on one course never stalls another.


@catalog_router.get("/api/admin/courses/{course_id}/lessons")
async def list_lessons(request: Request, course_id: str):
    """List a course's lessons ordered by position."""
    _, error = _require_admin(request)
    if error:
        return error
    cid = _canonical_uuid(course_id)
    if cid is None:
        return _bad_request("invalid_course_id")
    try:
        items = await asyncio.to_thread(_lessons_service().list_lessons, cid)
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    return _json_private([_serialize_lesson(lesson) for lesson in items])


@catalog_router.post("/api/admin/courses/{course_id}/lessons")
async def create_lesson(request: Request, course_id: str, payload: LessonCreatePayload):
    """Create a lesson; appends without `position`, otherwise inserts there.

    Behavior:
        - 201 with the created lesson.
        - Insert shifts every sibling at or after `position` by one.
        - 400 on invalid title/position (or a position beyond N+1).
        - 404 unknown course; 409 conflict; 503 retryable contention.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    cid = _canonical_uuid(course_id)
    if cid is None:
        return _bad_request("invalid_course_id")
    try:
        lesson = await asyncio.to_thread(
            _lessons_service().create_lesson,
            cid,
            title=payload.title,
            position=payload.position,
            media_ref=payload.media_ref,
            actor_id=_current_sub(user),
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    except (LessonOrderConflict, LessonOrderTransientError) as exc:
        return _ordering_error(exc)
    return _json_private(_serialize_lesson(lesson), status_code=201)


@catalog_router.get("/api/admin/courses/{course_id}/lessons/{lesson_id}")
async def get_lesson(request: Request, course_id: str, lesson_id: str):
    _, error = _require_admin(request)
    if error:
        return error
    cid, lid = _canonical_uuid(course_id), _canonical_uuid(lesson_id)
    if cid is None or lid is None:
        return _bad_request("invalid_path_params")
    try:
        lesson = await asyncio.to_thread(_lessons_service().get_lesson, cid, lid)
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    return _json_private(_serialize_lesson(lesson))


@catalog_router.patch("/api/admin/courses/{course_id}/lessons/{lesson_id}")
async def update_lesson(request: Request, course_id: str, lesson_id: str, payload: LessonUpdatePayload):
    """Update a lesson and optionally move it within its course.

    Behavior:
        - 200 with the updated lesson.
        - `position` is clamped into [1, N]; siblings between the old and new
          slot shift by one.
        - 400 on empty payload or invalid fields; 404 unknown; 409/503 as for
          other structural mutations.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    cid, lid = _canonical_uuid(course_id), _canonical_uuid(lesson_id)
    if cid is None or lid is None:
        return _bad_request("invalid_path_params")
    updates = payload.model_dump(mode="python", exclude_unset=True)
    try:
        lesson = await asyncio.to_thread(
            _lessons_service().update_lesson,
            cid,
            lid,
            title=updates.get("title", UNSET),
            media_ref=updates.get("media_ref", UNSET),
            position=updates.get("position", UNSET),
            actor_id=_current_sub(user),
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    except (LessonOrderConflict, LessonOrderTransientError) as exc:
        return _ordering_error(exc)
    return _json_private(_serialize_lesson(lesson))


@catalog_router.delete("/api/admin/courses/{course_id}/lessons/{lesson_id}")
async def delete_lesson(request: Request, course_id: str, lesson_id: str):
    """Delete a lesson; later siblings move up by one (204)."""
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    cid, lid = _canonical_uuid(course_id), _canonical_uuid(lesson_id)
    if cid is None or lid is None:
        return _bad_request("invalid_path_params")
    try:
        await asyncio.to_thread(_lessons_service().delete_lesson, cid, lid, actor_id=_current_sub(user))
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    except (LessonOrderConflict, LessonOrderTransientError) as exc:
        return _ordering_error(exc)
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


@catalog_router.post("/api/admin/courses/{course_id}/lessons/reorder")
async def reorder_lessons(request: Request, course_id: str, payload: LessonReorderPayload):
    """Replace the complete lesson order of a course.

    Behavior:
        - 200 with the ordered list; position = index + 1.
        - 400 when `lesson_ids` is not a non-empty array of UUIDs.
        - 409 unless the ids are exactly the course's current lessons.
        - 404 unknown course; 503 retryable contention.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    cid = _canonical_uuid(course_id)
    if cid is None:
        return _bad_request("invalid_course_id")
    try:
        ids = _canonical_uuid_list(payload.lesson_ids)
        ordered = await asyncio.to_thread(
            _lessons_service().reorder_lessons, cid, ids, actor_id=_current_sub(user)
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    except LookupError:
        return _private_error({"error": "not_found"}, status_code=404)
    except (LessonOrderConflict, LessonOrderTransientError) as exc:
        return _ordering_error(exc)
    return _json_private([_serialize_lesson(lesson) for lesson in ordered])
