"""Course administration service.

Normalizes admin input for courses (slug format, level enum, non-negative
integers, bullet points) and records audit entries for every mutation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from audit.log import AuditSinkProtocol, write_audit_log


class CoursesRepoProtocol(Protocol):
    def create_course(self, **fields: Any) -> Any:
        ...

    def get_course(self, id_or_slug: str) -> Optional[Any]:
        ...

    def list_courses(self, *, q: str, limit: int, offset: int) -> List[Any]:
        ...

    def count_courses(self, *, q: str) -> int:
        ...

    def list_published_courses(self) -> List[Any]:
        ...

    def update_course(self, course_id: str, **fields: Any) -> Optional[Any]:
        ...

    def delete_course(self, course_id: str) -> bool:
        ...


_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
LEVELS = ("Beginner", "Intermediate", "Advanced")


def _normalize_title(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_title")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > 200:
        raise ValueError("invalid_title")
    return trimmed


def _normalize_slug(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_slug")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > 120 or not _SLUG_RE.match(trimmed):
        raise ValueError("invalid_slug")
    return trimmed


def _optional_text(value: object, *, detail: str, max_length: int = 5000) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(detail)
    trimmed = value.strip()
    if len(trimmed) > max_length:
        raise ValueError(detail)
    return trimmed or None


def _normalize_level(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    if value not in LEVELS:
        raise ValueError("invalid_level")
    return str(value)


def _optional_non_negative_int(value: object, *, detail: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(detail)
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(detail) from exc
    if number < 0:
        raise ValueError(detail)
    return number


def parse_points(value: object) -> List[str]:
    """Accept a list of strings or a newline-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.split("\n") if line.strip()]
    if isinstance(value, list):
        out: List[str] = []
        for item in value:
            if not isinstance(item, (str, int, float)) or isinstance(item, bool):
                raise ValueError("invalid_points")
            text = str(item).strip()
            if text:
                out.append(text)
        return out
    raise ValueError("invalid_points")


def _normalize_bool(value: object, *, detail: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(detail)
    return value


_NORMALIZERS = {
    "title": _normalize_title,
    "slug": _normalize_slug,
    "description": lambda v: _optional_text(v, detail="invalid_description"),
    "level": _normalize_level,
    "duration_hours": lambda v: _optional_non_negative_int(v, detail="invalid_duration_hours"),
    "price_inr": lambda v: _optional_non_negative_int(v, detail="invalid_price_inr"),
    "points": parse_points,
    "published": lambda v: _normalize_bool(v, detail="invalid_published"),
    "coming_soon": lambda v: _normalize_bool(v, detail="invalid_coming_soon"),
}


def _field(course: Any, name: str) -> Any:
    if isinstance(course, dict):
        return course.get(name)
    return getattr(course, name, None)


@dataclass
class CoursesService:
    repo: CoursesRepoProtocol
    audit: Optional[AuditSinkProtocol] = None

    def create_course(self, fields: Dict[str, Any], *, actor_id: Optional[str] = None) -> Any:
        if "title" not in fields or "slug" not in fields:
            raise ValueError("title_and_slug_required")
        clean = {key: _NORMALIZERS[key](value) for key, value in fields.items() if key in _NORMALIZERS}
        clean.setdefault("published", False)
        clean.setdefault("coming_soon", True)
        clean.setdefault("points", [])
        course = self.repo.create_course(**clean)
        write_audit_log(
            self.audit,
            action="course.create",
            entity="course",
            summary=f"Created course '{clean['title']}'",
            payload={"course_id": _field(course, "id"), "slug": clean["slug"]},
            actor_id=actor_id,
        )
        return course

    def get_course(self, id_or_slug: str) -> Any:
        course = self.repo.get_course(id_or_slug)
        if course is None:
            raise LookupError("course_not_found")
        return course

    def list_courses(self, *, q: str, page: int, take: int) -> Dict[str, Any]:
        take = max(1, min(take, 100))
        page = max(1, page)
        query = (q or "").strip()
        total = self.repo.count_courses(q=query)
        items = self.repo.list_courses(q=query, limit=take, offset=(page - 1) * take)
        pages = max(1, -(-total // take))
        return {"items": items, "total": total, "page": page, "pages": pages, "take": take}

    def list_published_courses(self) -> List[Any]:
        return self.repo.list_published_courses()

    def update_course(self, id_or_slug: str, fields: Dict[str, Any], *, actor_id: Optional[str] = None) -> Any:
        clean = {key: _NORMALIZERS[key](value) for key, value in fields.items() if key in _NORMALIZERS}
        if not clean:
            raise ValueError("empty_payload")
        existing = self.get_course(id_or_slug)
        course_id = _field(existing, "id")
        updated = self.repo.update_course(course_id, **clean)
        if updated is None:
            raise LookupError("course_not_found")
        write_audit_log(
            self.audit,
            action="course.update",
            entity="course",
            summary="Updated course",
            payload={"course_id": course_id, "fields": sorted(clean)},
            actor_id=actor_id,
        )
        return updated

    def delete_course(self, id_or_slug: str, *, actor_id: Optional[str] = None) -> None:
        existing = self.get_course(id_or_slug)
        course_id = _field(existing, "id")
        if not self.repo.delete_course(course_id):
            raise LookupError("course_not_found")
        write_audit_log(
            self.audit,
            action="course.delete",
            entity="course",
            summary=f"Deleted course '{_field(existing, 'title')}'",
            payload={"course_id": course_id, "slug": _field(existing, "slug")},
            actor_id=actor_id,
        )
