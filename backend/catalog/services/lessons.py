"""Lesson service layer (Clean Architecture boundary).

Why:
    Encapsulates lesson use cases (list/create/move/delete/reorder) so that the
    web adapter stays thin and validation can be unit-tested without FastAPI or
    a database. Validation happens here, before any storage access; ordering
    and locking are the repository's job.

Audit:
    Every structural mutation is recorded after the repository returned, i.e.
    after the transaction committed. Audit failures are logged by
    `write_audit_log` and never undo the mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from audit.log import AuditSinkProtocol, write_audit_log
from catalog.ordering import UNSET, normalize_position


class LessonsRepoProtocol(Protocol):
    def course_exists(self, course_id: str) -> bool:
        ...

    def list_lessons(self, course_id: str) -> List[Any]:
        ...

    def get_lesson(self, course_id: str, lesson_id: str) -> Optional[Any]:
        ...

    def append_lesson(self, course_id: str, *, title: str, media_ref: Optional[str]) -> Any:
        ...

    def insert_lesson_at(self, course_id: str, position: int, *, title: str, media_ref: Optional[str]) -> Any:
        ...

    def update_lesson(
        self,
        course_id: str,
        lesson_id: str,
        *,
        title: Any,
        media_ref: Any,
        position: Any,
    ) -> Optional[Any]:
        ...

    def delete_lesson(self, course_id: str, lesson_id: str) -> bool:
        ...

    def replace_lesson_order(self, course_id: str, lesson_ids: List[str]) -> List[Any]:
        ...


TITLE_MAX_LENGTH = 200
MEDIA_REF_MAX_LENGTH = 2048


def _normalize_title(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise ValueError("invalid_title")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > TITLE_MAX_LENGTH:
        raise ValueError("invalid_title")
    return trimmed


def _normalize_media_ref(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_media_ref")
    trimmed = value.strip()
    if len(trimmed) > MEDIA_REF_MAX_LENGTH:
        raise ValueError("invalid_media_ref")
    return trimmed or None


def _normalize_lesson_ids(value: object) -> List[str]:
    if not isinstance(value, list):
        raise ValueError("lesson_ids_must_be_array")
    if not value:
        raise ValueError("empty_lesson_ids")
    if any(not isinstance(item, str) or not item.strip() for item in value):
        raise ValueError("invalid_lesson_ids")
    return [item.strip() for item in value]


def _field(lesson: Any, name: str) -> Any:
    if isinstance(lesson, dict):
        return lesson.get(name)
    return getattr(lesson, name, None)


@dataclass
class LessonsService:
    """Use cases for course lessons (framework-independent)."""

    repo: LessonsRepoProtocol
    audit: Optional[AuditSinkProtocol] = None

    def list_lessons(self, course_id: str) -> List[Any]:
        if not self.repo.course_exists(course_id):
            raise LookupError("course_not_found")
        return self.repo.list_lessons(course_id)

    def get_lesson(self, course_id: str, lesson_id: str) -> Any:
        lesson = self.repo.get_lesson(course_id, lesson_id)
        if lesson is None:
            raise LookupError("lesson_not_found")
        return lesson

    def create_lesson(
        self,
        course_id: str,
        *,
        title: object,
        position: object = None,
        media_ref: object = None,
        actor_id: Optional[str] = None,
    ) -> Any:
        """Append a lesson, or insert it at `position` shifting later siblings."""
        clean_title = _normalize_title(title)
        clean_media = _normalize_media_ref(media_ref)
        if position is None:
            lesson = self.repo.append_lesson(course_id, title=clean_title, media_ref=clean_media)
        else:
            requested = normalize_position(position)
            lesson = self.repo.insert_lesson_at(course_id, requested, title=clean_title, media_ref=clean_media)
        write_audit_log(
            self.audit,
            action="lesson.create",
            entity="lesson",
            summary=f"Created lesson '{clean_title}' at position {_field(lesson, 'position')}",
            payload={
                "course_id": course_id,
                "lesson_id": _field(lesson, "id"),
                "position": _field(lesson, "position"),
            },
            actor_id=actor_id,
        )
        return lesson

    def update_lesson(
        self,
        course_id: str,
        lesson_id: str,
        *,
        title: object = UNSET,
        media_ref: object = UNSET,
        position: object = UNSET,
        actor_id: Optional[str] = None,
    ) -> Any:
        """Update title/media and optionally move the lesson (target is clamped)."""
        repo_kwargs: dict[str, Any] = {}
        if title is not UNSET:
            repo_kwargs["title"] = _normalize_title(title)
        if media_ref is not UNSET:
            repo_kwargs["media_ref"] = _normalize_media_ref(media_ref)
        if position is not UNSET:
            repo_kwargs["position"] = normalize_position(position)
        if not repo_kwargs:
            raise ValueError("empty_payload")
        result = self.repo.update_lesson(
            course_id,
            lesson_id,
            title=repo_kwargs.get("title", UNSET),
            media_ref=repo_kwargs.get("media_ref", UNSET),
            position=repo_kwargs.get("position", UNSET),
        )
        if result is None:
            raise LookupError("lesson_not_found")
        moved = "position" in repo_kwargs
        write_audit_log(
            self.audit,
            action="lesson.move" if moved else "lesson.update",
            entity="lesson",
            summary=(
                f"Moved lesson to position {_field(result, 'position')}"
                if moved
                else "Updated lesson details"
            ),
            payload={
                "course_id": course_id,
                "lesson_id": lesson_id,
                "requested_position": repo_kwargs.get("position"),
                "position": _field(result, "position"),
                "fields": sorted(k for k in repo_kwargs if k != "position"),
            },
            actor_id=actor_id,
        )
        return result

    def delete_lesson(self, course_id: str, lesson_id: str, *, actor_id: Optional[str] = None) -> None:
        deleted = self.repo.delete_lesson(course_id, lesson_id)
        if not deleted:
            raise LookupError("lesson_not_found")
        write_audit_log(
            self.audit,
            action="lesson.delete",
            entity="lesson",
            summary="Deleted lesson and compacted positions",
            payload={"course_id": course_id, "lesson_id": lesson_id},
            actor_id=actor_id,
        )

    def reorder_lessons(self, course_id: str, lesson_ids: object, *, actor_id: Optional[str] = None) -> List[Any]:
        ids = _normalize_lesson_ids(lesson_ids)
        ordered = self.repo.replace_lesson_order(course_id, ids)
        write_audit_log(
            self.audit,
            action="lesson.reorder",
            entity="course",
            summary=f"Reordered {len(ids)} lessons",
            payload={"course_id": course_id, "lesson_ids": ids},
            actor_id=actor_id,
        )
        return ordered
