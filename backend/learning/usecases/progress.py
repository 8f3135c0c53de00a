"""Lesson progress use cases.

Rules:
    - `position_seconds` never regresses: the stored value is the maximum of
      all reported positions.
    - `completed` never reverts once true.
    - A lesson can only be marked complete when every lesson with a lower
      position in the same course is already complete.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from .enrollments import CatalogReaderProtocol, _attr


class ProgressRepoProtocol(Protocol):
    def get_progress(self, *, user_sub: str, course_id: str, lesson_id: str) -> Optional[dict]:
        ...

    def list_completed_lesson_ids(self, *, user_sub: str, course_id: str) -> list[str]:
        ...

    def upsert_progress(
        self,
        *,
        user_sub: str,
        course_id: str,
        lesson_id: str,
        position_seconds: int,
        completed: bool,
    ) -> dict:
        ...


class OutOfOrderCompletion(Exception):
    """Earlier lessons of the course are not completed yet."""


def _normalize_seconds(value: object) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("invalid_position_seconds")
    if isinstance(value, float):
        if value != value or value < 0:
            raise ValueError("invalid_position_seconds")
        return int(value)
    if not isinstance(value, int) or value < 0:
        raise ValueError("invalid_position_seconds")
    return value


def _normalize_completed(value: object) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError("invalid_completed")
    return value


@dataclass
class GetProgressInput:
    user_sub: str
    course_id: str
    lesson_id: str


class GetProgressUseCase:
    def __init__(self, repo: ProgressRepoProtocol) -> None:
        self._repo = repo

    def execute(self, req: GetProgressInput) -> dict:
        if not req.course_id or not req.lesson_id:
            raise ValueError("missing_course_or_lesson")
        row = self._repo.get_progress(user_sub=req.user_sub, course_id=req.course_id, lesson_id=req.lesson_id)
        if row is None:
            return {"position_seconds": 0, "completed": False, "updated_at": None}
        return {
            "position_seconds": int(row.get("position_seconds") or 0),
            "completed": bool(row.get("completed")),
            "updated_at": row.get("updated_at"),
        }


@dataclass
class RecordProgressInput:
    user_sub: str
    course_id: str
    lesson_id: str
    position_seconds: object = None
    completed: object = None


class RecordProgressUseCase:
    def __init__(self, repo: ProgressRepoProtocol, catalog: CatalogReaderProtocol) -> None:
        self._repo = repo
        self._catalog = catalog

    def execute(self, req: RecordProgressInput) -> dict:
        """Upsert a learner's progress for one lesson.

        Raises:
            ValueError: missing ids or invalid field types.
            LookupError: the lesson does not belong to the course.
            OutOfOrderCompletion: completing before all earlier lessons.
        """
        if not req.course_id or not req.lesson_id:
            raise ValueError("missing_course_or_lesson")
        seconds = _normalize_seconds(req.position_seconds)
        completed = _normalize_completed(req.completed)
        lesson = self._catalog.get_lesson(req.course_id, req.lesson_id)
        if lesson is None:
            raise LookupError("lesson_not_found")
        existing = self._repo.get_progress(
            user_sub=req.user_sub, course_id=req.course_id, lesson_id=req.lesson_id
        )
        already_completed = bool(existing and existing.get("completed"))
        if completed and not already_completed:
            position = int(_attr(lesson, "position"))
            earlier = {
                _attr(item, "id")
                for item in self._catalog.list_lessons(req.course_id)
                if int(_attr(item, "position")) < position
            }
            if earlier:
                done = set(self._repo.list_completed_lesson_ids(user_sub=req.user_sub, course_id=req.course_id))
                if not earlier <= done:
                    raise OutOfOrderCompletion("out_of_order")
        row = self._repo.upsert_progress(
            user_sub=req.user_sub,
            course_id=req.course_id,
            lesson_id=req.lesson_id,
            position_seconds=seconds,
            completed=completed,
        )
        return {
            "position_seconds": int(row.get("position_seconds") or 0),
            "completed": bool(row.get("completed")),
            "updated_at": row.get("updated_at"),
        }
