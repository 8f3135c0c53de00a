from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple


class EnrollmentsRepoProtocol(Protocol):
    def add_enrollment(self, *, user_sub: str, course_id: str) -> Tuple[dict, bool]:
        ...

    def list_enrollments(self, *, user_sub: str) -> list[dict]:
        ...

    def list_completed_lesson_ids(self, *, user_sub: str, course_id: str) -> list[str]:
        ...


class CatalogReaderProtocol(Protocol):
    def get_course(self, id_or_slug: str) -> Optional[Any]:
        ...

    def list_lessons(self, course_id: str) -> list[Any]:
        ...

    def get_lesson(self, course_id: str, lesson_id: str) -> Optional[Any]:
        ...


def _attr(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def progress_pct(done: int, total: int) -> int:
    """Whole-number completion percentage, rounded half up and kept in 0..100."""
    if total <= 0:
        return 0
    return max(0, min(100, int(done * 100 / total + 0.5)))


@dataclass
class EnrollInput:
    user_sub: str
    course_id: str


class EnrollUseCase:
    def __init__(self, repo: EnrollmentsRepoProtocol, catalog: CatalogReaderProtocol) -> None:
        self._repo = repo
        self._catalog = catalog

    def execute(self, req: EnrollInput) -> Tuple[dict, bool]:
        """Enroll the learner into a published course (idempotent).

        Returns the enrollment and whether it was newly created. Unknown and
        unpublished courses raise LookupError so drafts are not discoverable.
        """
        if not req.course_id:
            raise ValueError("missing_course_id")
        course = self._catalog.get_course(req.course_id)
        if course is None or not _attr(course, "published"):
            raise LookupError("course_not_found")
        return self._repo.add_enrollment(user_sub=req.user_sub, course_id=_attr(course, "id"))


@dataclass
class ListEnrollmentsInput:
    user_sub: str


class ListEnrollmentsUseCase:
    def __init__(self, repo: EnrollmentsRepoProtocol, catalog: CatalogReaderProtocol) -> None:
        self._repo = repo
        self._catalog = catalog

    def execute(self, req: ListEnrollmentsInput) -> list[dict]:
        """Return the learner's courses (oldest enrollment first) with progress.

        `done` counts completed lessons that still belong to the course, so
        deleting a lesson never pushes `pct` above 100.
        """
        out: list[dict] = []
        for enrollment in self._repo.list_enrollments(user_sub=req.user_sub):
            course = self._catalog.get_course(enrollment["course_id"])
            if course is None:
                continue
            course_id = _attr(course, "id")
            lesson_ids = {_attr(lesson, "id") for lesson in self._catalog.list_lessons(course_id)}
            completed = set(self._repo.list_completed_lesson_ids(user_sub=req.user_sub, course_id=course_id))
            done = len(completed & lesson_ids)
            total = len(lesson_ids)
            out.append(
                {
                    "id": course_id,
                    "slug": _attr(course, "slug"),
                    "title": _attr(course, "title"),
                    "done": done,
                    "total": total,
                    "pct": progress_pct(done, total),
                }
            )
        return out
