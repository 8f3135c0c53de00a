"""
Admin back-office for enrollments: list, grant and revoke on behalf of learners.

Unlike the learner-side enroll, a grant does not require the course to be
published (admins may open drafts for reviewers) and an existing enrollment
is a conflict instead of a no-op. Grants and revokes are audited.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple

from audit.log import AuditSinkProtocol, write_audit_log

from .enrollments import CatalogReaderProtocol, _attr


class EnrollmentAlreadyExists(Exception):
    pass


class AdminEnrollmentsRepoProtocol(Protocol):
    def add_enrollment(self, *, user_sub: str, course_id: str) -> Tuple[dict, bool]:
        ...

    def search_enrollments(
        self, *, user_sub: Optional[str], course_id: Optional[str], limit: int, offset: int
    ) -> list[dict]:
        ...

    def count_enrollments(self, *, user_sub: Optional[str], course_id: Optional[str]) -> int:
        ...

    def remove_enrollment(self, *, user_sub: str, course_id: str) -> bool:
        ...


def _require(value: str, detail: str) -> str:
    if not value:
        raise ValueError(detail)
    return value


@dataclass
class ListAllEnrollmentsInput:
    user_sub: str = ""
    course_id: str = ""
    page: int = 1
    take: int = 20


class ListAllEnrollmentsUseCase:
    def __init__(self, repo: AdminEnrollmentsRepoProtocol, catalog: CatalogReaderProtocol) -> None:
        self._repo = repo
        self._catalog = catalog

    def execute(self, req: ListAllEnrollmentsInput) -> dict:
        """Page through enrollments, newest first, optionally filtered.

        `take` is clamped to 1..100 and `page` starts at 1. Each row carries
        the course's slug and title when the course still exists.
        """
        take = max(1, min(int(req.take or 20), 100))
        page = max(1, int(req.page or 1))
        user_sub = req.user_sub or None
        course_id = req.course_id or None
        total = self._repo.count_enrollments(user_sub=user_sub, course_id=course_id)
        rows = self._repo.search_enrollments(
            user_sub=user_sub, course_id=course_id, limit=take, offset=(page - 1) * take
        )
        items = []
        for row in rows:
            course = self._catalog.get_course(row["course_id"])
            items.append(
                {
                    "user_sub": row["user_sub"],
                    "course_id": row["course_id"],
                    "started_at": row["started_at"],
                    "course": (
                        {"id": _attr(course, "id"), "slug": _attr(course, "slug"), "title": _attr(course, "title")}
                        if course is not None
                        else None
                    ),
                }
            )
        pages = max(1, (total + take - 1) // take)
        return {"items": items, "total": total, "page": page, "pages": pages, "take": take}


@dataclass
class GrantEnrollmentInput:
    user_sub: str
    course_id: str
    actor_id: Optional[str] = None


class GrantEnrollmentUseCase:
    def __init__(
        self,
        repo: AdminEnrollmentsRepoProtocol,
        catalog: CatalogReaderProtocol,
        audit: Optional[AuditSinkProtocol] = None,
    ) -> None:
        self._repo = repo
        self._catalog = catalog
        self._audit = audit

    def execute(self, req: GrantEnrollmentInput) -> dict:
        user_sub = _require(req.user_sub, "missing_user_sub")
        _require(req.course_id, "missing_course_id")
        course: Any = self._catalog.get_course(req.course_id)
        if course is None:
            raise LookupError("course_not_found")
        course_id = _attr(course, "id")
        row, created = self._repo.add_enrollment(user_sub=user_sub, course_id=course_id)
        if not created:
            raise EnrollmentAlreadyExists(course_id)
        write_audit_log(
            self._audit,
            action="enrollment.grant",
            entity="enrollment",
            summary=f"Granted enrollment in '{_attr(course, 'title')}'",
            payload={"user_sub": user_sub, "course_id": course_id},
            actor_id=req.actor_id,
        )
        return {"user_sub": user_sub, **row}


@dataclass
class RevokeEnrollmentInput:
    user_sub: str
    course_id: str
    actor_id: Optional[str] = None


class RevokeEnrollmentUseCase:
    def __init__(self, repo: AdminEnrollmentsRepoProtocol, audit: Optional[AuditSinkProtocol] = None) -> None:
        self._repo = repo
        self._audit = audit

    def execute(self, req: RevokeEnrollmentInput) -> None:
        """Hard-delete one enrollment; LookupError when it does not exist.

        Progress and notes are kept so a later re-grant resumes where the
        learner left off.
        """
        user_sub = _require(req.user_sub, "missing_user_sub")
        course_id = _require(req.course_id, "missing_course_id")
        if not self._repo.remove_enrollment(user_sub=user_sub, course_id=course_id):
            raise LookupError("enrollment_not_found")
        write_audit_log(
            self._audit,
            action="enrollment.revoke",
            entity="enrollment",
            summary="Revoked enrollment",
            payload={"user_sub": user_sub, "course_id": course_id},
            actor_id=req.actor_id,
        )
