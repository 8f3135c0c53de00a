from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from storage.config import get_note_max_chars

from .enrollments import CatalogReaderProtocol


class NotesRepoProtocol(Protocol):
    def get_note(self, *, user_sub: str, course_id: str, lesson_id: str) -> Optional[dict]:
        ...

    def upsert_note(self, *, user_sub: str, course_id: str, lesson_id: str, content: str) -> dict:
        ...


@dataclass
class GetNoteInput:
    user_sub: str
    course_id: str
    lesson_id: str


class GetNoteUseCase:
    def __init__(self, repo: NotesRepoProtocol) -> None:
        self._repo = repo

    def execute(self, req: GetNoteInput) -> dict:
        if not req.course_id or not req.lesson_id:
            raise ValueError("missing_course_or_lesson")
        row = self._repo.get_note(user_sub=req.user_sub, course_id=req.course_id, lesson_id=req.lesson_id)
        if row is None:
            return {"content": "", "updated_at": None}
        return {"content": row.get("content") or "", "updated_at": row.get("updated_at")}


@dataclass
class SaveNoteInput:
    user_sub: str
    course_id: str
    lesson_id: str
    content: object = None


class SaveNoteUseCase:
    def __init__(self, repo: NotesRepoProtocol, catalog: CatalogReaderProtocol) -> None:
        self._repo = repo
        self._catalog = catalog

    def execute(self, req: SaveNoteInput) -> dict:
        """Create or replace the learner's private note for a lesson.

        Content is capped at `get_note_max_chars()` characters; an empty string
        is a valid note (clears it).
        """
        if not req.course_id or not req.lesson_id:
            raise ValueError("missing_course_or_lesson")
        content = "" if req.content is None else req.content
        if not isinstance(content, str):
            raise ValueError("invalid_content")
        if len(content) > get_note_max_chars():
            raise ValueError("content_too_long")
        if self._catalog.get_lesson(req.course_id, req.lesson_id) is None:
            raise LookupError("lesson_not_found")
        row = self._repo.upsert_note(
            user_sub=req.user_sub, course_id=req.course_id, lesson_id=req.lesson_id, content=content
        )
        return {"content": row.get("content") or "", "updated_at": row.get("updated_at")}
