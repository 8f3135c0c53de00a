"""
Learner API: enrollments, lesson progress and lesson notes.

Focus:
    - Enrollment is idempotent (201 then 200) and limited to published courses.
    - Progress never regresses and completion follows lesson order.
    - Notes are private per learner and capped in size.
"""
from __future__ import annotations

import uuid

import httpx
import pytest
from httpx import ASGITransport

pytestmark = pytest.mark.anyio("asyncio")

import main  # noqa: E402
from routes import catalog as catalog_routes  # noqa: E402


def _seed_course(published: bool = True, lessons=("Intro", "Basics", "Advanced")) -> tuple[str, list[str]]:
    repo = catalog_routes._get_repo()
    course = repo.create_course(title="Learn Python", slug=f"learn-{uuid.uuid4().hex[:8]}", published=published)
    ids = [repo.append_lesson(course.id, title=t, media_ref=None).id for t in lessons]
    return course.id, ids


def _client_as(sub: str) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    sess = main.SESSION_STORE.create(sub=sub, name=sub.title(), roles=["learner"])
    client.cookies.set(main.SESSION_COOKIE_NAME, sess.session_id)
    return client


async def test_learner_endpoints_require_session():
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        resp = await client.get("/api/enrollments")
    assert resp.status_code == 401
    assert resp.json() == {"error": "unauthenticated"}


async def test_enroll_is_idempotent():
    course_id, _ = _seed_course()
    async with _client_as("lea") as client:
        first = await client.post("/api/enrollments", json={"course_id": course_id})
        second = await client.post("/api/enrollments", json={"course_id": course_id})
        listing = await client.get("/api/enrollments")
    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["course_id"] == course_id
    courses = listing.json()["courses"]
    assert len(courses) == 1
    assert courses[0]["id"] == course_id
    assert (courses[0]["done"], courses[0]["total"], courses[0]["pct"]) == (0, 3, 0)


async def test_enroll_unpublished_or_unknown_course_is_404():
    draft_id, _ = _seed_course(published=False)
    async with _client_as("lea") as client:
        draft = await client.post("/api/enrollments", json={"course_id": draft_id})
        unknown = await client.post("/api/enrollments", json={"course_id": str(uuid.uuid4())})
        missing = await client.post("/api/enrollments", json={})
    assert draft.status_code == 404
    assert unknown.status_code == 404
    assert missing.status_code == 400
    assert missing.json()["detail"] == "missing_course_id"


async def test_progress_defaults_then_never_regresses():
    course_id, (first, _, _) = _seed_course()
    async with _client_as("lea") as client:
        empty = await client.get("/api/lesson-progress", params={"course_id": course_id, "lesson_id": first})
        await client.post(
            "/api/lesson-progress", json={"course_id": course_id, "lesson_id": first, "position_seconds": 120}
        )
        back = await client.post(
            "/api/lesson-progress", json={"course_id": course_id, "lesson_id": first, "position_seconds": 30}
        )
    assert empty.json() == {"position_seconds": 0, "completed": False, "updated_at": None}
    assert back.status_code == 200
    assert back.json()["position_seconds"] == 120


async def test_completion_must_follow_lesson_order():
    course_id, (first, second, third) = _seed_course()
    async with _client_as("lea") as client:
        await client.post("/api/enrollments", json={"course_id": course_id})
        early = await client.post(
            "/api/lesson-progress", json={"course_id": course_id, "lesson_id": third, "completed": True}
        )
        ok1 = await client.post(
            "/api/lesson-progress", json={"course_id": course_id, "lesson_id": first, "completed": True}
        )
        ok2 = await client.post(
            "/api/lesson-progress", json={"course_id": course_id, "lesson_id": second, "completed": True}
        )
        revert = await client.post(
            "/api/lesson-progress", json={"course_id": course_id, "lesson_id": first, "completed": False}
        )
        listing = await client.get("/api/enrollments")
    assert early.status_code == 409
    assert early.json()["error"] == "out_of_order"
    assert ok1.status_code == 200 and ok2.status_code == 200
    assert revert.json()["completed"] is True
    course = listing.json()["courses"][0]
    assert (course["done"], course["total"], course["pct"]) == (2, 3, 67)


async def test_progress_counts_only_current_lessons_after_delete():
    course_id, (first, second) = _seed_course(lessons=("A", "B"))
    async with _client_as("lea") as client:
        await client.post("/api/enrollments", json={"course_id": course_id})
        await client.post("/api/lesson-progress", json={"course_id": course_id, "lesson_id": first, "completed": True})
        catalog_routes._get_repo().delete_lesson(course_id, first)
        listing = await client.get("/api/enrollments")
    course = listing.json()["courses"][0]
    assert (course["done"], course["total"], course["pct"]) == (0, 1, 0)


@pytest.mark.parametrize("payload,detail", [
    ({"position_seconds": -1}, "invalid_position_seconds"),
    ({"position_seconds": "10"}, "invalid_position_seconds"),
    ({"completed": "yes"}, "invalid_completed"),
])
async def test_progress_validation(payload, detail):
    course_id, (first, *_rest) = _seed_course()
    async with _client_as("lea") as client:
        resp = await client.post("/api/lesson-progress", json={"course_id": course_id, "lesson_id": first, **payload})
    assert resp.status_code == 400
    assert resp.json()["detail"] == detail


async def test_progress_for_lesson_of_other_course_is_404():
    course_a, _ = _seed_course()
    _, (foreign, *_rest) = _seed_course()
    async with _client_as("lea") as client:
        resp = await client.post("/api/lesson-progress", json={"course_id": course_a, "lesson_id": foreign})
        bad = await client.get("/api/lesson-progress", params={"course_id": "nope", "lesson_id": foreign})
    assert resp.status_code == 404
    assert bad.status_code == 400


async def test_notes_are_private_per_learner():
    course_id, (first, *_rest) = _seed_course()
    async with _client_as("lea") as lea:
        saved = await lea.post(
            "/api/lesson-notes", json={"course_id": course_id, "lesson_id": first, "content": "remember slicing"}
        )
        mine = await lea.get("/api/lesson-notes", params={"course_id": course_id, "lesson_id": first})
    async with _client_as("max") as other:
        theirs = await other.get("/api/lesson-notes", params={"course_id": course_id, "lesson_id": first})
    assert saved.status_code == 200
    assert mine.json()["content"] == "remember slicing"
    assert theirs.json()["content"] == ""


async def test_note_size_limit(monkeypatch):
    monkeypatch.setenv("ACADEMY_NOTE_MAX_CHARS", "10")
    course_id, (first, *_rest) = _seed_course()
    async with _client_as("lea") as client:
        ok = await client.post("/api/lesson-notes", json={"course_id": course_id, "lesson_id": first, "content": "x" * 10})
        too_long = await client.post(
            "/api/lesson-notes", json={"course_id": course_id, "lesson_id": first, "content": "x" * 11}
        )
        wrong_type = await client.post("/api/lesson-notes", json={"course_id": course_id, "lesson_id": first, "content": 5})
    assert ok.status_code == 200
    assert too_long.status_code == 400
    assert too_long.json()["detail"] == "content_too_long"
    assert wrong_type.json()["detail"] == "invalid_content"


async def test_learner_responses_are_private_on_success_and_error():
    course_id, (first, *_rest) = _seed_course()
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as anon:
        unauth = await anon.get("/api/enrollments")
    async with _client_as("lea") as client:
        ok = await client.get("/api/lesson-notes", params={"course_id": course_id, "lesson_id": first})
        bad = await client.get("/api/lesson-notes", params={"course_id": "nope", "lesson_id": first})
        upper = await client.get(
            "/api/lesson-notes", params={"course_id": course_id.upper(), "lesson_id": first.upper()}
        )
    assert (ok.status_code, bad.status_code, upper.status_code) == (200, 400, 200)
    for resp in (unauth, ok, bad):
        assert resp.headers.get("Cache-Control") == "private, no-store"
