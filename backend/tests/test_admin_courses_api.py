"""
Admin Courses API and public course listing.

Covers create/get/update/delete, slug uniqueness, pagination and the public
`/api/courses` endpoint that only exposes published courses.
"""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

pytestmark = pytest.mark.anyio("asyncio")

import main  # noqa: E402


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _login(client: httpx.AsyncClient, roles=("admin",)) -> None:
    sess = main.SESSION_STORE.create(sub="admin-courses", name="Admin", roles=list(roles))
    client.cookies.set(main.SESSION_COOKIE_NAME, sess.session_id)


async def test_create_course_defaults_and_normalization():
    async with _client() as client:
        _login(client)
        resp = await client.post(
            "/api/admin/courses",
            json={
                "title": "  Data Science  ",
                "slug": "data-science",
                "level": "Beginner",
                "duration_hours": "12",
                "price_inr": 4999,
                "points": "Pandas\n\nNumPy\n",
            },
        )
    assert resp.status_code == 201
    body = resp.json()
    assert body["title"] == "Data Science"
    assert body["published"] is False
    assert body["coming_soon"] is True
    assert body["duration_hours"] == 12
    assert body["points"] == ["Pandas", "NumPy"]
    assert body["lesson_count"] == 0
    assert resp.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.parametrize("payload,detail", [
    ({"title": "No slug"}, "title_and_slug_required"),
    ({"title": "T", "slug": "Not A Slug"}, "invalid_slug"),
    ({"title": "T", "slug": "ok", "level": "Expert"}, "invalid_level"),
    ({"title": "T", "slug": "ok", "price_inr": -1}, "invalid_price_inr"),
    ({"title": "T", "slug": "ok", "published": "yes"}, "invalid_published"),
])
async def test_create_course_validation(payload, detail):
    async with _client() as client:
        _login(client)
        resp = await client.post("/api/admin/courses", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"error": "bad_request", "detail": detail}


async def test_duplicate_slug_is_conflict():
    async with _client() as client:
        _login(client)
        await client.post("/api/admin/courses", json={"title": "One", "slug": "same"})
        resp = await client.post("/api/admin/courses", json={"title": "Two", "slug": "same"})
        other = await client.post("/api/admin/courses", json={"title": "Three", "slug": "other"})
        patch = await client.patch(f"/api/admin/courses/{other.json()['id']}", json={"slug": "same"})
    assert resp.status_code == 409
    assert resp.json() == {"error": "conflict", "detail": "slug_taken"}
    assert patch.status_code == 409


async def test_get_by_id_or_slug_includes_lessons():
    async with _client() as client:
        _login(client)
        created = await client.post("/api/admin/courses", json={"title": "Web", "slug": "web"})
        course_id = created.json()["id"]
        await client.post(f"/api/admin/courses/{course_id}/lessons", json={"title": "HTML"})
        by_slug = await client.get("/api/admin/courses/web")
        by_id = await client.get(f"/api/admin/courses/{course_id}")
        missing = await client.get("/api/admin/courses/nope")
    assert by_slug.status_code == 200
    assert by_slug.json()["id"] == course_id
    assert by_id.json()["lesson_count"] == 1
    assert [lesson["title"] for lesson in by_id.json()["lessons"]] == ["HTML"]
    assert missing.status_code == 404


async def test_update_course_partial_and_empty_payload():
    async with _client() as client:
        _login(client)
        created = await client.post("/api/admin/courses", json={"title": "Web", "slug": "web"})
        course_id = created.json()["id"]
        resp = await client.patch(f"/api/admin/courses/{course_id}", json={"published": True, "coming_soon": False})
        empty = await client.patch(f"/api/admin/courses/{course_id}", json={})
    assert resp.status_code == 200
    assert resp.json()["published"] is True
    assert resp.json()["title"] == "Web"
    assert empty.status_code == 400
    assert empty.json()["detail"] == "empty_payload"


async def test_delete_course_removes_lessons():
    async with _client() as client:
        _login(client)
        created = await client.post("/api/admin/courses", json={"title": "Gone", "slug": "gone"})
        course_id = created.json()["id"]
        await client.post(f"/api/admin/courses/{course_id}/lessons", json={"title": "L1"})
        resp = await client.delete("/api/admin/courses/gone")
        after = await client.get(f"/api/admin/courses/{course_id}/lessons")
        again = await client.delete(f"/api/admin/courses/{course_id}")
    assert resp.status_code == 204
    assert after.status_code == 404
    assert again.status_code == 404


async def test_list_courses_paginates_and_searches():
    async with _client() as client:
        _login(client)
        for i in range(5):
            await client.post("/api/admin/courses", json={"title": f"Course {i}", "slug": f"course-{i}"})
        await client.post("/api/admin/courses", json={"title": "Rust", "slug": "rust", "level": "Advanced"})
        page1 = await client.get("/api/admin/courses", params={"take": 2, "page": 1})
        page3 = await client.get("/api/admin/courses", params={"take": 2, "page": 3})
        search = await client.get("/api/admin/courses", params={"q": "advanced"})
        clamped = await client.get("/api/admin/courses", params={"take": 500})
    body = page1.json()
    assert (body["total"], body["pages"], body["take"], len(body["items"])) == (6, 3, 2, 2)
    assert body["items"][0]["slug"] == "rust"
    assert len(page3.json()["items"]) == 2
    assert [c["slug"] for c in search.json()["items"]] == ["rust"]
    assert clamped.json()["take"] == 100


async def test_admin_course_endpoints_require_admin():
    async with _client() as client:
        _login(client, roles=("learner",))
        listing = await client.get("/api/admin/courses")
        create = await client.post("/api/admin/courses", json={"title": "T", "slug": "t"})
    assert listing.status_code == 403
    assert create.status_code == 403


async def test_public_courses_lists_only_published_without_auth():
    async with _client() as client:
        _login(client)
        draft = await client.post("/api/admin/courses", json={"title": "Draft", "slug": "draft"})
        await client.post("/api/admin/courses", json={"title": "Zeta", "slug": "zeta", "published": True})
        await client.post("/api/admin/courses", json={"title": "Alpha", "slug": "alpha", "published": True})
        assert draft.status_code == 201
        client.cookies.clear()
        resp = await client.get("/api/courses")
    assert resp.status_code == 200
    items = resp.json()
    assert [c["slug"] for c in items] == ["alpha", "zeta"]
    assert "published" not in items[0]


async def test_course_mutations_are_audited():
    async with _client() as client:
        _login(client)
        created = await client.post("/api/admin/courses", json={"title": "Audited", "slug": "audited"})
        await client.patch(f"/api/admin/courses/{created.json()['id']}", json={"title": "Audited 2"})
        await client.delete("/api/admin/courses/audited")
        resp = await client.get("/api/admin/audit", params={"q": "course."})
    actions = [item["action"] for item in resp.json()["items"]]
    assert actions == ["course.delete", "course.update", "course.create"]
