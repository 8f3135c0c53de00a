"""DBLearningRepo SQL semantics against a fake psycopg connection."""

from __future__ import annotations

import pytest

from learning import repo_db
from learning.repo_db import DBLearningRepo
from utils.fake_psycopg import index_of, install_fake_psycopg

TS = "2026-01-01T00:00:00+00:00"


def test_requires_dsn(monkeypatch):
    monkeypatch.delenv("ACADEMY_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        DBLearningRepo()


def test_new_enrollment_is_reported_as_created(monkeypatch):
    log = install_fake_psycopg(
        monkeypatch, repo_db, lambda sql, params: [("c1", TS)] if sql.startswith("insert") else []
    )
    row, created = DBLearningRepo(dsn="postgresql://fake").add_enrollment(user_sub="u1", course_id="c1")
    assert created is True
    assert row == {"course_id": "c1", "started_at": TS}
    assert "on conflict (user_sub, course_id) do nothing" in log[0][0]
    assert log[-1] == ("COMMIT", None)


def test_existing_enrollment_is_read_back(monkeypatch):
    log = install_fake_psycopg(
        monkeypatch, repo_db, lambda sql, params: [] if sql.startswith("insert") else [("c1", TS)]
    )
    row, created = DBLearningRepo(dsn="postgresql://fake").add_enrollment(user_sub="u1", course_id="c1")
    assert created is False
    assert row["course_id"] == "c1"
    assert index_of(log, "select course_id::text") == 1


def test_progress_upsert_is_monotonic_in_sql(monkeypatch):
    log = install_fake_psycopg(monkeypatch, repo_db, lambda sql, params: [(90, True, TS)])
    row = DBLearningRepo(dsn="postgresql://fake").upsert_progress(
        user_sub="u1", course_id="c1", lesson_id="l1", position_seconds=10, completed=False
    )
    sql_text = log[0][0]
    assert "greatest(public.lesson_progress.position_seconds, excluded.position_seconds)" in sql_text
    assert "public.lesson_progress.completed or excluded.completed" in sql_text
    assert row == {"position_seconds": 90, "completed": True, "updated_at": TS}


def test_missing_note_returns_none(monkeypatch):
    install_fake_psycopg(monkeypatch, repo_db, lambda sql, params: [])
    assert DBLearningRepo(dsn="postgresql://fake").get_note(user_sub="u1", course_id="c1", lesson_id="l1") is None


def test_search_enrollments_filters_and_pages(monkeypatch):
    log = install_fake_psycopg(monkeypatch, repo_db, lambda sql, params: [("u1", "c1", TS)])
    rows = DBLearningRepo(dsn="postgresql://fake").search_enrollments(
        user_sub="u1", course_id=None, limit=20, offset=40
    )
    sql_text, params = log[0]
    assert "where user_sub = %s order by started_at desc" in sql_text
    assert "course_id = %s" not in sql_text
    assert params == ("u1", 20, 40)
    assert rows == [{"user_sub": "u1", "course_id": "c1", "started_at": TS}]


def test_count_enrollments_without_filters_has_no_where(monkeypatch):
    log = install_fake_psycopg(monkeypatch, repo_db, lambda sql, params: [(7,)])
    assert DBLearningRepo(dsn="postgresql://fake").count_enrollments(user_sub=None, course_id=None) == 7
    assert "where" not in log[0][0]


def test_remove_enrollment_reports_missing_row(monkeypatch):
    log = install_fake_psycopg(monkeypatch, repo_db, lambda sql, params: [])
    assert DBLearningRepo(dsn="postgresql://fake").remove_enrollment(user_sub="u1", course_id="c1") is False
    assert log[0][0].startswith("delete from public.enrollments")
    assert log[-1] == ("COMMIT", None)
