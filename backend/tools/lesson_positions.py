"""Inspect and repair lesson positions.

Why:
    Lesson positions of a course must be exactly 1..N. The API keeps that true
    for every mutation it performs, but manual SQL or restored backups can
    leave gaps or duplicates behind. The catalog never repairs such data
    silently; this tool lets an operator find and fix it explicitly.

Usage:
    python -m backend.tools.lesson_positions check
    python -m backend.tools.lesson_positions compact --course-id <uuid>

The DSN is taken from --db-dsn, ACADEMY_DATABASE_URL or DATABASE_URL.

Notes:
    - `check` exits with status 1 when any course is not dense.
    - `compact` renumbers under the course lock and keeps the relative order
      (`position, id`); it is idempotent.
"""

from __future__ import annotations

import sys
from pathlib import Path
from uuid import UUID

import click

_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from catalog.ordering import LessonOrderError  # noqa: E402
from storage.config import get_database_dsn  # noqa: E402


def _repo(ctx: click.Context):
    obj = ctx.ensure_object(dict)
    repo = obj.get("repo")
    if repo is not None:
        return repo
    from catalog.repo_db import DBCatalogRepo

    try:
        repo = DBCatalogRepo(obj.get("dsn") or get_database_dsn())
    except RuntimeError as exc:
        raise click.ClickException(str(exc))
    obj["repo"] = repo
    return repo


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--db-dsn", required=False, help="Postgres DSN (defaults to ACADEMY_DATABASE_URL/DATABASE_URL).")
@click.pass_context
def cli(ctx: click.Context, db_dsn: str | None) -> None:
    """Lesson position maintenance."""
    obj = ctx.ensure_object(dict)
    if db_dsn:
        obj["dsn"] = db_dsn


@cli.command("check")
@click.pass_context
def check(ctx: click.Context) -> None:
    """Report courses whose lesson positions are not exactly 1..N."""
    offenders = _repo(ctx).find_non_dense_courses()
    if not offenders:
        click.echo("All courses have dense lesson positions.")
        return
    for row in offenders:
        click.echo(
            "course={course_id} lessons={count} min={min} max={max} distinct={distinct}".format(**row)
        )
    ctx.exit(1)


@cli.command("compact")
@click.option("--course-id", required=True, help="Course whose lessons should be renumbered 1..N.")
@click.pass_context
def compact(ctx: click.Context, course_id: str) -> None:
    """Renumber one course's lessons to 1..N, keeping their order."""
    try:
        course_id = str(UUID(course_id))
    except ValueError:
        raise click.BadParameter("must be a UUID", param_hint="--course-id")
    try:
        lessons = _repo(ctx).compact_positions(course_id)
    except LookupError:
        raise click.ClickException(f"course {course_id} not found")
    except LessonOrderError as exc:
        raise click.ClickException(f"compaction failed ({exc}); retry later")
    click.echo(f"Compacted {len(lessons)} lessons of course {course_id}.")


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
