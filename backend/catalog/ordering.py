"""
Lesson ordering rules shared by the Postgres and in-memory catalog repos.

Why:
    Lessons of a course carry a dense, 1-based `position` (1..N, no gaps, no
    duplicates). Every structural mutation (insert, move, delete, full
    reorder) must take the course from one dense ordering to another. The
    repositories differ in *how* they apply a shift (bulk SQL update vs. list
    manipulation) but must agree on *which* rows shift and by how much. This
    module holds that arithmetic so both adapters stay in lockstep.

Design:
    - Pure functions, no I/O. Inputs are positions and counts taken from a
      snapshot read under the course lock.
    - A `Shift` describes one bulk update: every sibling whose position lies in
      `[lo, hi]` (``hi=None`` means unbounded) moves by `delta`. The moved
      lesson itself is never part of a shift; repos place it in a final step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

# Marks an update field the caller did not send (distinct from an explicit null).
UNSET = object()


@dataclass(frozen=True)
class Shift:
    lo: int
    hi: Optional[int]
    delta: int

    def applies_to(self, position: int) -> bool:
        if position < self.lo:
            return False
        return self.hi is None or position <= self.hi


@dataclass(frozen=True)
class MovePlan:
    current: int
    target: int
    shift: Optional[Shift]

    @property
    def is_noop(self) -> bool:
        return self.shift is None


def normalize_position(value: object) -> int:
    """Validate a caller-supplied position and return it as int.

    Accepts ints and integral floats (JSON numbers such as ``2.0``); rejects
    bools, strings, non-integral and non-positive values with
    ``ValueError("invalid_position")``.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("invalid_position")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("invalid_position")
        value = int(value)
    if not isinstance(value, int):
        raise ValueError("invalid_position")
    if value < 1:
        raise ValueError("invalid_position")
    return value


def next_append_position(count: int) -> int:
    return count + 1


def plan_insert(requested: int, count: int) -> Shift:
    """Return the shift that opens a slot at `requested`.

    No clamping: a slot beyond ``count + 1`` would leave a gap, so it is
    rejected instead of silently moved to the end.
    """
    if requested > count + 1:
        raise ValueError("position_out_of_range")
    return Shift(lo=requested, hi=None, delta=1)


def clamp_position(requested: int, count: int) -> int:
    if count < 1:
        return 1
    return max(1, min(count, requested))


def plan_move(current: int, requested: int, count: int) -> MovePlan:
    """Compute the sibling shift for moving a lesson from `current` to `requested`.

    The target is clamped into ``[1, count]``. Moving up shifts
    ``[target, current-1]`` by +1, moving down shifts ``(current, target]`` by
    -1. Equal positions yield a no-op plan.
    """
    target = clamp_position(requested, count)
    if target == current:
        return MovePlan(current=current, target=target, shift=None)
    if target < current:
        return MovePlan(current=current, target=target, shift=Shift(lo=target, hi=current - 1, delta=1))
    return MovePlan(current=current, target=target, shift=Shift(lo=current + 1, hi=target, delta=-1))


def plan_delete(deleted_position: int) -> Shift:
    return Shift(lo=deleted_position + 1, hi=None, delta=-1)


def validate_full_order(existing_ids: Iterable[str], submitted_ids: Sequence[str]) -> List[str]:
    """Confirm `submitted_ids` is a bijection onto `existing_ids`.

    Raises `LessonOrderConflict` when sizes differ, ids repeat or an id is not
    a current member. Returns the submitted ids as a list on success.
    """
    existing = list(existing_ids)
    submitted = list(submitted_ids)
    if len(submitted) != len(existing):
        raise LessonOrderConflict("lesson_mismatch")
    if len(set(submitted)) != len(submitted):
        raise LessonOrderConflict("lesson_mismatch")
    if set(submitted) != set(existing):
        raise LessonOrderConflict("lesson_mismatch")
    return submitted


def is_dense(positions: Iterable[int]) -> bool:
    ordered = sorted(positions)
    return ordered == list(range(1, len(ordered) + 1))


# ------------------------------ Errors --------------------------------------


class LessonOrderError(Exception):
    """Base class for structural mutation failures on a course's lessons."""


class LessonOrderConflict(LessonOrderError):
    """The request contradicts the current ordering; no change was applied."""


class LessonOrderTransientError(LessonOrderError):
    """Storage could not serialize the mutation; the caller may retry it."""


__all__ = [
    "Shift",
    "MovePlan",
    "normalize_position",
    "next_append_position",
    "plan_insert",
    "clamp_position",
    "plan_move",
    "plan_delete",
    "validate_full_order",
    "is_dense",
    "LessonOrderError",
    "LessonOrderConflict",
    "LessonOrderTransientError",
]
