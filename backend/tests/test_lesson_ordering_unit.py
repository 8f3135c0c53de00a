"""Unit tests for the lesson ordering arithmetic shared by both repositories."""

from __future__ import annotations

import pytest

from catalog.ordering import (
    LessonOrderConflict,
    Shift,
    clamp_position,
    is_dense,
    next_append_position,
    normalize_position,
    plan_delete,
    plan_insert,
    plan_move,
    validate_full_order,
)


def _apply(positions: dict[str, int], shift: Shift | None, *, exclude: str | None = None) -> dict[str, int]:
    out = dict(positions)
    if shift is None:
        return out
    for key, pos in positions.items():
        if key != exclude and shift.applies_to(pos):
            out[key] = pos + shift.delta
    return out


@pytest.mark.parametrize("value", [1, 2, 50, 3.0])
def test_normalize_position_accepts_positive_integers(value):
    assert normalize_position(value) == int(value)


@pytest.mark.parametrize("value", [0, -1, 1.5, "2", None, True, False, [1]])
def test_normalize_position_rejects_invalid_values(value):
    with pytest.raises(ValueError) as exc:
        normalize_position(value)
    assert str(exc.value) == "invalid_position"


def test_append_position_is_count_plus_one():
    assert next_append_position(0) == 1
    assert next_append_position(3) == 4


def test_insert_shifts_everything_at_or_after_requested_slot():
    before = {"A": 1, "B": 2, "C": 3}
    after = _apply(before, plan_insert(2, len(before)))
    after["D"] = 2
    assert after == {"A": 1, "D": 2, "B": 3, "C": 4}
    assert is_dense(after.values())


def test_insert_at_end_slot_shifts_nothing():
    shift = plan_insert(4, 3)
    assert not any(shift.applies_to(p) for p in (1, 2, 3))


def test_insert_beyond_end_slot_is_rejected():
    with pytest.raises(ValueError) as exc:
        plan_insert(5, 3)
    assert str(exc.value) == "position_out_of_range"


def test_move_up_increments_the_range_between_target_and_current():
    before = {"A": 1, "B": 2, "C": 3, "D": 4}
    plan = plan_move(current=4, requested=2, count=4)
    assert plan.shift == Shift(lo=2, hi=3, delta=1)
    after = _apply(before, plan.shift, exclude="D")
    after["D"] = plan.target
    assert after == {"A": 1, "D": 2, "B": 3, "C": 4}


def test_move_down_decrements_the_range_between_current_and_target():
    before = {"A": 1, "B": 2, "C": 3, "D": 4}
    plan = plan_move(current=1, requested=3, count=4)
    assert plan.shift == Shift(lo=2, hi=3, delta=-1)
    after = _apply(before, plan.shift, exclude="A")
    after["A"] = plan.target
    assert after == {"B": 1, "C": 2, "A": 3, "D": 4}


def test_move_to_current_position_is_noop():
    plan = plan_move(current=2, requested=2, count=3)
    assert plan.is_noop
    assert plan.target == 2


@pytest.mark.parametrize("requested,expected", [(99, 4), (1, 1), (4, 4)])
def test_move_target_is_clamped_into_range(requested, expected):
    assert plan_move(current=2, requested=requested, count=4).target == expected


def test_clamp_position_on_empty_group():
    assert clamp_position(7, 0) == 1


def test_delete_decrements_later_siblings():
    before = {"A": 1, "C": 3}
    after = _apply(before, plan_delete(2))
    assert after == {"A": 1, "C": 2}


def test_validate_full_order_accepts_permutation():
    assert validate_full_order(["a", "b", "c"], ["c", "a", "b"]) == ["c", "a", "b"]


@pytest.mark.parametrize(
    "submitted",
    [
        ["a", "b"],
        ["a", "b", "b"],
        ["a", "b", "x"],
        ["a", "b", "c", "d"],
    ],
)
def test_validate_full_order_rejects_non_bijection(submitted):
    with pytest.raises(LessonOrderConflict):
        validate_full_order(["a", "b", "c"], submitted)


def test_is_dense():
    assert is_dense([])
    assert is_dense([2, 1, 3])
    assert not is_dense([1, 3])
    assert not is_dense([1, 1, 2])
    assert not is_dense([0, 1])
