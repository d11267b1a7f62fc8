"""Field rotation: field counts normalize to >= 1 and match order rotates across fields."""
import math

import pytest

from stage_engine.utils.fields import compute_field_number, normalize_field_count


@pytest.mark.parametrize(
    "value,expected",
    [(3, 3), (2.9, 2), (0, 1), (-4, 1), (None, 1), ("4", 1), (True, 1), (math.nan, 1), (math.inf, 1)],
)
def test_normalize_field_count(value, expected):
    assert normalize_field_count(value) == expected


def test_rotation_over_three_fields():
    """Match 1..7 on 3 fields -> 1,2,3,1,2,3,1."""
    assert [compute_field_number(order, 3) for order in range(1, 8)] == [1, 2, 3, 1, 2, 3, 1]


def test_single_field_always_one():
    assert {compute_field_number(order, 1) for order in range(1, 10)} == {1}


def test_invalid_count_falls_back_to_one():
    assert compute_field_number(5, "many") == 1
