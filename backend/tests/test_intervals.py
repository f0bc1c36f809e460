"""
Tests for half-open interval arithmetic.
"""

from datetime import datetime, timedelta, timezone

import pytest

from agripool.core.errors import ValidationError
from agripool.domain.intervals import (
    Interval,
    ReservedInterval,
    find_conflicts,
    intervals_overlap,
    total_days,
    validate_interval,
)

JUNE_1 = datetime(2024, 6, 1, tzinfo=timezone.utc)
JUNE_5 = datetime(2024, 6, 5, tzinfo=timezone.utc)
JUNE_7 = datetime(2024, 6, 7, tzinfo=timezone.utc)
JUNE_10 = datetime(2024, 6, 10, tzinfo=timezone.utc)


def test_touching_intervals_do_not_conflict():
    assert not intervals_overlap(JUNE_1, JUNE_5, JUNE_5, JUNE_10)
    assert not intervals_overlap(JUNE_5, JUNE_10, JUNE_1, JUNE_5)


def test_contained_interval_conflicts():
    assert intervals_overlap(JUNE_1, JUNE_10, JUNE_5, JUNE_7)
    assert intervals_overlap(JUNE_5, JUNE_7, JUNE_1, JUNE_10)


def test_partial_overlap_conflicts():
    assert Interval(JUNE_1, JUNE_7).overlaps(Interval(JUNE_5, JUNE_10))


def test_find_conflicts_returns_overlapping_sorted_by_start():
    held = [
        ReservedInterval(JUNE_7, JUNE_10, kind="group_booking", reservation_id=2, status="OPEN"),
        ReservedInterval(JUNE_1, JUNE_5, kind="booking", reservation_id=1, status="CONFIRMED"),
        ReservedInterval(JUNE_10, JUNE_10 + timedelta(days=3), reservation_id=3, status="ACTIVE"),
    ]
    conflicts = find_conflicts(Interval(JUNE_1, JUNE_10), held)
    assert [c.reservation_id for c in conflicts] == [1, 2]


def test_reserved_interval_as_dict():
    slot = ReservedInterval(JUNE_1, JUNE_5, kind="booking", reservation_id=7, status="CONFIRMED")
    assert slot.as_dict() == {
        "kind": "booking",
        "id": 7,
        "status": "CONFIRMED",
        "start_date": JUNE_1.isoformat(),
        "end_date": JUNE_5.isoformat(),
    }


def test_validate_interval_rejects_past_start():
    with pytest.raises(ValidationError) as exc:
        validate_interval(JUNE_1, JUNE_5, now=JUNE_5)
    assert exc.value.detail["field"] == "start_date"


def test_validate_interval_rejects_empty_interval():
    with pytest.raises(ValidationError) as exc:
        validate_interval(JUNE_5, JUNE_5, now=JUNE_1)
    assert exc.value.detail["field"] == "end_date"
    assert exc.value.status_code == 400


def test_validate_interval_accepts_start_equal_to_now():
    validate_interval(JUNE_1, JUNE_5, now=JUNE_1)


def test_total_days_rounds_partial_days_up():
    assert total_days(JUNE_1, JUNE_5) == 4
    assert total_days(JUNE_1, JUNE_1 + timedelta(hours=25)) == 2
    assert total_days(JUNE_1, JUNE_1 + timedelta(hours=1)) == 1
