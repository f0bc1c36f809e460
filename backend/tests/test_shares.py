"""
Tests for cost splitting.
"""

import pytest

from agripool.domain.shares import split_evenly


def test_remainder_goes_to_first_share():
    assert split_evenly(10000, 3) == [3334, 3333, 3333]


def test_shares_always_sum_to_total():
    for total in (0, 1, 999, 10000, 123457):
        for count in range(1, 8):
            shares = split_evenly(total, count)
            assert sum(shares) == total
            assert len(shares) == count
            assert max(shares) - min(shares) <= count - 1


def test_even_split_has_no_remainder():
    assert split_evenly(10000, 2) == [5000, 5000]


def test_no_participants_no_shares():
    assert split_evenly(10000, 0) == []


def test_negative_total_rejected():
    with pytest.raises(ValueError):
        split_evenly(-1, 2)
