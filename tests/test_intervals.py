"""
Tests for the half-open interval operations.
"""
from datetime import timedelta

import pytest

from app.services.scheduling.exceptions import InvalidInterval
from app.services.scheduling.intervals import Interval, contains, merge, overlaps, subtract
from conftest import MONDAY, utc


def iv(start_hour, end_hour, start_minute=0, end_minute=0):
    return Interval(utc(MONDAY, start_hour, start_minute), utc(MONDAY, end_hour, end_minute))


class TestInterval:
    """Construction and basic predicates"""

    def test_rejects_empty_and_inverted(self):
        with pytest.raises(InvalidInterval):
            iv(9, 9)
        with pytest.raises(InvalidInterval):
            iv(10, 9)

    def test_invalid_interval_is_a_value_error(self):
        with pytest.raises(ValueError):
            iv(10, 9)

    def test_touching_intervals_do_not_overlap(self):
        assert not overlaps(iv(9, 10), iv(10, 11))
        assert overlaps(iv(9, 10, end_minute=1), iv(10, 11))

    def test_contains_is_half_open(self):
        interval = iv(9, 10)
        assert contains(interval, utc(MONDAY, 9))
        assert not contains(interval, utc(MONDAY, 10))

    def test_padded(self):
        padded = iv(10, 11).padded(timedelta(minutes=15), timedelta(minutes=30))
        assert padded == iv(9, 11, start_minute=45, end_minute=30)


class TestMerge:
    """merge() returns a sorted, non-overlapping cover"""

    def test_empty(self):
        assert merge([]) == []

    def test_overlapping_and_unsorted(self):
        assert merge([iv(13, 15), iv(9, 11), iv(10, 12)]) == [iv(9, 12), iv(13, 15)]

    def test_adjacent_intervals_are_joined(self):
        assert merge([iv(9, 10), iv(10, 11)]) == [iv(9, 11)]

    def test_contained_interval_is_absorbed(self):
        assert merge([iv(9, 17), iv(10, 11)]) == [iv(9, 17)]


class TestSubtract:
    """subtract() removes busy time from open time"""

    def test_no_busy(self):
        assert subtract([iv(9, 17)], []) == [iv(9, 17)]

    def test_busy_in_the_middle(self):
        assert subtract([iv(9, 17)], [iv(12, 13)]) == [iv(9, 12), iv(13, 17)]

    def test_busy_covering_the_edges(self):
        assert subtract([iv(9, 17)], [iv(8, 10), iv(16, 18)]) == [iv(10, 16)]

    def test_busy_covering_everything(self):
        assert subtract([iv(9, 17)], [iv(8, 18)]) == []

    def test_multiple_windows(self):
        result = subtract([iv(9, 12), iv(13, 17)], [iv(11, 14)])
        assert result == [iv(9, 11), iv(14, 17)]

    def test_overlapping_busy_blocks(self):
        result = subtract([iv(9, 17)], [iv(10, 12), iv(11, 13), iv(15, 16)])
        assert result == [iv(9, 10), iv(13, 15), iv(16, 17)]
