import unittest
from dataclasses import dataclass
from datetime import datetime, timedelta

from classroom_scheduler.intervals import duration, find_overlapping, overlaps, shift


@dataclass
class _Span:
    start: datetime
    end: datetime


class TestOverlaps(unittest.TestCase):
    def test_touching_intervals_do_not_overlap(self) -> None:
        self.assertFalse(
            overlaps(
                datetime(2026, 3, 2, 10, 0),
                datetime(2026, 3, 2, 11, 0),
                datetime(2026, 3, 2, 11, 0),
                datetime(2026, 3, 2, 12, 0),
            )
        )
        self.assertFalse(
            overlaps(
                datetime(2026, 3, 2, 11, 0),
                datetime(2026, 3, 2, 12, 0),
                datetime(2026, 3, 2, 10, 0),
                datetime(2026, 3, 2, 11, 0),
            )
        )

    def test_partial_and_contained_intervals_overlap(self) -> None:
        self.assertTrue(
            overlaps(
                datetime(2026, 3, 2, 10, 0),
                datetime(2026, 3, 2, 12, 0),
                datetime(2026, 3, 2, 11, 0),
                datetime(2026, 3, 2, 13, 0),
            )
        )
        self.assertTrue(
            overlaps(
                datetime(2026, 3, 2, 9, 0),
                datetime(2026, 3, 2, 18, 0),
                datetime(2026, 3, 2, 10, 0),
                datetime(2026, 3, 2, 10, 1),
            )
        )

    def test_overlap_is_symmetric(self) -> None:
        a = (datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 12, 0))
        b = (datetime(2026, 3, 2, 11, 30), datetime(2026, 3, 2, 14, 0))
        self.assertEqual(overlaps(*a, *b), overlaps(*b, *a))


class TestIntervalHelpers(unittest.TestCase):
    def test_shift_keeps_length(self) -> None:
        start = datetime(2026, 3, 2, 10, 0)
        end = datetime(2026, 3, 2, 11, 30)

        new_start, new_end = shift(start, end, datetime(2026, 3, 4, 14, 0))

        self.assertEqual(new_start, datetime(2026, 3, 4, 14, 0))
        self.assertEqual(new_end - new_start, timedelta(minutes=90))
        self.assertEqual(duration(start, end), timedelta(minutes=90))

    def test_find_overlapping_filters_spans(self) -> None:
        spans = [
            _Span(datetime(2026, 3, 2, 8, 0), datetime(2026, 3, 2, 10, 0)),
            _Span(datetime(2026, 3, 2, 9, 30), datetime(2026, 3, 2, 10, 30)),
            _Span(datetime(2026, 3, 2, 12, 0), datetime(2026, 3, 2, 13, 0)),
        ]

        found = find_overlapping(datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 12, 0), spans)

        self.assertEqual(found, [spans[1]])


if __name__ == "__main__":
    unittest.main()
