"""Unit tests for trend, moving-average and report helpers."""

import unittest
from datetime import datetime, timedelta

from goalcache.analytics import (
    GapPolicy,
    build_activity_days,
    build_histogram,
    calculate_moving_average,
    calculate_trend,
    compute_field_stats,
    fill_missing_days,
    format_duration,
    format_stat_value,
)


def day(n):
    return datetime(2025, 1, 1) + timedelta(days=n)


class TestCalculateTrend(unittest.TestCase):
    def test_too_few_values(self):
        self.assertIsNone(calculate_trend([1, 2, 3, 4, 5, 6]))
        self.assertIsNone(calculate_trend([]))

    def test_zero_previous_average(self):
        self.assertIsNone(calculate_trend([0] * 7 + [5] * 7))

    def test_two_full_weeks(self):
        self.assertAlmostEqual(calculate_trend([10] * 7 + [15] * 7), 50.0)

    def test_short_series_uses_half_windows(self):
        # n=8 -> windows of 4: previous [2,2,2,2], recent [3,3,3,3]
        self.assertAlmostEqual(calculate_trend([2, 2, 2, 2, 3, 3, 3, 3]), 50.0)

    def test_only_last_two_weeks_count(self):
        values = [1000] * 10 + [10] * 7 + [5] * 7
        self.assertAlmostEqual(calculate_trend(values), -50.0)


class TestMovingAverage(unittest.TestCase):
    def test_trailing_window(self):
        data = [(day(i), float(i)) for i in range(10)]
        avg = calculate_moving_average(data, 7)
        self.assertEqual(len(avg), 10)
        self.assertAlmostEqual(avg[9][1], sum(range(3, 10)) / 7)
        self.assertAlmostEqual(avg[0][1], 0.0)
        self.assertAlmostEqual(avg[2][1], 1.0)

    def test_window_must_be_positive(self):
        with self.assertRaises(ValueError):
            calculate_moving_average([(day(0), 1.0)], 0)

    def test_empty(self):
        self.assertEqual(calculate_moving_average([], 7), [])
        self.assertEqual(calculate_moving_average([], 7, GapPolicy.ZERO_FILL), [])

    def test_skip_ignores_missing_days(self):
        data = [(day(0), 4.0), (day(5), 8.0)]
        avg = calculate_moving_average(data, 7, GapPolicy.SKIP)
        self.assertEqual([v for _, v in avg], [4.0, 6.0])

    def test_zero_fill_counts_missing_days(self):
        data = [(day(0), 4.0), (day(3), 8.0)]
        avg = calculate_moving_average(data, 7, GapPolicy.ZERO_FILL)
        self.assertEqual(len(avg), 4)
        self.assertAlmostEqual(avg[-1][1], 3.0)

    def test_unsorted_input(self):
        data = [(day(1), 2.0), (day(0), 1.0)]
        avg = calculate_moving_average(data, 2)
        self.assertEqual(avg[0][0], day(0))
        self.assertAlmostEqual(avg[1][1], 1.5)


class TestFillMissingDays(unittest.TestCase):
    def test_fills_with_zero(self):
        filled = fill_missing_days([(day(0), 1.0), (day(2), 3.0)])
        self.assertEqual(filled, [(day(0), 1.0), (day(1), 0.0), (day(2), 3.0)])

    def test_last_value_per_day_wins(self):
        filled = fill_missing_days([(day(0), 1.0), (day(0) + timedelta(hours=5), 9.0)])
        self.assertEqual(filled, [(day(0), 9.0)])


class TestActivityDays(unittest.TestCase):
    def test_max_normalized(self):
        records = [(day(0), 5.0), (day(1), 10.0), (day(2), 0.0)]
        got = build_activity_days(records, lambda r: r[1], lambda r: r[0])
        self.assertEqual([i for _, i in got], [0.5, 1.0, 0.0])

    def test_target_normalized_and_clamped(self):
        records = [(day(0), 5.0), (day(1), 30.0)]
        got = build_activity_days(records, lambda r: r[1], lambda r: r[0], target=20.0)
        self.assertEqual([i for _, i in got], [0.25, 1.0])

    def test_all_zero(self):
        records = [(day(0), 0.0), (day(1), 0.0)]
        got = build_activity_days(records, lambda r: r[1], lambda r: r[0])
        self.assertEqual([i for _, i in got], [0.0, 0.0])


class TestReportHelpers(unittest.TestCase):
    def test_format_duration(self):
        self.assertEqual(format_duration(0), "0m")
        self.assertEqual(format_duration(45 * 60), "45m")
        self.assertEqual(format_duration(7200), "2h")
        self.assertEqual(format_duration(7500), "2h 5m")

    def test_field_stats(self):
        st = compute_field_stats([1.0, 2.0, 3.0])
        self.assertEqual(st["count"], 3)
        self.assertEqual(st["median"], 2.0)
        self.assertAlmostEqual(st["stdev"], 1.0)
        self.assertIsNone(compute_field_stats([]))
        self.assertEqual(compute_field_stats([4.0])["stdev"], 0.0)

    def test_format_stat_value(self):
        self.assertEqual(format_stat_value(8500.0), "8500")
        self.assertEqual(format_stat_value(58.25), "58.2")

    def test_histogram(self):
        lines = build_histogram([1, 2, 2, 3, 10], bins=3)
        self.assertEqual(len(lines), 3)
        self.assertEqual(sum(int(line.split()[-1]) for line in lines), 5)
        self.assertEqual(build_histogram([]), [])
        self.assertEqual(len(build_histogram([5, 5, 5])), 1)


if __name__ == "__main__":
    unittest.main()
