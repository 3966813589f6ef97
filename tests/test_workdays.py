import unittest
from datetime import date, datetime, timezone

from scoring.utils import count_workdays, average_per_workday, rank_top, sunday_first_weekday


class TestWorkdays(unittest.TestCase):
    def test_monday_to_friday(self):
        self.assertEqual(count_workdays(date(2024, 1, 1), date(2024, 1, 5)), 5)

    def test_weekend_only(self):
        self.assertEqual(count_workdays(date(2024, 1, 6), date(2024, 1, 7)), 0)

    def test_single_weekday_is_inclusive(self):
        self.assertEqual(count_workdays(date(2024, 1, 3), date(2024, 1, 3)), 1)

    def test_single_weekend_day(self):
        self.assertEqual(count_workdays(date(2024, 1, 7), date(2024, 1, 7)), 0)

    def test_inverted_range_is_zero(self):
        self.assertEqual(count_workdays(date(2024, 1, 10), date(2024, 1, 1)), 0)

    def test_full_month(self):
        # January 2024 has 23 weekdays
        self.assertEqual(count_workdays(date(2024, 1, 1), date(2024, 1, 31)), 23)

    def test_datetimes_step_by_calendar_day(self):
        since = datetime(2024, 1, 1, 15, 0, tzinfo=timezone.utc)
        until = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)
        # Mon 1st .. Sun 7th at 15:00; Mon 8th 15:00 is past `until`
        self.assertEqual(count_workdays(since, until), 5)


class TestAverageAndRanking(unittest.TestCase):
    def test_average_per_workday(self):
        self.assertEqual(average_per_workday(100, 20), 5)

    def test_average_zero_workdays(self):
        self.assertEqual(average_per_workday(100, 0), 0)

    def test_rank_top_is_stable_and_truncated(self):
        items = [('a', 1), ('b', 5), ('c', 5), ('d', 3)]
        ranked = rank_top(items, key=lambda x: x[1], top_n=3)
        self.assertEqual([name for name, _ in ranked], ['b', 'c', 'd'])

    def test_sunday_first_weekday(self):
        self.assertEqual(sunday_first_weekday(date(2024, 1, 7).weekday()), 0)  # Sunday
        self.assertEqual(sunday_first_weekday(date(2024, 1, 1).weekday()), 1)  # Monday
        self.assertEqual(sunday_first_weekday(date(2024, 1, 6).weekday()), 6)  # Saturday


if __name__ == '__main__':
    unittest.main()
