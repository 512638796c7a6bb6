from __future__ import annotations

from datetime import date
import unittest

from mizan.recurrence import (
    EndDate,
    Frequency,
    OccurrenceCount,
    RecurrenceRule,
    RecurrenceValidationError,
    Weekday,
)

MONDAY = date(2025, 1, 6)
TUESDAY = date(2025, 1, 7)
WEDNESDAY = date(2025, 1, 8)


class NextOccurrenceTest(unittest.TestCase):
    def test_daily_adds_interval_days(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.DAILY, interval=2)
        self.assertEqual(rule.next_occurrence(MONDAY), WEDNESDAY)

    def test_weekly_without_days_adds_interval_weeks(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=2)
        self.assertEqual(rule.next_occurrence(MONDAY), date(2025, 1, 20))

    def test_weekly_with_empty_day_set_falls_back_to_interval(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=1, days_of_week=frozenset())
        self.assertEqual(rule.next_occurrence(TUESDAY), date(2025, 1, 14))

    def test_weekly_day_set_same_week(self) -> None:
        rule = RecurrenceRule(
            frequency=Frequency.WEEKLY,
            days_of_week=frozenset({Weekday.MONDAY, Weekday.WEDNESDAY}),
        )
        self.assertEqual(rule.next_occurrence(TUESDAY), WEDNESDAY)

    def test_weekly_day_set_wraps_to_next_week(self) -> None:
        rule = RecurrenceRule(
            frequency=Frequency.WEEKLY,
            days_of_week=frozenset({Weekday.MONDAY, Weekday.WEDNESDAY}),
        )
        self.assertEqual(rule.next_occurrence(WEDNESDAY), date(2025, 1, 13))

    def test_weekly_day_set_always_lands_on_listed_weekday(self) -> None:
        days = frozenset({Weekday.FRIDAY, Weekday.SUNDAY})
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=days)
        current = MONDAY
        for _ in range(20):
            current = rule.next_occurrence(current)
            self.assertIn(current.weekday(), days)

    def test_monthly_clamps_to_month_end(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.MONTHLY)
        self.assertEqual(rule.next_occurrence(date(2024, 1, 31)), date(2024, 2, 29))
        self.assertEqual(rule.next_occurrence(date(2023, 1, 31)), date(2023, 2, 28))

    def test_monthly_interval(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.MONTHLY, interval=3)
        self.assertEqual(rule.next_occurrence(date(2025, 11, 15)), date(2026, 2, 15))


class ValidationTest(unittest.TestCase):
    def test_zero_interval_rejected(self) -> None:
        with self.assertRaises(RecurrenceValidationError):
            RecurrenceRule(frequency=Frequency.DAILY, interval=0)

    def test_unknown_weekday_rejected(self) -> None:
        with self.assertRaises(RecurrenceValidationError):
            RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=frozenset({7}))

    def test_zero_occurrence_count_rejected(self) -> None:
        with self.assertRaises(RecurrenceValidationError):
            RecurrenceRule(frequency=Frequency.DAILY, end_condition=OccurrenceCount(0))

    def test_plain_ints_become_weekdays(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=frozenset({0, 2}))
        self.assertEqual(rule.days_of_week, frozenset({Weekday.MONDAY, Weekday.WEDNESDAY}))


class TerminationTest(unittest.TestCase):
    def test_end_date_is_inclusive(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.DAILY, end_condition=EndDate(WEDNESDAY))
        self.assertFalse(rule.should_terminate(WEDNESDAY))
        self.assertTrue(rule.should_terminate(date(2025, 1, 9)))

    def test_occurrence_count_tracked_by_caller(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.DAILY, end_condition=OccurrenceCount(3))
        self.assertFalse(rule.should_terminate(MONDAY, occurrences_so_far=2))
        self.assertTrue(rule.should_terminate(MONDAY, occurrences_so_far=3))

    def test_occurrences_respect_count(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.DAILY, end_condition=OccurrenceCount(3))
        self.assertEqual(
            list(rule.occurrences(MONDAY, date(2025, 1, 31))),
            [MONDAY, TUESDAY, WEDNESDAY],
        )

    def test_occurrences_stop_at_until(self) -> None:
        rule = RecurrenceRule(frequency=Frequency.WEEKLY)
        self.assertEqual(list(rule.occurrences(MONDAY, date(2025, 1, 19))), [MONDAY, date(2025, 1, 13)])

    def test_describe(self) -> None:
        self.assertEqual(RecurrenceRule(frequency=Frequency.DAILY).describe(), "Daily")
        self.assertEqual(RecurrenceRule(frequency=Frequency.MONTHLY, interval=2).describe(), "Every 2 months")
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=frozenset({2, 0}))
        self.assertEqual(rule.describe(), "Weekly on Monday, Wednesday")


if __name__ == "__main__":
    unittest.main()
