from __future__ import annotations

from datetime import datetime, timedelta
import unittest

from mizan.conflicts import Conflict, ConflictDetector, ConflictKind, PrayerConflict, TaskConflict
from mizan.models import Anchor, PrayerKind, TimeSpan


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 6, hour, minute)


def _span(start: datetime, minutes: int) -> TimeSpan:
    return TimeSpan.of(start, timedelta(minutes=minutes))


class ConflictDetectorTest(unittest.TestCase):
    def setUp(self) -> None:
        # Protected span [11:55, 12:40)
        self.dhuhr = Anchor(
            kind=PrayerKind.DHUHR,
            adhan=_at(12),
            iqama_offset=timedelta(minutes=20),
            fixed_duration=timedelta(minutes=15),
            buffer_before=timedelta(minutes=5),
            buffer_after=timedelta(minutes=5),
        )
        self.detector = ConflictDetector()

    def test_free_candidate(self) -> None:
        self.assertIsNone(self.detector.find_conflict(_span(_at(9), 60), [self.dhuhr]))

    def test_buffer_counts_as_protected(self) -> None:
        conflict = self.detector.find_conflict(_span(_at(11, 30), 30), [self.dhuhr])
        self.assertIsInstance(conflict, PrayerConflict)
        self.assertIs(conflict.anchor, self.dhuhr)

    def test_touching_protected_span_is_allowed(self) -> None:
        self.assertIsNone(self.detector.find_conflict(_span(_at(11, 25), 30), [self.dhuhr]))
        self.assertIsNone(self.detector.find_conflict(_span(_at(12, 40), 30), [self.dhuhr]))

    def test_task_overlap_ignored_by_default(self) -> None:
        placed = [_span(_at(9), 60)]
        self.assertIsNone(self.detector.find_conflict(_span(_at(9, 30), 60), [self.dhuhr], placed))

    def test_task_overlap_reported_with_index(self) -> None:
        detector = ConflictDetector(detect_task_overlap=True)
        placed = [_span(_at(7), 30), _span(_at(9), 60)]
        conflict = detector.find_conflict(_span(_at(9, 30), 60), [self.dhuhr], placed)
        self.assertEqual(conflict, TaskConflict(span=placed[1], index=1))

    def test_prayer_conflict_takes_priority(self) -> None:
        detector = ConflictDetector(detect_task_overlap=True)
        placed = [_span(_at(11, 30), 60)]
        conflict = detector.find_conflict(_span(_at(11, 45), 30), [self.dhuhr], placed)
        self.assertIsInstance(conflict, PrayerConflict)

    def test_conflict_serialises(self) -> None:
        conflict = Conflict(
            kind=ConflictKind.NEEDS_RESCHEDULING,
            task_id="t1",
            span=_span(_at(12), 60),
            anchor=PrayerKind.DHUHR,
        )
        payload = conflict.to_dict()
        self.assertEqual(payload["kind"], "needs_rescheduling")
        self.assertEqual(payload["anchor"], "dhuhr")
        self.assertIsNone(payload["other_task_id"])


if __name__ == "__main__":
    unittest.main()
