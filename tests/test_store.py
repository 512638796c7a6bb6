from __future__ import annotations

from datetime import date, datetime, time, timedelta
import json
import tempfile
import unittest
from pathlib import Path

from mizan.models import Task, TaskCategory, TimeSpan
from mizan.nawafil import NawafilPreference, NawafilState
from mizan.recurrence import Frequency, RecurrenceRule
from mizan.store import PlannerStore

DAY = date(2025, 1, 6)


class PlannerStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self._tmpdir.name) / "planner.json"
        self.store = PlannerStore(self.path)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_tasks_persist(self) -> None:
        gym = Task(
            id="gym",
            title="Gym",
            duration=timedelta(hours=1),
            category=TaskCategory.HEALTH,
            scheduled_span=TimeSpan.of(datetime(2025, 1, 6, 7), timedelta(hours=1)),
            recurrence=RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=frozenset({0, 2})),
        )
        inbox = Task(id="read", title="Read", duration=timedelta(minutes=30), notes="chapter 3")
        self.store.save_tasks([gym, inbox])

        reloaded = PlannerStore(self.path)
        self.assertEqual(reloaded.get_task("gym"), gym)
        self.assertEqual(reloaded.get_task("read"), inbox)
        reloaded.remove_task("read")
        self.assertIsNone(PlannerStore(self.path).get_task("read"))

    def test_preferences_persist(self) -> None:
        preference = NawafilPreference(type_id="duha", rakaat=4, custom_time=time(9, 0))
        self.store.save_preference(preference)
        self.assertEqual(PlannerStore(self.path).preferences(), {"duha": preference})

    def test_nawafil_state_persists(self) -> None:
        self.store.set_nawafil_completed("witr", DAY, True)
        self.store.set_nawafil_dismissed("duha", DAY, True)
        reloaded = PlannerStore(self.path)
        self.assertEqual(reloaded.nawafil_state("witr", DAY), NawafilState(completed=True))
        self.assertEqual(reloaded.nawafil_state("duha", DAY), NawafilState(dismissed=True))
        self.assertEqual(reloaded.nawafil_state("witr", DAY + timedelta(days=1)), NawafilState())

    def test_prune_drops_old_days(self) -> None:
        self.store.set_nawafil_completed("witr", DAY, True)
        self.store.set_nawafil_completed("witr", DAY + timedelta(days=3), True)
        self.store.prune_nawafil_states(DAY + timedelta(days=1))
        reloaded = PlannerStore(self.path)
        self.assertFalse(reloaded.nawafil_state("witr", DAY).completed)
        self.assertTrue(reloaded.nawafil_state("witr", DAY + timedelta(days=3)).completed)

    def test_snapshot_is_read_only(self) -> None:
        self.store.save_task(Task(id="b", title="B", duration=timedelta(minutes=10)))
        self.store.save_task(Task(id="a", title="A", duration=timedelta(minutes=10)))
        self.store.set_nawafil_completed("witr", DAY, True)
        snapshot = self.store.snapshot()
        self.assertEqual([task.id for task in snapshot.tasks], ["a", "b"])
        self.assertTrue(snapshot.nawafil_states[("witr", DAY)].completed)
        with self.assertRaises(TypeError):
            snapshot.preferences["duha"] = NawafilPreference(type_id="duha")

    def test_corrupt_file_is_ignored(self) -> None:
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertLogs("mizan.store", level="WARNING"):
            store = PlannerStore(self.path)
        self.assertEqual(store.tasks(), [])

    def test_malformed_preference_is_skipped(self) -> None:
        payload = {
            "nawafil_preferences": [
                {"type_id": "duha", "rakaat": "four"},
                {"type_id": "witr", "rakaat": 5},
            ]
        }
        self.path.write_text(json.dumps(payload), encoding="utf-8")
        with self.assertLogs("mizan.store", level="WARNING"):
            store = PlannerStore(self.path)
        self.assertEqual(store.preferences(), {"witr": NawafilPreference(type_id="witr", rakaat=5)})

    def test_malformed_task_is_skipped(self) -> None:
        payload = {
            "tasks": [
                {"id": "ok", "title": "Fine", "duration_minutes": 20},
                {"id": "bad", "title": "Broken", "duration_minutes": 0},
            ]
        }
        self.path.write_text(json.dumps(payload), encoding="utf-8")
        store = PlannerStore(self.path)
        self.assertEqual([task.id for task in store.tasks()], ["ok"])


if __name__ == "__main__":
    unittest.main()
