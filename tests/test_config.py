from __future__ import annotations

from datetime import time, timedelta
import tempfile
import textwrap
import unittest
from pathlib import Path

from mizan.config import ConfigManager, MizanConfig, PrayerOverrides
from mizan.models import PrayerKind
from mizan.nawafil import ClipPolicy


class ConfigManagerTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self._tmpdir.name) / "mizan" / "config.toml"

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def write(self, content: str) -> ConfigManager:
        manager = ConfigManager(self.path)
        self.path.write_text(textwrap.dedent(content), encoding="utf-8")
        return manager

    def test_missing_file_writes_defaults(self) -> None:
        manager = ConfigManager(self.path)
        config = manager.load()
        self.assertTrue(self.path.exists())
        self.assertEqual(config.to_dict(), MizanConfig.default().to_dict())
        self.assertEqual(ConfigManager(self.path).load().to_dict(), config.to_dict())
        self.assertEqual(manager.errors(), [])

    def test_reads_sections(self) -> None:
        manager = self.write(
            """
            [prayers]
            fajr = "05:30"
            dhuhr = "12:10"

            [iqama_offsets]
            dhuhr = "0:20"

            [prayer_buffers]
            before = "10m"

            [nawafil]
            enabled = ["witr", "qiyam"]
            attached_before_policy = "reject"

            [slots]
            step = "15m"
            max_attempts = 96

            [conflicts]
            detect_task_overlap = true
            """
        )
        config = manager.load()
        self.assertEqual(config.prayers.fajr, time(5, 30))
        self.assertEqual(config.prayers.asr, time(15, 30))
        self.assertEqual(config.iqama_offsets.for_prayer(PrayerKind.DHUHR), timedelta(minutes=20))
        self.assertEqual(config.iqama_offsets.for_prayer(PrayerKind.FAJR), timedelta(minutes=20))
        self.assertEqual(config.buffers.before, timedelta(minutes=10))
        self.assertEqual(config.buffers.after, timedelta(minutes=5))
        self.assertEqual(config.nawafil.enabled, ["witr", "qiyam"])
        self.assertIs(config.nawafil.attached_before_policy, ClipPolicy.REJECT)
        self.assertEqual(config.slots.step, timedelta(minutes=15))
        self.assertEqual(config.slots.max_attempts, 96)
        self.assertTrue(config.conflicts.detect_task_overlap)
        self.assertEqual(manager.errors(), [])

    def test_invalid_sections_fall_back(self) -> None:
        manager = self.write(
            """
            [prayer_durations]
            fajr = "soon"

            [nawafil]
            enabled = ["tahajjud"]

            [slots]
            max_attempts = 0
            """
        )
        config = manager.load()
        self.assertEqual(config.durations.to_dict(), MizanConfig.default().durations.to_dict())
        self.assertEqual(config.nawafil.enabled, MizanConfig.default().nawafil.enabled)
        self.assertEqual(config.slots.max_attempts, 48)
        errors = manager.errors()
        self.assertEqual(len(errors), 3)
        self.assertTrue(any("nawafil" in error for error in errors))

    def test_save_round_trips(self) -> None:
        manager = ConfigManager(self.path)
        config = MizanConfig.default()
        config.location.city = "Istanbul"
        config.prayer_overrides = PrayerOverrides(isha=PrayerOverrides.Relative(base="maghrib", minutes=90))
        manager.save(config)
        reloaded = manager.load()
        self.assertEqual(reloaded.location.city, "Istanbul")
        self.assertEqual(reloaded.prayer_overrides.isha, PrayerOverrides.Relative(base="maghrib", minutes=90))


class PrayerOverridesTest(unittest.TestCase):
    def test_parses_absolute_and_relative(self) -> None:
        overrides = PrayerOverrides.from_dict({"fajr": "04:45", "isha": "maghrib + 90", "asr": "dhuhr-5"})
        self.assertEqual(overrides.fajr, time(4, 45))
        self.assertEqual(overrides.isha, PrayerOverrides.Relative(base="maghrib", minutes=90))
        self.assertEqual(overrides.asr, PrayerOverrides.Relative(base="dhuhr", minutes=-5))
        self.assertIsNone(overrides.dhuhr)
        self.assertFalse(overrides.is_empty())

    def test_rejects_garbage(self) -> None:
        with self.assertRaises(ValueError):
            PrayerOverrides.from_dict({"fajr": "whenever"})

    def test_formats_relative(self) -> None:
        overrides = PrayerOverrides(asr=PrayerOverrides.Relative(base="dhuhr", minutes=-5))
        self.assertEqual(overrides.to_dict()["asr"], "dhuhr - 5")
        self.assertTrue(PrayerOverrides().is_empty())


if __name__ == "__main__":
    unittest.main()
