from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Protocol

from ..config import LocationSettings, MizanConfig, PrayerOverrides, PrayerSchedule
from ..models import Anchor, PrayerKind

FRIDAY = 4
_REFERENCE_DAY = date(2000, 1, 2)


class PrayerTimeProvider(Protocol):
    """Source of the day's fard anchors, in prayer order."""

    def anchors_for(self, day: date, location: LocationSettings) -> list[Anchor]:
        ...


class ConfiguredPrayerTimes:
    """Builds anchors from the static ``[prayers]`` table of the config."""

    name = "configured"

    def __init__(self, config: MizanConfig) -> None:
        self.config = config

    def anchors_for(self, day: date, location: LocationSettings) -> list[Anchor]:
        schedule = apply_overrides(self.config.prayers, self.config.prayer_overrides)
        return anchors_from_schedule(day, schedule, self.config)


def anchors_from_schedule(day: date, schedule: PrayerSchedule, config: MizanConfig) -> list[Anchor]:
    buffer_before, buffer_after = config.buffers.capped()
    anchors: list[Anchor] = []
    for kind in PrayerKind:
        adhan = datetime.combine(day, schedule.time_for(kind))
        if kind is PrayerKind.DHUHR and day.weekday() == FRIDAY and config.jummah.enabled:
            jummah = config.jummah
            anchors.append(
                Anchor(
                    kind=kind,
                    adhan=adhan + jummah.offset_from_dhuhr,
                    iqama_offset=config.iqama_offsets.for_prayer(kind),
                    fixed_duration=jummah.duration,
                    buffer_before=jummah.buffer_before,
                    buffer_after=jummah.buffer_after,
                    is_jummah=True,
                )
            )
            continue
        anchors.append(
            Anchor(
                kind=kind,
                adhan=adhan,
                iqama_offset=config.iqama_offsets.for_prayer(kind),
                fixed_duration=config.durations.for_prayer(kind),
                buffer_before=buffer_before,
                buffer_after=buffer_after,
            )
        )
    return anchors


def apply_overrides(schedule: PrayerSchedule, overrides: PrayerOverrides | None) -> PrayerSchedule:
    if not overrides or overrides.is_empty():
        return schedule

    def _resolve_override(value, fallback: time) -> time:
        if value is None:
            return fallback
        if isinstance(value, time):
            return value
        base_time = getattr(schedule, value.base, None)
        if not isinstance(base_time, time):
            return fallback
        shifted = datetime.combine(_REFERENCE_DAY, base_time) + timedelta(minutes=value.minutes)
        return shifted.time()

    return PrayerSchedule(
        fajr=_resolve_override(overrides.fajr, schedule.fajr),
        dhuhr=_resolve_override(overrides.dhuhr, schedule.dhuhr),
        asr=_resolve_override(overrides.asr, schedule.asr),
        maghrib=_resolve_override(overrides.maghrib, schedule.maghrib),
        isha=_resolve_override(overrides.isha, schedule.isha),
        sunrise=schedule.sunrise,
    )
