from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta, time
import logging
import re
from pathlib import Path
import tomllib

from .models import PrayerKind
from .nawafil import DEFAULT_NAWAFIL_TYPES, ClipPolicy
from .timeutils import format_duration, format_hhmm, parse_duration, parse_hhmm

logger = logging.getLogger(__name__)

MAX_BUFFER = timedelta(minutes=30)


def _default_config_root() -> Path:
    return Path.home() / ".config" / "mizan"


def _maybe_parse_time(value: str | None) -> time | None:
    if not value:
        return None
    return parse_hhmm(value)


def _minutes(value: int) -> timedelta:
    return timedelta(minutes=value)


@dataclass(slots=True)
class LocationSettings:
    city: str = ""
    country: str = ""
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None


@dataclass(slots=True)
class PrayerSchedule:
    fajr: time
    dhuhr: time
    asr: time
    maghrib: time
    isha: time
    sunrise: time | None = None

    @classmethod
    def from_dict(cls, values: dict[str, str]) -> "PrayerSchedule":
        return cls(
            fajr=parse_hhmm(values.get("fajr", "05:00")),
            dhuhr=parse_hhmm(values.get("dhuhr", "12:30")),
            asr=parse_hhmm(values.get("asr", "15:30")),
            maghrib=parse_hhmm(values.get("maghrib", "18:05")),
            isha=parse_hhmm(values.get("isha", "19:45")),
            sunrise=_maybe_parse_time(values.get("sunrise")),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "fajr": format_hhmm(self.fajr),
            "dhuhr": format_hhmm(self.dhuhr),
            "asr": format_hhmm(self.asr),
            "maghrib": format_hhmm(self.maghrib),
            "isha": format_hhmm(self.isha),
            "sunrise": format_hhmm(self.sunrise) if self.sunrise else "",
        }

    def time_for(self, kind: PrayerKind) -> time:
        return getattr(self, kind.value)


@dataclass(slots=True)
class PerPrayerDurations:
    """One duration per fard prayer, read from a TOML table of ``H:MM`` strings."""

    fajr: timedelta
    dhuhr: timedelta
    asr: timedelta
    maghrib: timedelta
    isha: timedelta

    DEFAULTS = {}

    @classmethod
    def from_dict(cls, values: dict[str, str]):
        def read(key: str) -> timedelta:
            raw = values.get(key)
            return parse_duration(raw) if raw else cls.DEFAULTS[key]

        return cls(**{kind.value: read(kind.value) for kind in PrayerKind})

    @classmethod
    def default(cls):
        return cls(**cls.DEFAULTS)

    def to_dict(self) -> dict[str, str]:
        return {kind.value: format_duration(self.for_prayer(kind)) for kind in PrayerKind}

    def for_prayer(self, kind: PrayerKind) -> timedelta:
        return getattr(self, kind.value)


@dataclass(slots=True)
class PrayerDurations(PerPrayerDurations):
    DEFAULTS = {
        "fajr": _minutes(15),
        "dhuhr": _minutes(20),
        "asr": _minutes(20),
        "maghrib": _minutes(15),
        "isha": _minutes(20),
    }


@dataclass(slots=True)
class IqamaOffsets(PerPrayerDurations):
    DEFAULTS = {
        "fajr": _minutes(20),
        "dhuhr": _minutes(15),
        "asr": _minutes(10),
        "maghrib": _minutes(5),
        "isha": _minutes(10),
    }


@dataclass(slots=True)
class PrayerBuffers:
    before: timedelta = field(default_factory=lambda: _minutes(5))
    after: timedelta = field(default_factory=lambda: _minutes(5))

    @classmethod
    def from_dict(cls, values: dict[str, str]) -> "PrayerBuffers":
        return cls(
            before=parse_duration(values.get("before", "5m")),
            after=parse_duration(values.get("after", "5m")),
        )

    def to_dict(self) -> dict[str, str]:
        return {"before": format_duration(self.before), "after": format_duration(self.after)}

    def capped(self) -> tuple[timedelta, timedelta]:
        return min(self.before, MAX_BUFFER), min(self.after, MAX_BUFFER)


@dataclass(slots=True)
class JummahSettings:
    enabled: bool = True
    duration: timedelta = field(default_factory=lambda: _minutes(45))
    offset_from_dhuhr: timedelta = field(default_factory=timedelta)
    buffer_before: timedelta = field(default_factory=lambda: _minutes(10))
    buffer_after: timedelta = field(default_factory=lambda: _minutes(10))

    @classmethod
    def from_dict(cls, values: dict[str, object]) -> "JummahSettings":
        return cls(
            enabled=bool(values.get("enabled", True)),
            duration=parse_duration(str(values.get("duration", "0:45"))),
            offset_from_dhuhr=parse_duration(str(values.get("offset_from_dhuhr", "0"))),
            buffer_before=parse_duration(str(values.get("buffer_before", "0:10"))),
            buffer_after=parse_duration(str(values.get("buffer_after", "0:10"))),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "duration": format_duration(self.duration),
            "offset_from_dhuhr": format_duration(self.offset_from_dhuhr),
            "buffer_before": format_duration(self.buffer_before),
            "buffer_after": format_duration(self.buffer_after),
        }


@dataclass(slots=True)
class PrayerOverrides:
    fajr: time | None = None
    dhuhr: time | None = None
    asr: time | None = None
    maghrib: time | None = None
    isha: time | None = None
    # note: overrides can be either an absolute time (HH:MM) or a relative expression like "sunrise - 25"

    @dataclass(slots=True)
    class Relative:
        base: str
        minutes: int

    @classmethod
    def from_dict(cls, values: dict[str, str]) -> "PrayerOverrides":
        def _parse(value: str | None):
            if not value:
                return None
            value = value.strip()
            try:
                return _maybe_parse_time(value)
            except ValueError:
                pass
            m = re.match(r"^([a-zA-Z_]+)\s*([+-])\s*(\d+)$", value)
            if not m:
                raise ValueError(f"Unsupported prayer override: {value}")
            base = m.group(1).strip().lower()
            sign = m.group(2)
            mins = int(m.group(3))
            if sign == "-":
                mins = -mins
            return cls.Relative(base=base, minutes=mins)

        return cls(**{kind.value: _parse(values.get(kind.value)) for kind in PrayerKind})

    def to_dict(self) -> dict[str, str]:
        def fmt_rel(value: object | None) -> str:
            if value is None:
                return ""
            if isinstance(value, time):
                return format_hhmm(value)
            if isinstance(value, PrayerOverrides.Relative):
                return f"{value.base} {'+' if value.minutes >= 0 else '-'} {abs(value.minutes)}"
            return ""

        return {kind.value: fmt_rel(getattr(self, kind.value)) for kind in PrayerKind}

    def is_empty(self) -> bool:
        return not any(getattr(self, kind.value) for kind in PrayerKind)


@dataclass(slots=True)
class NawafilSettings:
    enabled: list[str] = field(default_factory=lambda: [t.id for t in DEFAULT_NAWAFIL_TYPES if t.id != "qiyam"])
    settle_delay: timedelta = field(default_factory=lambda: _minutes(2))
    sunrise_offset: timedelta = field(default_factory=lambda: _minutes(30))
    mid_morning_offset: timedelta = field(default_factory=lambda: _minutes(15))
    attached_before_policy: ClipPolicy = ClipPolicy.CLIP


@dataclass(slots=True)
class SlotSettings:
    step: timedelta = field(default_factory=lambda: _minutes(30))
    max_attempts: int = 48
    minimum_free: timedelta = field(default_factory=lambda: _minutes(15))
    respect_placed: bool = False


@dataclass(slots=True)
class ConflictSettings:
    detect_task_overlap: bool = False


@dataclass(slots=True)
class MizanConfig:
    location: LocationSettings = field(default_factory=LocationSettings)
    prayers: PrayerSchedule = field(default_factory=lambda: PrayerSchedule.from_dict({}))
    durations: PrayerDurations = field(default_factory=PrayerDurations.default)
    iqama_offsets: IqamaOffsets = field(default_factory=IqamaOffsets.default)
    buffers: PrayerBuffers = field(default_factory=PrayerBuffers)
    jummah: JummahSettings = field(default_factory=JummahSettings)
    prayer_overrides: PrayerOverrides = field(default_factory=PrayerOverrides)
    nawafil: NawafilSettings = field(default_factory=NawafilSettings)
    slots: SlotSettings = field(default_factory=SlotSettings)
    conflicts: ConflictSettings = field(default_factory=ConflictSettings)

    @classmethod
    def default(cls) -> "MizanConfig":
        return cls()

    def to_dict(self) -> dict:
        return {
            "location": {
                "city": self.location.city,
                "country": self.location.country,
                "latitude": self.location.latitude,
                "longitude": self.location.longitude,
                "timezone": self.location.timezone,
            },
            "prayers": self.prayers.to_dict(),
            "prayer_durations": self.durations.to_dict(),
            "iqama_offsets": self.iqama_offsets.to_dict(),
            "prayer_buffers": self.buffers.to_dict(),
            "jummah": self.jummah.to_dict(),
            "prayer_overrides": self.prayer_overrides.to_dict(),
            "nawafil": {
                "enabled": list(self.nawafil.enabled),
                "settle_delay": format_duration(self.nawafil.settle_delay),
                "sunrise_offset": format_duration(self.nawafil.sunrise_offset),
                "mid_morning_offset": format_duration(self.nawafil.mid_morning_offset),
                "attached_before_policy": self.nawafil.attached_before_policy.value,
            },
            "slots": {
                "step": format_duration(self.slots.step),
                "max_attempts": self.slots.max_attempts,
                "minimum_free": format_duration(self.slots.minimum_free),
                "respect_placed": self.slots.respect_placed,
            },
            "conflicts": {"detect_task_overlap": self.conflicts.detect_task_overlap},
        }


class ConfigManager:
    """Simple TOML configuration loader."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path or (_default_config_root() / "config.toml")
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self._errors: list[str] = []

    def errors(self) -> list[str]:
        return list(self._errors)

    def _section(self, label: str, parse, fallback):
        try:
            return parse()
        except (ValueError, TypeError, KeyError) as exc:
            message = f"Invalid {label} in config: {exc}"
            logger.warning(message)
            self._errors.append(message)
            return fallback()

    def load(self) -> MizanConfig:
        self._errors.clear()
        if not self.config_path.exists():
            config = MizanConfig.default()
            self._write(config)
            return config

        with self.config_path.open("rb") as handle:
            raw = tomllib.load(handle)

        location_cfg = raw.get("location", {})
        nawafil_cfg = raw.get("nawafil", {})
        slots_cfg = raw.get("slots", {})

        def _float_or_none(value: float | str | None) -> float | None:
            if value in (None, "", "nan"):
                return None
            try:
                return float(value)
            except (TypeError, ValueError):
                return None

        def _nawafil() -> NawafilSettings:
            defaults = NawafilSettings()
            known = {t.id for t in DEFAULT_NAWAFIL_TYPES}
            enabled = nawafil_cfg.get("enabled", defaults.enabled)
            unknown = [type_id for type_id in enabled if type_id not in known]
            if unknown:
                raise ValueError(f"unknown nawafil types {unknown}")
            return NawafilSettings(
                enabled=list(enabled),
                settle_delay=parse_duration(nawafil_cfg.get("settle_delay", "2m")),
                sunrise_offset=parse_duration(nawafil_cfg.get("sunrise_offset", "30m")),
                mid_morning_offset=parse_duration(nawafil_cfg.get("mid_morning_offset", "15m")),
                attached_before_policy=ClipPolicy(nawafil_cfg.get("attached_before_policy", "clip")),
            )

        def _slots() -> SlotSettings:
            max_attempts = int(slots_cfg.get("max_attempts", 48))
            if max_attempts < 1:
                raise ValueError("max_attempts must be >= 1")
            return SlotSettings(
                step=parse_duration(slots_cfg.get("step", "30m")),
                max_attempts=max_attempts,
                minimum_free=parse_duration(slots_cfg.get("minimum_free", "15m")),
                respect_placed=bool(slots_cfg.get("respect_placed", False)),
            )

        return MizanConfig(
            location=LocationSettings(
                city=location_cfg.get("city", ""),
                country=location_cfg.get("country", ""),
                latitude=_float_or_none(location_cfg.get("latitude")),
                longitude=_float_or_none(location_cfg.get("longitude")),
                timezone=location_cfg.get("timezone") or None,
            ),
            prayers=self._section(
                "prayer time",
                lambda: PrayerSchedule.from_dict(raw.get("prayers", {})),
                lambda: PrayerSchedule.from_dict({}),
            ),
            durations=self._section(
                "prayer_durations",
                lambda: PrayerDurations.from_dict(raw.get("prayer_durations", {})),
                PrayerDurations.default,
            ),
            iqama_offsets=self._section(
                "iqama_offsets",
                lambda: IqamaOffsets.from_dict(raw.get("iqama_offsets", {})),
                IqamaOffsets.default,
            ),
            buffers=self._section(
                "prayer_buffers",
                lambda: PrayerBuffers.from_dict(raw.get("prayer_buffers", {})),
                PrayerBuffers,
            ),
            jummah=self._section(
                "jummah",
                lambda: JummahSettings.from_dict(raw.get("jummah", {})),
                JummahSettings,
            ),
            prayer_overrides=self._section(
                "prayer_overrides",
                lambda: PrayerOverrides.from_dict(raw.get("prayer_overrides", {})),
                PrayerOverrides,
            ),
            nawafil=self._section("nawafil", _nawafil, NawafilSettings),
            slots=self._section("slots", _slots, SlotSettings),
            conflicts=ConflictSettings(
                detect_task_overlap=bool(raw.get("conflicts", {}).get("detect_task_overlap", False)),
            ),
        )

    def _write(self, config: MizanConfig) -> None:
        data = config.to_dict()
        lines = ["[location]"]
        lines.append(f"city = \"{data['location']['city']}\"")
        lines.append(f"country = \"{data['location']['country']}\"")
        if data["location"]["latitude"] is not None:
            lines.append(f"latitude = {data['location']['latitude']}")
        if data["location"]["longitude"] is not None:
            lines.append(f"longitude = {data['location']['longitude']}")
        lines.append(f"timezone = \"{data['location']['timezone'] or ''}\"")
        for section in ("prayers", "prayer_durations", "iqama_offsets", "prayer_buffers", "prayer_overrides"):
            lines.extend(["", f"[{section}]"])
            for key, value in data[section].items():
                lines.append(f"{key} = \"{value}\"")
        jummah = data["jummah"]
        lines.extend([
            "",
            "[jummah]",
            f"enabled = {str(jummah['enabled']).lower()}",
            f"duration = \"{jummah['duration']}\"",
            f"offset_from_dhuhr = \"{jummah['offset_from_dhuhr']}\"",
            f"buffer_before = \"{jummah['buffer_before']}\"",
            f"buffer_after = \"{jummah['buffer_after']}\"",
        ])
        nawafil = data["nawafil"]
        enabled = ", ".join(f"\"{type_id}\"" for type_id in nawafil["enabled"])
        lines.extend([
            "",
            "[nawafil]",
            f"enabled = [{enabled}]",
            f"settle_delay = \"{nawafil['settle_delay']}\"",
            f"sunrise_offset = \"{nawafil['sunrise_offset']}\"",
            f"mid_morning_offset = \"{nawafil['mid_morning_offset']}\"",
            f"attached_before_policy = \"{nawafil['attached_before_policy']}\"",
        ])
        slots = data["slots"]
        lines.extend([
            "",
            "[slots]",
            f"step = \"{slots['step']}\"",
            f"max_attempts = {slots['max_attempts']}",
            f"minimum_free = \"{slots['minimum_free']}\"",
            f"respect_placed = {str(slots['respect_placed']).lower()}",
            "",
            "[conflicts]",
            f"detect_task_overlap = {str(data['conflicts']['detect_task_overlap']).lower()}",
        ])
        self.config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def save(self, config: MizanConfig) -> None:
        self._write(config)
