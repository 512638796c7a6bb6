from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
import logging
from typing import Any, Iterable, Mapping

from .models import Anchor, AttachmentPosition, InvalidSpan, NawafilItem, PrayerKind, TimeSpan, index_anchors
from .timeutils import format_hhmm, minutes

logger = logging.getLogger(__name__)

MINUTES_PER_RAKAA = 3
SNAP_THRESHOLD_MINUTES = 5
SNAP_STEP_MINUTES = 10


class DerivationError(Exception):
    pass


class MissingAnchor(DerivationError):
    def __init__(self, prayer: PrayerKind) -> None:
        self.prayer = prayer
        super().__init__(f"No {prayer.label} anchor for this day")


class AttachedWindowTooShort(DerivationError):
    def __init__(self, prayer: PrayerKind, available: timedelta, requested: timedelta) -> None:
        self.prayer = prayer
        self.available = available
        self.requested = requested
        super().__init__(
            f"Only {minutes(available)} min before {prayer.label} iqama, {minutes(requested)} min requested"
        )


class ClipPolicy(str, Enum):
    CLIP = "clip"
    REJECT = "reject"


class StandaloneRule(str, Enum):
    MID_MORNING = "mid_morning"
    LAST_THIRD_OF_NIGHT = "last_third_of_night"


@dataclass(frozen=True, slots=True)
class AttachedBefore:
    prayer: PrayerKind


@dataclass(frozen=True, slots=True)
class AttachedAfter:
    prayer: PrayerKind


@dataclass(frozen=True, slots=True)
class Standalone:
    rule: StandaloneRule


TimingStrategy = AttachedBefore | AttachedAfter | Standalone


@dataclass(frozen=True, slots=True)
class RakaatRange:
    minimum: int
    maximum: int
    default: int
    odd_only: bool = False

    @classmethod
    def fixed(cls, rakaat: int) -> "RakaatRange":
        return cls(minimum=rakaat, maximum=rakaat, default=rakaat)

    def clamp(self, value: int) -> int:
        clamped = max(self.minimum, min(self.maximum, value))
        if self.odd_only and clamped % 2 == 0:
            clamped = clamped - 1 if clamped - 1 >= self.minimum else clamped + 1
        return clamped


@dataclass(frozen=True, slots=True)
class NawafilType:
    id: str
    name: str
    rakaat: RakaatRange
    timing: TimingStrategy
    block_duration: timedelta | None = None

    @property
    def is_time_block(self) -> bool:
        return self.block_duration is not None

    @property
    def attached_anchor(self) -> PrayerKind | None:
        if isinstance(self.timing, (AttachedBefore, AttachedAfter)):
            return self.timing.prayer
        return None

    @property
    def attachment(self) -> AttachmentPosition | None:
        if isinstance(self.timing, AttachedBefore):
            return AttachmentPosition.BEFORE
        if isinstance(self.timing, AttachedAfter):
            return AttachmentPosition.AFTER
        return None


DEFAULT_NAWAFIL_TYPES: tuple[NawafilType, ...] = (
    NawafilType("sunnah_fajr", "Sunnah of Fajr", RakaatRange.fixed(2), AttachedBefore(PrayerKind.FAJR)),
    NawafilType("sunnah_dhuhr_before", "Sunnah before Dhuhr", RakaatRange.fixed(4), AttachedBefore(PrayerKind.DHUHR)),
    NawafilType("sunnah_dhuhr_after", "Sunnah after Dhuhr", RakaatRange.fixed(2), AttachedAfter(PrayerKind.DHUHR)),
    NawafilType("sunnah_maghrib", "Sunnah of Maghrib", RakaatRange.fixed(2), AttachedAfter(PrayerKind.MAGHRIB)),
    NawafilType("sunnah_isha", "Sunnah of Isha", RakaatRange.fixed(2), AttachedAfter(PrayerKind.ISHA)),
    NawafilType("duha", "Duha", RakaatRange(minimum=2, maximum=8, default=2), Standalone(StandaloneRule.MID_MORNING)),
    NawafilType(
        "witr",
        "Witr",
        RakaatRange(minimum=1, maximum=11, default=3, odd_only=True),
        AttachedAfter(PrayerKind.ISHA),
    ),
    NawafilType(
        "qiyam",
        "Qiyam al-Layl",
        RakaatRange(minimum=2, maximum=12, default=8),
        Standalone(StandaloneRule.LAST_THIRD_OF_NIGHT),
        block_duration=timedelta(minutes=30),
    ),
)


@dataclass(frozen=True, slots=True)
class NawafilPreference:
    type_id: str
    enabled: bool = True
    rakaat: int | None = None
    duration: timedelta | None = None
    custom_time: time | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type_id": self.type_id, "enabled": self.enabled}
        if self.rakaat is not None:
            payload["rakaat"] = self.rakaat
        if self.duration is not None:
            payload["duration_minutes"] = minutes(self.duration)
        if self.custom_time is not None:
            payload["custom_time"] = format_hhmm(self.custom_time)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "NawafilPreference":
        raw_duration = payload.get("duration_minutes")
        raw_time = payload.get("custom_time")
        return cls(
            type_id=str(payload["type_id"]),
            enabled=bool(payload.get("enabled", True)),
            rakaat=int(payload["rakaat"]) if payload.get("rakaat") is not None else None,
            duration=timedelta(minutes=int(raw_duration)) if raw_duration is not None else None,
            custom_time=time.fromisoformat(raw_time) if raw_time else None,
        )


@dataclass(frozen=True, slots=True)
class NawafilState:
    completed: bool = False
    dismissed: bool = False


@dataclass(frozen=True, slots=True)
class DerivationWarning:
    type_id: str
    day: date
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type_id": self.type_id, "day": self.day.isoformat(), "message": self.message}


def duration_for_rakaat(rakaat: int) -> timedelta:
    """3 minutes per rakaa; anything over 5 minutes snaps to the nearest 10."""
    raw = rakaat * MINUTES_PER_RAKAA
    if raw <= SNAP_THRESHOLD_MINUTES:
        return timedelta(minutes=raw)
    # Half-up rounding: 15 -> 20, 12 -> 10.
    snapped = (raw + SNAP_STEP_MINUTES // 2) // SNAP_STEP_MINUTES * SNAP_STEP_MINUTES
    return timedelta(minutes=snapped)


@dataclass(slots=True)
class NawafilDeriver:
    settle_delay: timedelta = field(default_factory=lambda: timedelta(minutes=2))
    sunrise_offset: timedelta = field(default_factory=lambda: timedelta(minutes=30))
    mid_morning_offset: timedelta = field(default_factory=lambda: timedelta(minutes=15))
    attached_before_policy: ClipPolicy = ClipPolicy.CLIP

    def resolve_rakaat(self, nawafil_type: NawafilType, preference: NawafilPreference | None = None) -> int:
        if preference is not None and preference.rakaat is not None:
            return nawafil_type.rakaat.clamp(preference.rakaat)
        return nawafil_type.rakaat.default

    def resolve_duration(self, nawafil_type: NawafilType, preference: NawafilPreference | None = None) -> timedelta:
        if preference is not None and preference.duration is not None:
            return preference.duration
        if nawafil_type.is_time_block:
            return nawafil_type.block_duration
        return duration_for_rakaat(self.resolve_rakaat(nawafil_type, preference))

    def derive_suggested_span(
        self,
        nawafil_type: NawafilType,
        anchors: Iterable[Anchor] | Mapping[PrayerKind, Anchor],
        preference: NawafilPreference | None = None,
        *,
        day: date | None = None,
    ) -> TimeSpan:
        by_kind = dict(anchors) if isinstance(anchors, Mapping) else index_anchors(anchors)
        duration = self.resolve_duration(nawafil_type, preference)
        if duration <= timedelta():
            raise DerivationError(f"{nawafil_type.id} resolved to a non-positive duration")
        if preference is not None and preference.custom_time is not None:
            base_day = day or _reference_day(by_kind)
            if base_day is None:
                raise DerivationError(f"No day to place custom time for {nawafil_type.id}")
            return TimeSpan.of(datetime.combine(base_day, preference.custom_time), duration)

        timing = nawafil_type.timing
        if isinstance(timing, AttachedBefore):
            return self._attached_before(timing.prayer, by_kind, duration)
        if isinstance(timing, AttachedAfter):
            anchor = _require(by_kind, timing.prayer)
            return TimeSpan.of(anchor.prayer_end, duration)
        if timing.rule is StandaloneRule.MID_MORNING:
            fajr = _require(by_kind, PrayerKind.FAJR)
            return TimeSpan.of(fajr.adhan + self.sunrise_offset + self.mid_morning_offset, duration)
        return TimeSpan.of(self.last_third_of_night_start(by_kind), duration)

    def _attached_before(
        self,
        prayer: PrayerKind,
        by_kind: Mapping[PrayerKind, Anchor],
        duration: timedelta,
    ) -> TimeSpan:
        anchor = _require(by_kind, prayer)
        start = anchor.adhan + self.settle_delay
        available = anchor.iqama - start
        if available >= duration:
            return TimeSpan.of(start, duration)
        if self.attached_before_policy is ClipPolicy.REJECT or available <= timedelta():
            raise AttachedWindowTooShort(prayer, max(available, timedelta()), duration)
        return TimeSpan(start=start, end=anchor.iqama)

    def last_third_of_night_start(self, by_kind: Mapping[PrayerKind, Anchor]) -> datetime:
        maghrib = _require(by_kind, PrayerKind.MAGHRIB)
        fajr = _require(by_kind, PrayerKind.FAJR)
        fajr_adhan = fajr.adhan
        # A same-day Fajr stands for the following morning.
        if fajr_adhan < maghrib.adhan:
            fajr_adhan += timedelta(hours=24)
        night = fajr_adhan - maghrib.adhan
        return maghrib.adhan + night * 2 / 3

    def derive_day(
        self,
        day: date,
        types: Iterable[NawafilType],
        anchors: Iterable[Anchor],
        preferences: Mapping[str, NawafilPreference] | None = None,
        states: Mapping[tuple[str, date], NawafilState] | None = None,
    ) -> tuple[list[NawafilItem], list[DerivationWarning]]:
        """Derive every given type for ``day``; failures become warnings."""
        by_kind = index_anchors(anchors)
        preferences = preferences or {}
        states = states or {}
        items: list[NawafilItem] = []
        warnings: list[DerivationWarning] = []
        for nawafil_type in types:
            preference = preferences.get(nawafil_type.id)
            if _skipped_for_jummah(nawafil_type, by_kind):
                continue
            try:
                span = self.derive_suggested_span(nawafil_type, by_kind, preference, day=day)
            except (DerivationError, InvalidSpan) as exc:
                logger.warning("Omitting %s on %s: %s", nawafil_type.id, day.isoformat(), exc)
                warnings.append(DerivationWarning(type_id=nawafil_type.id, day=day, message=str(exc)))
                continue
            state = states.get((nawafil_type.id, day), NawafilState())
            items.append(
                NawafilItem(
                    type_id=nawafil_type.id,
                    day=day,
                    suggested_span=span,
                    rakaat=self.resolve_rakaat(nawafil_type, preference),
                    attached_anchor=nawafil_type.attached_anchor,
                    attachment=nawafil_type.attachment,
                    is_dismissed=state.dismissed,
                    is_completed=state.completed,
                )
            )
        return items, warnings


def _require(by_kind: Mapping[PrayerKind, Anchor], prayer: PrayerKind) -> Anchor:
    anchor = by_kind.get(prayer)
    if anchor is None:
        raise MissingAnchor(prayer)
    return anchor


def _reference_day(by_kind: Mapping[PrayerKind, Anchor]) -> date | None:
    if not by_kind:
        return None
    return min(anchor.adhan for anchor in by_kind.values()).date()


def _skipped_for_jummah(nawafil_type: NawafilType, by_kind: Mapping[PrayerKind, Anchor]) -> bool:
    # The khutbah fills the gap before Jummah.
    if not isinstance(nawafil_type.timing, AttachedBefore):
        return False
    anchor = by_kind.get(nawafil_type.timing.prayer)
    return anchor is not None and anchor.is_jummah
