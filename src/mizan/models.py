from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from .recurrence import RecurrenceRule
from .timeutils import minutes


class InvalidSpan(ValueError):
    def __init__(self, start: datetime, end: datetime) -> None:
        self.start = start
        self.end = end
        super().__init__(f"Span end {end.isoformat()} must be after start {start.isoformat()}")


@dataclass(frozen=True, slots=True)
class TimeSpan:
    """Half-open interval ``[start, end)``.

    Touching spans do not overlap: a task ending exactly when a prayer's
    protected span starts is not a conflict.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidSpan(self.start, self.end)

    @classmethod
    def of(cls, start: datetime, duration: timedelta) -> "TimeSpan":
        return cls(start=start, end=start + duration)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeSpan") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, str]) -> "TimeSpan":
        return cls(
            start=datetime.fromisoformat(payload["start"]),
            end=datetime.fromisoformat(payload["end"]),
        )


class PrayerKind(str, Enum):
    FAJR = "fajr"
    DHUHR = "dhuhr"
    ASR = "asr"
    MAGHRIB = "maghrib"
    ISHA = "isha"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True, slots=True)
class Anchor:
    """One fard prayer for one day. Never moved; rebuilt when times change."""

    kind: PrayerKind
    adhan: datetime
    iqama_offset: timedelta
    fixed_duration: timedelta
    buffer_before: timedelta = timedelta()
    buffer_after: timedelta = timedelta()
    is_jummah: bool = False

    def __post_init__(self) -> None:
        zero = timedelta()
        if self.iqama_offset < zero or self.buffer_before < zero or self.buffer_after < zero:
            raise ValueError(f"{self.kind.label} anchor offsets and buffers must not be negative")
        if self.fixed_duration <= zero:
            raise ValueError(f"{self.kind.label} anchor must have a positive duration")

    @property
    def day(self) -> date:
        return self.adhan.date()

    @property
    def iqama(self) -> datetime:
        return self.adhan + self.iqama_offset

    @property
    def prayer_end(self) -> datetime:
        return self.iqama + self.fixed_duration

    @property
    def occupied_span(self) -> TimeSpan:
        return TimeSpan(start=self.adhan, end=self.prayer_end)

    @property
    def protected_span(self) -> TimeSpan:
        return TimeSpan(
            start=self.adhan - self.buffer_before,
            end=self.prayer_end + self.buffer_after,
        )

    @property
    def display_name(self) -> str:
        return "Jummah" if self.is_jummah else self.kind.label

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.display_name,
            "adhan": self.adhan.isoformat(),
            "iqama": self.iqama.isoformat(),
            "occupied": self.occupied_span.to_dict(),
            "protected": self.protected_span.to_dict(),
            "is_jummah": self.is_jummah,
        }


def index_anchors(anchors: Iterable[Anchor]) -> dict[PrayerKind, Anchor]:
    return {anchor.kind: anchor for anchor in anchors}


class TaskCategory(str, Enum):
    WORK = "work"
    PERSONAL = "personal"
    STUDY = "study"
    HEALTH = "health"
    SOCIAL = "social"
    WORSHIP = "worship"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    duration: timedelta
    category: TaskCategory = TaskCategory.PERSONAL
    scheduled_span: TimeSpan | None = None
    recurrence: RecurrenceRule | None = None
    parent_id: str | None = None
    notes: str | None = None
    completed: bool = False
    due_date: datetime | None = None

    def __post_init__(self) -> None:
        if self.duration <= timedelta():
            raise ValueError(f"Task '{self.title}' must have a positive duration")
        if self.duration % timedelta(minutes=1):
            raise ValueError(f"Task '{self.title}' duration must be whole minutes")

    @property
    def is_inbox(self) -> bool:
        return self.scheduled_span is None

    @property
    def is_template(self) -> bool:
        return self.recurrence is not None and self.parent_id is None

    @property
    def scheduled_day(self) -> date | None:
        if self.scheduled_span is None:
            return None
        return self.scheduled_span.start.date()

    def is_overdue(self, now: datetime) -> bool:
        if self.due_date is None or self.completed:
            return False
        return now > self.due_date

    def is_due_soon(self, now: datetime, within: timedelta = timedelta(hours=24)) -> bool:
        if self.due_date is None or self.completed:
            return False
        return timedelta() < self.due_date - now <= within

    def instance_id(self, day: date) -> str:
        return f"{self.id}@{day.isoformat()}"

    def scheduled_at(self, start: datetime) -> "Task":
        return replace(self, scheduled_span=TimeSpan.of(start, self.duration))

    def to_inbox(self) -> "Task":
        return replace(self, scheduled_span=None)

    def instance_for(self, day: date) -> "Task":
        """Materialize a concrete copy of a recurring template on ``day``."""
        start_time = self.scheduled_span.start.time() if self.scheduled_span else time(0, 0)
        due_date = None
        if self.due_date is not None and self.scheduled_day is not None:
            # Keep the template's lead time between occurrence and deadline.
            due_date = self.due_date + (day - self.scheduled_day)
        return Task(
            id=self.instance_id(day),
            title=self.title,
            duration=self.duration,
            category=self.category,
            scheduled_span=TimeSpan.of(datetime.combine(day, start_time), self.duration),
            recurrence=None,
            parent_id=self.id,
            notes=self.notes,
            due_date=due_date,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "duration_minutes": minutes(self.duration),
            "category": self.category.value,
            "completed": self.completed,
        }
        if self.scheduled_span is not None:
            payload["scheduled_span"] = self.scheduled_span.to_dict()
        if self.recurrence is not None:
            payload["recurrence"] = self.recurrence.to_dict()
        if self.parent_id:
            payload["parent_id"] = self.parent_id
        if self.notes:
            payload["notes"] = self.notes
        if self.due_date is not None:
            payload["due_date"] = self.due_date.isoformat()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Task":
        span_payload = payload.get("scheduled_span")
        recurrence_payload = payload.get("recurrence")
        raw_due = payload.get("due_date")
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title", "")),
            duration=timedelta(minutes=int(payload.get("duration_minutes", 30))),
            category=TaskCategory(payload.get("category", TaskCategory.PERSONAL.value)),
            scheduled_span=TimeSpan.from_dict(span_payload) if isinstance(span_payload, Mapping) else None,
            recurrence=RecurrenceRule.from_dict(recurrence_payload) if isinstance(recurrence_payload, Mapping) else None,
            parent_id=payload.get("parent_id") or None,
            notes=payload.get("notes") or None,
            completed=bool(payload.get("completed", False)),
            due_date=datetime.fromisoformat(raw_due) if raw_due else None,
        )


class AttachmentPosition(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True, slots=True)
class NawafilItem:
    """A suggested voluntary prayer for one day. Dismissible, never draggable."""

    type_id: str
    day: date
    suggested_span: TimeSpan
    rakaat: int
    attached_anchor: PrayerKind | None = None
    attachment: AttachmentPosition | None = None
    is_dismissed: bool = False
    is_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type_id": self.type_id,
            "day": self.day.isoformat(),
            "span": self.suggested_span.to_dict(),
            "rakaat": self.rakaat,
            "attached_anchor": self.attached_anchor.value if self.attached_anchor else None,
            "attachment": self.attachment.value if self.attachment else None,
            "is_dismissed": self.is_dismissed,
            "is_completed": self.is_completed,
        }


class EntryKind(str, Enum):
    ANCHOR = "anchor"
    NAWAFIL = "nawafil"
    TASK = "task"

    @property
    def rank(self) -> int:
        # Prayers iterate first when two entries start together.
        return _ENTRY_RANKS[self]


_ENTRY_RANKS = {EntryKind.ANCHOR: 0, EntryKind.NAWAFIL: 1, EntryKind.TASK: 2}


@dataclass(frozen=True, slots=True)
class ScheduleEntry:
    kind: EntryKind
    span: TimeSpan
    ref: Anchor | NawafilItem | Task

    @property
    def ref_id(self) -> str:
        if isinstance(self.ref, Anchor):
            return self.ref.kind.value
        if isinstance(self.ref, NawafilItem):
            return self.ref.type_id
        return self.ref.id

    @property
    def sort_key(self) -> tuple[datetime, int, str]:
        return self.span.start, self.kind.rank, self.ref_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "ref_id": self.ref_id,
            "span": self.span.to_dict(),
            "ref": self.ref.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class DaySchedule:
    day: date
    entries: tuple[ScheduleEntry, ...] = field(default_factory=tuple)

    @classmethod
    def merge(cls, day: date, entries: Sequence[ScheduleEntry]) -> "DaySchedule":
        return cls(day=day, entries=tuple(sorted(entries, key=lambda entry: entry.sort_key)))

    def _refs(self, kind: EntryKind) -> list:
        return [entry.ref for entry in self.entries if entry.kind is kind]

    @property
    def anchors(self) -> list[Anchor]:
        return self._refs(EntryKind.ANCHOR)

    @property
    def nawafil(self) -> list[NawafilItem]:
        return self._refs(EntryKind.NAWAFIL)

    @property
    def tasks(self) -> list[Task]:
        return self._refs(EntryKind.TASK)

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "entries": [entry.to_dict() for entry in self.entries],
        }
