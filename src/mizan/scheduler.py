from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
import logging
from typing import Any

from .config import MizanConfig
from .conflicts import Conflict, ConflictDetector, ConflictKind, PrayerConflict, TaskConflict
from .models import Anchor, DaySchedule, EntryKind, NawafilItem, ScheduleEntry, Task, TimeSpan
from .nawafil import (
    DEFAULT_NAWAFIL_TYPES,
    DerivationWarning,
    NawafilDeriver,
    NawafilPreference,
    NawafilState,
    NawafilType,
)
from .slots import SlotFinder

logger = logging.getLogger(__name__)


class ScheduleError(ValueError):
    pass


class NoAnchorsForDate(ScheduleError):
    def __init__(self, day: date) -> None:
        self.day = day
        super().__init__(f"No prayer anchors for {day.isoformat()}")


class DuplicateAnchor(ScheduleError):
    def __init__(self, anchor: Anchor) -> None:
        self.anchor = anchor
        super().__init__(f"More than one {anchor.kind.label} anchor for {anchor.day.isoformat()}")


class AnchorDateMismatch(ScheduleError):
    def __init__(self, anchor: Anchor, day: date) -> None:
        self.anchor = anchor
        self.day = day
        super().__init__(
            f"{anchor.kind.label} anchor is for {anchor.day.isoformat()}, not {day.isoformat()}"
        )


class OverlappingAnchors(ScheduleError):
    def __init__(self, first: Anchor, second: Anchor) -> None:
        self.first = first
        self.second = second
        super().__init__(f"{first.kind.label} and {second.kind.label} prayer times overlap")


class BuildStateError(RuntimeError):
    pass


class BuildState(str, Enum):
    EMPTY = "empty"
    ANCHORS_LOADED = "anchors_loaded"
    NAWAFIL_DERIVED = "nawafil_derived"
    TASKS_PLACED = "tasks_placed"
    FINALIZED = "finalized"


@dataclass(frozen=True, slots=True)
class BuildResult:
    schedule: DaySchedule
    conflicts: tuple[Conflict, ...] = ()
    warnings: tuple[DerivationWarning, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule": self.schedule.to_dict(),
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


@dataclass(frozen=True, slots=True)
class RangeResult:
    days: tuple[BuildResult, ...]
    materialized: tuple[Task, ...] = ()

    def for_day(self, day: date) -> BuildResult | None:
        for result in self.days:
            if result.schedule.day == day:
                return result
        return None


@dataclass(frozen=True, slots=True)
class Placement:
    task: Task
    conflict: Conflict | None = None

    @property
    def accepted(self) -> bool:
        return self.conflict is None


class DayBuild:
    """One day's pass through ``Empty -> AnchorsLoaded -> NawafilDerived -> TasksPlaced -> Finalized``."""

    def __init__(
        self,
        day: date,
        deriver: NawafilDeriver,
        detector: ConflictDetector,
        nawafil_types: Sequence[NawafilType],
    ) -> None:
        self.day = day
        self.deriver = deriver
        self.detector = detector
        self.nawafil_types = nawafil_types
        self.state = BuildState.EMPTY
        self._anchors: list[Anchor] = []
        self._nawafil: list[NawafilItem] = []
        self._warnings: list[DerivationWarning] = []
        self._tasks: list[Task] = []
        self._conflicts: list[Conflict] = []

    def _advance(self, expected: BuildState, target: BuildState) -> None:
        if self.state is not expected:
            raise BuildStateError(f"Cannot move to {target.value} from {self.state.value}")
        self.state = target
        logger.debug("%s: %s", self.day.isoformat(), target.value)

    def load_anchors(self, anchors: Iterable[Anchor]) -> None:
        if self.state is not BuildState.EMPTY:
            raise BuildStateError(f"Anchors already loaded for {self.day.isoformat()}")
        loaded = sorted(anchors, key=lambda anchor: anchor.adhan)
        if not loaded:
            raise NoAnchorsForDate(self.day)
        seen: set = set()
        for anchor in loaded:
            if anchor.day != self.day:
                raise AnchorDateMismatch(anchor, self.day)
            if anchor.kind in seen:
                raise DuplicateAnchor(anchor)
            seen.add(anchor.kind)
        for first, second in zip(loaded, loaded[1:]):
            if first.occupied_span.overlaps(second.occupied_span):
                raise OverlappingAnchors(first, second)
        self._anchors = loaded
        self._advance(BuildState.EMPTY, BuildState.ANCHORS_LOADED)

    def derive_nawafil(
        self,
        preferences: Mapping[str, NawafilPreference] | None = None,
        states: Mapping[tuple[str, date], NawafilState] | None = None,
        enabled: Collection[str] = (),
    ) -> None:
        if self.state is not BuildState.ANCHORS_LOADED:
            raise BuildStateError(f"Cannot derive nawafil from {self.state.value}")
        preferences = preferences or {}
        types = [
            nawafil_type
            for nawafil_type in self.nawafil_types
            if _is_enabled(nawafil_type, preferences.get(nawafil_type.id), enabled)
        ]
        self._nawafil, self._warnings = self.deriver.derive_day(
            self.day, types, self._anchors, preferences, states
        )
        self._advance(BuildState.ANCHORS_LOADED, BuildState.NAWAFIL_DERIVED)

    def place_tasks(self, tasks: Iterable[Task]) -> None:
        """Validate already-scheduled tasks for the day. Conflicting tasks are flagged, never moved."""
        if self.state is not BuildState.NAWAFIL_DERIVED:
            raise BuildStateError(f"Cannot place tasks from {self.state.value}")
        day_tasks = sorted(
            (task for task in tasks if task.scheduled_day == self.day),
            key=lambda task: (task.scheduled_span.start, task.id),
        )
        accepted: list[Task] = []
        for task in day_tasks:
            span = task.scheduled_span
            found = self.detector.find_conflict(span, self._anchors, [t.scheduled_span for t in accepted])
            if isinstance(found, PrayerConflict):
                self._conflicts.append(
                    Conflict(
                        kind=ConflictKind.NEEDS_RESCHEDULING,
                        task_id=task.id,
                        span=span,
                        anchor=found.anchor.kind,
                    )
                )
                continue
            if isinstance(found, TaskConflict):
                self._conflicts.append(
                    Conflict(
                        kind=ConflictKind.TASK_CONFLICT,
                        task_id=task.id,
                        span=span,
                        other_task_id=accepted[found.index].id,
                    )
                )
            accepted.append(task)
        self._tasks = accepted
        self._advance(BuildState.NAWAFIL_DERIVED, BuildState.TASKS_PLACED)

    def finalize(self) -> BuildResult:
        if self.state is not BuildState.TASKS_PLACED:
            raise BuildStateError(f"Cannot finalize from {self.state.value}")
        entries = [ScheduleEntry(EntryKind.ANCHOR, anchor.occupied_span, anchor) for anchor in self._anchors]
        entries.extend(ScheduleEntry(EntryKind.NAWAFIL, item.suggested_span, item) for item in self._nawafil)
        entries.extend(ScheduleEntry(EntryKind.TASK, task.scheduled_span, task) for task in self._tasks)
        self._advance(BuildState.TASKS_PLACED, BuildState.FINALIZED)
        return BuildResult(
            schedule=DaySchedule.merge(self.day, entries),
            conflicts=tuple(self._conflicts),
            warnings=tuple(self._warnings),
        )


def _is_enabled(nawafil_type: NawafilType, preference: NawafilPreference | None, enabled: Collection[str]) -> bool:
    if preference is not None:
        return preference.enabled
    return nawafil_type.id in enabled


def _index_preferences(
    preferences: Iterable[NawafilPreference] | Mapping[str, NawafilPreference],
) -> dict[str, NawafilPreference]:
    if isinstance(preferences, Mapping):
        return dict(preferences)
    return {preference.type_id: preference for preference in preferences}


class ScheduleBuilder:
    def __init__(
        self,
        config: MizanConfig | None = None,
        nawafil_types: Sequence[NawafilType] = DEFAULT_NAWAFIL_TYPES,
    ) -> None:
        self.config = config or MizanConfig.default()
        self.nawafil_types = tuple(nawafil_types)
        nawafil = self.config.nawafil
        self.deriver = NawafilDeriver(
            settle_delay=nawafil.settle_delay,
            sunrise_offset=nawafil.sunrise_offset,
            mid_morning_offset=nawafil.mid_morning_offset,
            attached_before_policy=nawafil.attached_before_policy,
        )
        self.detector = ConflictDetector(detect_task_overlap=self.config.conflicts.detect_task_overlap)
        slots = self.config.slots
        self.slot_finder = SlotFinder(
            step=slots.step,
            max_attempts=slots.max_attempts,
            respect_placed=slots.respect_placed,
        )

    def start(self, day: date) -> DayBuild:
        return DayBuild(day, self.deriver, self.detector, self.nawafil_types)

    def build(
        self,
        day: date,
        anchors: Iterable[Anchor],
        tasks: Iterable[Task] = (),
        preferences: Iterable[NawafilPreference] | Mapping[str, NawafilPreference] = (),
        nawafil_states: Mapping[tuple[str, date], NawafilState] | None = None,
    ) -> BuildResult:
        run = self.start(day)
        run.load_anchors(anchors)
        run.derive_nawafil(_index_preferences(preferences), nawafil_states, self.config.nawafil.enabled)
        run.place_tasks(tasks)
        return run.finalize()

    def build_range(
        self,
        start: date,
        end: date,
        anchors_by_day: Mapping[date, Sequence[Anchor]],
        tasks: Iterable[Task] = (),
        preferences: Iterable[NawafilPreference] | Mapping[str, NawafilPreference] = (),
        nawafil_states: Mapping[tuple[str, date], NawafilState] | None = None,
    ) -> RangeResult:
        if end < start:
            raise ValueError(f"Range end {end.isoformat()} is before start {start.isoformat()}")
        days = [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
        snapshot = list(tasks)
        materialized = self.expand_recurring(snapshot, days)
        all_tasks = snapshot + materialized
        preference_index = _index_preferences(preferences)
        results = tuple(
            self.build(day, anchors_by_day.get(day, ()), all_tasks, preference_index, nawafil_states)
            for day in days
        )
        return RangeResult(days=results, materialized=tuple(materialized))

    def expand_recurring(self, tasks: Iterable[Task], days: Iterable[date]) -> list[Task]:
        """Materialize recurring instances for the requested days only.

        A template's own scheduled day counts as its first occurrence and is
        never materialized. An occurrence whose instance id already exists is
        skipped wherever that instance now sits, inbox included.
        """
        wanted = sorted(set(days))
        if not wanted:
            return []
        tasks = list(tasks)
        existing = {task.id for task in tasks}
        materialized: list[Task] = []
        for template in sorted((task for task in tasks if task.is_template), key=lambda task: task.id):
            anchor_day = template.scheduled_day
            if anchor_day is None:
                logger.debug("Recurring task %s has no anchor date; not expanded", template.id)
                continue
            wanted_set = set(wanted)
            for occurrence in template.recurrence.occurrences(anchor_day, wanted[-1]):
                if occurrence == anchor_day or occurrence not in wanted_set:
                    continue
                if template.instance_id(occurrence) in existing:
                    continue
                materialized.append(template.instance_for(occurrence))
        if materialized:
            logger.debug("Materialized %d recurring task instances", len(materialized))
        return materialized

    def find_slot(
        self,
        after: datetime,
        duration: timedelta,
        anchors: Iterable[Anchor],
        placed: Sequence[TimeSpan] = (),
    ) -> TimeSpan | None:
        return self.slot_finder.find_next_slot(after, duration, anchors, placed)

    def free_slots(
        self,
        day: date,
        anchors: Iterable[Anchor],
        placed: Sequence[TimeSpan] = (),
        window: TimeSpan | None = None,
    ) -> list[TimeSpan]:
        if window is None:
            start = datetime.combine(day, time(0, 0))
            window = TimeSpan(start=start, end=start + timedelta(days=1))
        return self.slot_finder.free_slots(window, anchors, placed, self.config.slots.minimum_free)

    def place_task(
        self,
        task: Task,
        start: datetime,
        anchors: Iterable[Anchor],
        placed: Sequence[Task] = (),
    ) -> Placement:
        """Schedule ``task`` at ``start`` unless that conflicts; the task is returned unchanged on conflict."""
        candidate = TimeSpan.of(start, task.duration)
        others = [other for other in placed if other.id != task.id and other.scheduled_span is not None]
        found = self.detector.find_conflict(candidate, anchors, [other.scheduled_span for other in others])
        if isinstance(found, PrayerConflict):
            return Placement(
                task=task,
                conflict=Conflict(
                    kind=ConflictKind.PRAYER_CONFLICT,
                    task_id=task.id,
                    span=candidate,
                    anchor=found.anchor.kind,
                ),
            )
        if isinstance(found, TaskConflict):
            return Placement(
                task=task,
                conflict=Conflict(
                    kind=ConflictKind.TASK_CONFLICT,
                    task_id=task.id,
                    span=candidate,
                    other_task_id=others[found.index].id,
                ),
            )
        return Placement(task=task.scheduled_at(start))

    def auto_place(
        self,
        task: Task,
        after: datetime,
        anchors: Iterable[Anchor],
        placed: Sequence[Task] = (),
    ) -> Placement:
        spans = [other.scheduled_span for other in placed if other.id != task.id and other.scheduled_span is not None]
        slot = self.find_slot(after, task.duration, anchors, spans)
        if slot is None:
            return Placement(task=task, conflict=Conflict(kind=ConflictKind.NO_SLOT_AVAILABLE, task_id=task.id))
        return Placement(task=task.scheduled_at(slot.start))
