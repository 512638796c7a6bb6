from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence

from .models import Anchor, PrayerKind, TimeSpan


class ConflictKind(str, Enum):
    PRAYER_CONFLICT = "prayer_conflict"
    TASK_CONFLICT = "task_conflict"
    NEEDS_RESCHEDULING = "needs_rescheduling"
    NO_SLOT_AVAILABLE = "no_slot_available"


@dataclass(frozen=True, slots=True)
class PrayerConflict:
    anchor: Anchor


@dataclass(frozen=True, slots=True)
class TaskConflict:
    span: TimeSpan
    index: int


@dataclass(frozen=True, slots=True)
class Conflict:
    """A scheduling outcome the UI has to render. Not an error."""

    kind: ConflictKind
    task_id: str | None = None
    span: TimeSpan | None = None
    anchor: PrayerKind | None = None
    other_task_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "task_id": self.task_id,
            "span": self.span.to_dict() if self.span else None,
            "anchor": self.anchor.value if self.anchor else None,
            "other_task_id": self.other_task_id,
        }


@dataclass(frozen=True, slots=True)
class ConflictDetector:
    """Checks a candidate span against prayer anchors, then placed items.

    Anchors are checked through their protected span. Placed items are only
    checked when ``detect_task_overlap`` is set.
    """

    detect_task_overlap: bool = False

    def find_conflict(
        self,
        candidate: TimeSpan,
        anchors: Iterable[Anchor],
        placed: Sequence[TimeSpan] = (),
    ) -> PrayerConflict | TaskConflict | None:
        prayer = self.prayer_conflict(candidate, anchors)
        if prayer is not None:
            return prayer
        if not self.detect_task_overlap:
            return None
        for index, span in enumerate(placed):
            if candidate.overlaps(span):
                return TaskConflict(span=span, index=index)
        return None

    def prayer_conflict(self, candidate: TimeSpan, anchors: Iterable[Anchor]) -> PrayerConflict | None:
        for anchor in anchors:
            if candidate.overlaps(anchor.protected_span):
                return PrayerConflict(anchor=anchor)
        return None
