from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Iterable, Sequence

from .conflicts import ConflictDetector
from .models import Anchor, TimeSpan
from .timeutils import TimeCursor, minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SlotFinder:
    """Bounded forward search for free time.

    ``find_next_slot`` checks at most ``max_attempts`` candidates spaced
    ``step`` apart, so the defaults cover a 24 hour horizon. Only anchors
    block a candidate unless ``respect_placed`` is set.
    """

    step: timedelta = field(default_factory=lambda: timedelta(minutes=30))
    max_attempts: int = 48
    respect_placed: bool = False
    detector: ConflictDetector = field(default_factory=lambda: ConflictDetector(detect_task_overlap=True))

    def __post_init__(self) -> None:
        if self.step <= timedelta():
            raise ValueError("Slot search step must be positive")
        if self.max_attempts < 1:
            raise ValueError("Slot search needs at least one attempt")

    def find_next_slot(
        self,
        after: datetime,
        duration: timedelta,
        anchors: Iterable[Anchor],
        placed: Sequence[TimeSpan] = (),
    ) -> TimeSpan | None:
        if duration <= timedelta():
            raise ValueError("Requested slot duration must be positive")
        anchors = list(anchors)
        blocking = placed if self.respect_placed else ()
        cursor = TimeCursor.at(after)
        for _ in range(self.max_attempts):
            candidate = TimeSpan.of(cursor.position, duration)
            if self.detector.find_conflict(candidate, anchors, blocking) is None:
                return candidate
            cursor.advance(self.step)
        logger.debug(
            "No %s min slot within %d attempts after %s",
            minutes(duration),
            self.max_attempts,
            after.isoformat(),
        )
        return None

    def free_slots(
        self,
        window: TimeSpan,
        anchors: Iterable[Anchor],
        placed: Sequence[TimeSpan] = (),
        minimum: timedelta = timedelta(minutes=15),
    ) -> list[TimeSpan]:
        """List the gaps inside ``window`` left by protected spans and placed items."""
        blocked: list[tuple[datetime, datetime]] = []
        for span in [anchor.protected_span for anchor in anchors] + list(placed):
            if span.overlaps(window):
                blocked.append((max(span.start, window.start), min(span.end, window.end)))
        blocked.sort()

        merged: list[list[datetime]] = []
        for start, end in blocked:
            if merged and start <= merged[-1][1]:
                merged[-1][1] = max(merged[-1][1], end)
            else:
                merged.append([start, end])

        gaps: list[TimeSpan] = []
        current = window.start
        for start, end in merged:
            if start > current and start - current >= minimum:
                gaps.append(TimeSpan(start=current, end=start))
            current = max(current, end)
        if current < window.end and window.end - current >= minimum:
            gaps.append(TimeSpan(start=current, end=window.end))
        return gaps
