from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum, IntEnum
from typing import Any, Iterator, Mapping

from dateutil.relativedelta import relativedelta

# Bound on the day-by-day weekday scan.
WEEKDAY_SCAN_DAYS = 14


class RecurrenceValidationError(ValueError):
    pass


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Weekday(IntEnum):
    """Matches ``date.weekday()``: Monday is 0."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


@dataclass(frozen=True, slots=True)
class EndDate:
    day: date


@dataclass(frozen=True, slots=True)
class OccurrenceCount:
    count: int


EndCondition = EndDate | OccurrenceCount


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """Stateless recurrence definition.

    Occurrence counting for ``OccurrenceCount`` belongs to the caller; the
    rule only answers whether a given count is exhausted.
    """

    frequency: Frequency
    interval: int = 1
    days_of_week: frozenset[Weekday] | None = None
    end_condition: EndCondition | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.interval, int) or self.interval < 1:
            raise RecurrenceValidationError(f"Recurrence interval must be >= 1, got {self.interval!r}")
        if self.days_of_week is not None:
            try:
                days = frozenset(Weekday(day) for day in self.days_of_week)
            except ValueError as exc:
                raise RecurrenceValidationError(f"Invalid weekday in {sorted(self.days_of_week)}") from exc
            object.__setattr__(self, "days_of_week", days)
        if isinstance(self.end_condition, OccurrenceCount) and self.end_condition.count < 1:
            raise RecurrenceValidationError("Occurrence count must be >= 1")

    def next_occurrence(self, after: date) -> date | None:
        if self.frequency is Frequency.DAILY:
            return after + timedelta(days=self.interval)
        if self.frequency is Frequency.WEEKLY:
            if not self.days_of_week:
                return after + timedelta(weeks=self.interval)
            candidate = after
            for _ in range(WEEKDAY_SCAN_DAYS):
                candidate += timedelta(days=1)
                if candidate.weekday() in self.days_of_week:
                    return candidate
            return None
        # relativedelta clamps to the last day of shorter months.
        return after + relativedelta(months=self.interval)

    def should_terminate(self, day: date, occurrences_so_far: int = 0) -> bool:
        if isinstance(self.end_condition, EndDate):
            return day > self.end_condition.day
        if isinstance(self.end_condition, OccurrenceCount):
            return occurrences_so_far >= self.end_condition.count
        return False

    def occurrences(self, anchor: date, until: date) -> Iterator[date]:
        """Yield occurrence dates from ``anchor`` (occurrence #1) up to ``until``."""
        current: date | None = anchor
        emitted = 0
        while current is not None and current <= until:
            if self.should_terminate(current, emitted):
                return
            yield current
            emitted += 1
            current = self.next_occurrence(current)

    def describe(self) -> str:
        if self.frequency is Frequency.DAILY:
            return "Daily" if self.interval == 1 else f"Every {self.interval} days"
        if self.frequency is Frequency.WEEKLY:
            if self.days_of_week:
                names = ", ".join(day.name.capitalize() for day in sorted(self.days_of_week))
                return f"Weekly on {names}"
            return "Weekly" if self.interval == 1 else f"Every {self.interval} weeks"
        return "Monthly" if self.interval == 1 else f"Every {self.interval} months"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"frequency": self.frequency.value, "interval": self.interval}
        if self.days_of_week is not None:
            payload["days_of_week"] = sorted(int(day) for day in self.days_of_week)
        if isinstance(self.end_condition, EndDate):
            payload["end_date"] = self.end_condition.day.isoformat()
        elif isinstance(self.end_condition, OccurrenceCount):
            payload["occurrences"] = self.end_condition.count
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RecurrenceRule":
        end_condition: EndCondition | None = None
        if payload.get("end_date"):
            end_condition = EndDate(date.fromisoformat(payload["end_date"]))
        elif payload.get("occurrences") is not None:
            end_condition = OccurrenceCount(int(payload["occurrences"]))
        raw_days = payload.get("days_of_week")
        return cls(
            frequency=Frequency(payload["frequency"]),
            interval=int(payload.get("interval", 1)),
            days_of_week=frozenset(raw_days) if raw_days is not None else None,
            end_condition=end_condition,
        )
