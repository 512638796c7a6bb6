from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date
import json
import logging
from pathlib import Path
from types import MappingProxyType

from .config import _default_config_root
from .models import Task
from .nawafil import NawafilPreference, NawafilState

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlannerSnapshot:
    """Read-once view of persisted planner data for a single build."""

    tasks: tuple[Task, ...] = ()
    preferences: Mapping[str, NawafilPreference] = field(default_factory=lambda: MappingProxyType({}))
    nawafil_states: Mapping[tuple[str, date], NawafilState] = field(default_factory=lambda: MappingProxyType({}))


def _state_key(type_id: str, day: date) -> str:
    return f"{type_id}:{day.isoformat()}"


def _parse_state_key(key: str) -> tuple[str, date] | None:
    type_id, _, raw_day = key.rpartition(":")
    if not type_id:
        return None
    try:
        return type_id, date.fromisoformat(raw_day)
    except ValueError:
        return None


class PlannerStore:
    """Persists tasks, nawafil preferences and nawafil day state as JSON."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or (_default_config_root() / "planner.json")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._tasks: dict[str, Task] = {}
        self._preferences: dict[str, NawafilPreference] = {}
        self._states: dict[tuple[str, date], NawafilState] = {}
        self._load()

    def _load(self) -> None:
        self._tasks.clear()
        self._preferences.clear()
        self._states.clear()
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable planner store %s: %s", self.path, exc)
            return
        if not isinstance(data, dict):
            return
        for payload in data.get("tasks", []):
            if not isinstance(payload, Mapping):
                continue
            try:
                task = Task.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed task record %r: %s", payload.get("id"), exc)
                continue
            self._tasks[task.id] = task
        for payload in data.get("nawafil_preferences", []):
            if not isinstance(payload, Mapping):
                continue
            try:
                preference = NawafilPreference.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed nawafil preference %r: %s", payload.get("type_id"), exc)
                continue
            self._preferences[preference.type_id] = preference
        states_payload = data.get("nawafil_states", {})
        if isinstance(states_payload, Mapping):
            for key, payload in states_payload.items():
                parsed = _parse_state_key(key)
                if parsed is None or not isinstance(payload, Mapping):
                    continue
                self._states[parsed] = NawafilState(
                    completed=bool(payload.get("completed", False)),
                    dismissed=bool(payload.get("dismissed", False)),
                )

    def save(self) -> None:
        serialised = {
            "tasks": [task.to_dict() for task in sorted(self._tasks.values(), key=lambda t: t.id)],
            "nawafil_preferences": [
                pref.to_dict() for _, pref in sorted(self._preferences.items())
            ],
            "nawafil_states": {
                _state_key(type_id, day): {"completed": state.completed, "dismissed": state.dismissed}
                for (type_id, day), state in sorted(self._states.items())
            },
        }
        self.path.write_text(json.dumps(serialised, indent=2, sort_keys=True), encoding="utf-8")

    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def save_task(self, task: Task) -> None:
        self._tasks[task.id] = task
        self.save()

    def save_tasks(self, tasks: Iterable[Task]) -> None:
        changed = False
        for task in tasks:
            self._tasks[task.id] = task
            changed = True
        if changed:
            self.save()

    def remove_task(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is not None:
            self.save()

    def preferences(self) -> dict[str, NawafilPreference]:
        return dict(self._preferences)

    def save_preference(self, preference: NawafilPreference) -> None:
        self._preferences[preference.type_id] = preference
        self.save()

    def nawafil_state(self, type_id: str, day: date) -> NawafilState:
        return self._states.get((type_id, day), NawafilState())

    def set_nawafil_completed(self, type_id: str, day: date, completed: bool) -> None:
        current = self.nawafil_state(type_id, day)
        if current.completed == completed:
            return
        self._states[(type_id, day)] = replace(current, completed=completed)
        self.save()

    def set_nawafil_dismissed(self, type_id: str, day: date, dismissed: bool) -> None:
        current = self.nawafil_state(type_id, day)
        if current.dismissed == dismissed:
            return
        self._states[(type_id, day)] = replace(current, dismissed=dismissed)
        self.save()

    def prune_nawafil_states(self, before: date) -> None:
        removed = False
        for key in list(self._states.keys()):
            if key[1] < before:
                self._states.pop(key, None)
                removed = True
        if removed:
            self.save()

    def snapshot(self) -> PlannerSnapshot:
        return PlannerSnapshot(
            tasks=tuple(sorted(self._tasks.values(), key=lambda t: t.id)),
            preferences=MappingProxyType(dict(self._preferences)),
            nawafil_states=MappingProxyType(dict(self._states)),
        )
