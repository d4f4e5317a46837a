"""Data models for school run planning and execution."""

import copy
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


class StopType(str, Enum):
    HOME = "home"
    SCHOOL = "school"
    OT = "ot"
    MUSIC = "music"
    ACTIVITY = "activity"
    CUSTOM = "custom"

    @property
    def icon(self) -> str:
        return _STOP_ICONS[self]


_STOP_ICONS = {
    StopType.HOME: "🏠",
    StopType.SCHOOL: "🏫",
    StopType.OT: "🏥",
    StopType.MUSIC: "🎵",
    StopType.ACTIVITY: "⚽",
    StopType.CUSTOM: "📍",
}


class ExecutionState(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionState.COMPLETED, ExecutionState.CANCELLED)

    @property
    def display_text(self) -> str:
        return {
            ExecutionState.NOT_STARTED: "Not Started",
            ExecutionState.ACTIVE: "In Progress",
            ExecutionState.PAUSED: "Paused",
            ExecutionState.COMPLETED: "Completed",
            ExecutionState.CANCELLED: "Cancelled",
        }[self]


@dataclass
class ChildProfile:
    id: str
    name: str
    age: int | None = None

    @property
    def display_name(self) -> str:
        if self.age is None:
            return self.name
        return f"{self.name} ({self.age})"


@dataclass
class Stop:
    name: str
    stop_type: StopType = StopType.CUSTOM
    task: str = ""
    estimated_minutes: int = 0
    assigned_child: ChildProfile | None = None
    is_completed: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.stop_type.icon} {self.name}"

    @property
    def formatted_duration(self) -> str:
        if self.estimated_minutes == 1:
            return "1 minute"
        return f"{self.estimated_minutes} minutes"


@dataclass
class ScheduledRun:
    name: str
    scheduled_date: date
    scheduled_time: time
    stops: list[Stop] = field(default_factory=list)
    id: str = ""
    is_completed: bool = False
    created_at: datetime | None = None

    @property
    def scheduled_at(self) -> datetime:
        """The single instant the run is due, combining date and wall-clock time."""
        return datetime.combine(self.scheduled_date, self.scheduled_time)

    @property
    def estimated_duration(self) -> int:
        """Total estimated minutes across all stops."""
        return sum(s.estimated_minutes for s in self.stops)

    @property
    def participating_children(self) -> list[ChildProfile]:
        seen: set[str] = set()
        children = []
        for stop in self.stops:
            child = stop.assigned_child
            if child and child.id not in seen:
                seen.add(child.id)
                children.append(child)
        return children

    def copy(self) -> "ScheduledRun":
        return copy.deepcopy(self)


@dataclass
class RunEvent:
    run_id: str
    event_type: str
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ExecutionSnapshot:
    run_id: str
    state: ExecutionState
    current_stop_index: int
    stops: tuple[Stop, ...] = ()

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stops if s.is_completed)
