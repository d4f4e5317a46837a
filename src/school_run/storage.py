"""JSON snapshot files for a run registry."""

import json
from collections.abc import Callable
from datetime import date, datetime, time
from pathlib import Path

from school_run.core.registry import RegistryError, RunRegistry
from school_run.models import ChildProfile, ExecutionSnapshot, ExecutionState, ScheduledRun, Stop, StopType

FORMAT_VERSION = 1


class StorageError(Exception):
    """Raised when a snapshot file cannot be read."""


def run_to_dict(run: ScheduledRun) -> dict:
    return {
        "id": run.id,
        "name": run.name,
        "scheduled_date": run.scheduled_date.isoformat(),
        "scheduled_time": run.scheduled_time.strftime("%H:%M"),
        "is_completed": run.is_completed,
        "created_at": run.created_at.isoformat() if run.created_at else None,
        "estimated_duration": run.estimated_duration,
        "stops": [stop_to_dict(s) for s in run.stops],
    }


def stop_to_dict(stop: Stop) -> dict:
    child = stop.assigned_child
    return {
        "name": stop.name,
        "stop_type": stop.stop_type.value,
        "task": stop.task,
        "estimated_minutes": stop.estimated_minutes,
        "assigned_child": (
            {"id": child.id, "name": child.name, "age": child.age} if child else None
        ),
        "is_completed": stop.is_completed,
    }


def _text(data: dict, key: str, default: str | None = "") -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def _whole_minutes(value) -> int:
    """Minutes as an int. Fractional minutes are rejected, not truncated."""
    if isinstance(value, bool):
        raise ValueError(f"estimated_minutes must be a whole number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"estimated_minutes must be a whole number, got {value!r}")


def stop_from_dict(data: dict) -> Stop:
    child = data.get("assigned_child")
    return Stop(
        name=_text(data, "name"),
        stop_type=StopType(data.get("stop_type", StopType.CUSTOM.value)),
        task=_text(data, "task"),
        estimated_minutes=_whole_minutes(data.get("estimated_minutes", 0)),
        assigned_child=(
            ChildProfile(id=child["id"], name=child["name"], age=child.get("age"))
            if child else None
        ),
        is_completed=bool(data.get("is_completed", False)),
    )


def run_from_dict(data: dict) -> ScheduledRun:
    created = data.get("created_at")
    return ScheduledRun(
        id=data.get("id", ""),
        name=_text(data, "name", None),
        scheduled_date=date.fromisoformat(data["scheduled_date"]),
        scheduled_time=time.fromisoformat(data["scheduled_time"]),
        stops=[stop_from_dict(s) for s in data.get("stops", [])],
        is_completed=bool(data.get("is_completed", False)),
        created_at=datetime.fromisoformat(created) if created else None,
    )


def execution_to_dict(snap: ExecutionSnapshot) -> dict:
    return {
        "run_id": snap.run_id,
        "state": snap.state.value,
        "current_stop_index": snap.current_stop_index,
        "stops": [stop_to_dict(s) for s in snap.stops],
    }


def execution_from_dict(data: dict) -> ExecutionSnapshot:
    index = data["current_stop_index"]
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValueError(f"current_stop_index must be an integer, got {index!r}")
    return ExecutionSnapshot(
        run_id=_text(data, "run_id", None),
        state=ExecutionState(data["state"]),
        current_stop_index=index,
        stops=tuple(stop_from_dict(s) for s in data.get("stops", [])),
    )


def save_registry(registry: RunRegistry, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    doc = {
        "version": FORMAT_VERSION,
        "runs": [run_to_dict(r) for r in registry.all()],
        "executions": [execution_to_dict(s) for s in registry.saved_executions()],
    }
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(doc, indent=2))
    tmp.replace(path)


def load_registry(
    path: Path,
    clock: Callable[[], datetime] | None = None,
) -> RunRegistry:
    """Load a registry from a snapshot file. A missing file gives an empty registry."""
    registry = RunRegistry(clock=clock)
    if not path.exists():
        return registry

    try:
        doc = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise StorageError(f"Malformed run file {path}: {e}") from e

    if not isinstance(doc, dict) or doc.get("version") != FORMAT_VERSION:
        raise StorageError(f"Unsupported run file format in {path}")

    try:
        for item in doc.get("runs", []):
            registry.create(run_from_dict(item))
        for item in doc.get("executions", []):
            registry.save_execution(execution_from_dict(item))
    except (KeyError, TypeError, ValueError, RegistryError) as e:
        raise StorageError(f"Invalid run entry in {path}: {e}") from e
    return registry

