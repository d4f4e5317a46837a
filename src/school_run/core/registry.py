"""In-memory store of scheduled runs with upcoming/past classification."""

import copy
import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime

from school_run.models import ExecutionSnapshot, RunEvent, ScheduledRun

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base class for run registry failures."""


class RunNotFoundError(RegistryError):
    """Raised when a run ID is not in the registry."""

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class DuplicateRunError(RegistryError):
    """Raised when creating a run whose ID is already stored."""

    def __init__(self, run_id: str):
        super().__init__(f"Run already exists: {run_id}")
        self.run_id = run_id


def _new_id() -> str:
    return uuid.uuid4().hex


class RunRegistry:
    """Owns the set of scheduled runs.

    The registry is a plain store: it does not validate what it is given
    (callers run ``validation.validate`` first) and it never deletes a run
    except through ``delete``. Classification into upcoming and past is
    recomputed from the injected clock on every read, so nothing needs to
    tick for a run to move from one bucket to the other.

    Runs going in and out are copied; callers cannot mutate stored state
    through a reference they hold.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._clock = clock or datetime.now
        self._id_factory = id_factory or _new_id
        # dicts keep insertion order, which is the sort tie-break
        self._runs: dict[str, ScheduledRun] = {}
        self._events: dict[str, list[RunEvent]] = {}
        self._executions: dict[str, ExecutionSnapshot] = {}

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._runs

    # ── Create / read ─────────────────────────────────────────────────────────

    def create(self, run: ScheduledRun) -> ScheduledRun:
        """Store a validated run, assigning an ID if it has none."""
        stored = run.copy()
        if not stored.id:
            stored.id = self._id_factory()
        if stored.id in self._runs:
            raise DuplicateRunError(stored.id)
        if stored.created_at is None:
            stored.created_at = self.now()

        self._runs[stored.id] = stored
        self._events[stored.id] = []
        self.record_event(stored.id, "created", None, stored.name)
        logger.info("Created run %s (%s) with %d stops", stored.id, stored.name, len(stored.stops))
        return stored.copy()

    def get(self, run_id: str) -> ScheduledRun:
        return self._require(run_id).copy()

    def find(self, run_id: str) -> ScheduledRun | None:
        run = self._runs.get(run_id)
        return run.copy() if run else None

    def all(self) -> list[ScheduledRun]:
        """All runs in insertion order."""
        return [r.copy() for r in self._runs.values()]

    # ── Mutation ──────────────────────────────────────────────────────────────

    def update(self, run: ScheduledRun) -> ScheduledRun:
        """Replace a stored run with a new version carrying the same ID."""
        old = self._require(run.id)
        stored = run.copy()
        stored.created_at = old.created_at
        self._runs[run.id] = stored
        # a saved execution refers to the old stop list
        self.discard_execution(run.id)
        self.record_event(run.id, "updated", old.name, stored.name)
        return stored.copy()

    def mark_completed(self, run_id: str) -> ScheduledRun:
        """Flag a run as completed. Marking a completed run again is a no-op."""
        run = self._require(run_id)
        if not run.is_completed:
            run.is_completed = True
            self.record_event(run_id, "completed", "false", "true")
            logger.info("Marked run %s completed", run_id)
        self.discard_execution(run_id)
        return run.copy()

    def delete(self, run_id: str) -> None:
        self._require(run_id)
        del self._runs[run_id]
        del self._events[run_id]
        self._executions.pop(run_id, None)
        logger.info("Deleted run %s", run_id)

    # ── Saved executions ──────────────────────────────────────────────────────

    def save_execution(self, snap: ExecutionSnapshot) -> None:
        """Keep a paused execution so it can be picked up again later.

        At most one execution is kept per run; saving replaces the previous one.
        """
        self._require(snap.run_id)
        self._executions[snap.run_id] = copy.deepcopy(snap)
        logger.info("Saved execution of run %s at stop %d", snap.run_id, snap.current_stop_index + 1)

    def saved_execution(self, run_id: str) -> ExecutionSnapshot | None:
        self._require(run_id)
        snap = self._executions.get(run_id)
        return copy.deepcopy(snap) if snap else None

    def saved_executions(self) -> list[ExecutionSnapshot]:
        return [copy.deepcopy(s) for s in self._executions.values()]

    def discard_execution(self, run_id: str) -> None:
        if self._executions.pop(run_id, None) is not None:
            logger.info("Discarded saved execution of run %s", run_id)

    # ── Classification ────────────────────────────────────────────────────────

    def is_upcoming(self, run: ScheduledRun) -> bool:
        """Not completed and scheduled today or later.

        Completion wins: a run marked completed ahead of its date is past.
        """
        return not run.is_completed and run.scheduled_date >= self.today()

    def upcoming(self) -> list[ScheduledRun]:
        """Upcoming runs, soonest first."""
        runs = [r for r in self._runs.values() if self.is_upcoming(r)]
        runs.sort(key=lambda r: r.scheduled_at)
        return [r.copy() for r in runs]

    def past(self) -> list[ScheduledRun]:
        """Completed or overdue runs, most recent first."""
        runs = [r for r in self._runs.values() if not self.is_upcoming(r)]
        runs.sort(key=lambda r: r.scheduled_at, reverse=True)
        return [r.copy() for r in runs]

    def all_sorted(self) -> list[ScheduledRun]:
        """Upcoming runs first, then past runs."""
        return self.upcoming() + self.past()

    def todays_runs(self) -> list[ScheduledRun]:
        today = self.today()
        runs = [r for r in self._runs.values() if r.scheduled_date == today]
        runs.sort(key=lambda r: r.scheduled_time)
        return [r.copy() for r in runs]

    # ── History ───────────────────────────────────────────────────────────────

    def record_event(
        self,
        run_id: str,
        event_type: str,
        old_value: str | None = None,
        new_value: str | None = None,
    ) -> RunEvent:
        self._require(run_id)
        event = RunEvent(
            run_id=run_id,
            event_type=event_type,
            old_value=old_value,
            new_value=new_value,
            created_at=self.now(),
        )
        self._events[run_id].append(event)
        return event

    def events(self, run_id: str) -> list[RunEvent]:
        self._require(run_id)
        return list(self._events[run_id])

    def _require(self, run_id: str) -> ScheduledRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run
