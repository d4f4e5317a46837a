"""Step-by-step execution of a single scheduled run.

The controller is a small state machine:

    not_started --start--> active
    active --complete_current_stop--> active | completed (after the last stop)
    active --pause--> paused --resume--> active
    active | paused --cancel--> cancelled
    not_started --restore--> paused (from a saved paused snapshot)

``completed`` and ``cancelled`` are terminal. Every command either applies
fully and returns the new snapshot, or raises ``InvalidTransitionError``
without touching any state.
"""

import copy
import logging

from school_run.models import ExecutionSnapshot, ExecutionState, ScheduledRun, Stop

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when a command is not allowed in the controller's current state."""

    def __init__(self, state: ExecutionState, event: str, reason: str | None = None):
        message = f"Cannot {event} while {state.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.state = state
        self.event = event
        self.reason = reason


class ExecutionController:
    """Drives one run through its stops in order.

    The controller works on its own copy of the run's stops; the caller is
    responsible for reporting the outcome back to the registry.
    """

    def __init__(self):
        self._run_id = ""
        self._run_name = ""
        self._stops: list[Stop] = []
        self._state = ExecutionState.NOT_STARTED
        self._index = 0
        self.completed_run_state: ExecutionSnapshot | None = None

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def current_stop_index(self) -> int:
        return self._index

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    # ── Commands ──────────────────────────────────────────────────────────────

    def start(self, run: ScheduledRun) -> ExecutionSnapshot:
        if self._state != ExecutionState.NOT_STARTED:
            self._reject("start", "run already started")
        if not run.stops:
            self._reject("start", "run has no stops")

        stops = copy.deepcopy(run.stops)
        for stop in stops:
            stop.is_completed = False

        self._run_id = run.id
        self._run_name = run.name
        self._stops = stops
        self._index = 0
        return self._transition(ExecutionState.ACTIVE, "start")

    def restore(self, run: ScheduledRun, snap: ExecutionSnapshot) -> ExecutionSnapshot:
        """Pick up a paused execution of ``run`` saved earlier.

        The controller comes back paused, with the saved stop flags and index;
        ``resume`` continues from there.
        """
        if self._state != ExecutionState.NOT_STARTED:
            self._reject("restore", "run already started")
        if snap.state != ExecutionState.PAUSED:
            self._reject("restore", f"saved execution is {snap.state.value}, not paused")
        if snap.run_id != run.id or len(snap.stops) != len(run.stops):
            self._reject("restore", "saved execution does not match the run")
        if not 0 <= snap.current_stop_index < len(snap.stops):
            self._reject("restore", f"stop index {snap.current_stop_index} out of range")

        self._run_id = run.id
        self._run_name = run.name
        self._stops = copy.deepcopy(list(snap.stops))
        self._index = snap.current_stop_index
        return self._transition(ExecutionState.PAUSED, "restore")

    def complete_current_stop(self) -> ExecutionSnapshot:
        """Mark the current stop done and move to the next one.

        Completing the last stop finishes the run. There is no way to complete
        any stop other than the current one.
        """
        if self._state != ExecutionState.ACTIVE:
            self._reject("complete stop")
        if not 0 <= self._index < len(self._stops):
            self._reject(
                "complete stop",
                f"stop index {self._index} out of range for {len(self._stops)} stops",
            )

        self._stops[self._index].is_completed = True
        if self._index == len(self._stops) - 1:
            return self._transition(ExecutionState.COMPLETED, "complete stop")

        self._index += 1
        return self._transition(ExecutionState.ACTIVE, "complete stop")

    def pause(self) -> ExecutionSnapshot:
        if self._state != ExecutionState.ACTIVE:
            self._reject("pause")
        return self._transition(ExecutionState.PAUSED, "pause")

    def resume(self) -> ExecutionSnapshot:
        if self._state != ExecutionState.PAUSED:
            self._reject("resume")
        return self._transition(ExecutionState.ACTIVE, "resume")

    def cancel(self) -> ExecutionSnapshot:
        """Abandon the run.

        The snapshot still shows which stops were done before cancelling, but
        a cancelled run earns no completion credit.
        """
        if self._state not in (ExecutionState.ACTIVE, ExecutionState.PAUSED):
            self._reject("cancel")
        return self._transition(ExecutionState.CANCELLED, "cancel")

    # ── Queries ───────────────────────────────────────────────────────────────

    def snapshot(self) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            run_id=self._run_id,
            state=self._state,
            current_stop_index=self._index,
            stops=tuple(copy.deepcopy(self._stops)),
        )

    def current_stop(self) -> Stop | None:
        if self._state in (ExecutionState.NOT_STARTED, ExecutionState.CANCELLED):
            return None
        if self._state == ExecutionState.COMPLETED or self._index >= len(self._stops):
            return None
        return copy.deepcopy(self._stops[self._index])

    def remaining_stops(self) -> list[Stop]:
        """Stops after the current one that are still to be visited."""
        if self._state.is_terminal:
            return []
        return copy.deepcopy(self._stops[self._index + 1:])

    def completed_count(self) -> int:
        return sum(1 for s in self._stops if s.is_completed)

    def progress(self) -> float:
        """Fraction of stops completed, 0.0 to 1.0."""
        if self._state == ExecutionState.COMPLETED:
            return 1.0
        if self._state == ExecutionState.NOT_STARTED or not self._stops:
            return 0.0
        return self.completed_count() / len(self._stops)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _transition(self, new_state: ExecutionState, event: str) -> ExecutionSnapshot:
        old_state = self._state
        self._state = new_state
        snap = self.snapshot()
        if new_state.is_terminal:
            self.completed_run_state = snap
        logger.info(
            "Run %s: %s (%s -> %s, stop %d/%d)",
            self._run_id, event, old_state.value, new_state.value,
            self._index + 1, len(self._stops),
        )
        return snap

    def _reject(self, event: str, reason: str | None = None):
        logger.warning(
            "Rejected %s for run %s in state %s%s",
            event, self._run_id or "<none>", self._state.value,
            f" ({reason})" if reason else "",
        )
        raise InvalidTransitionError(self._state, event, reason)
