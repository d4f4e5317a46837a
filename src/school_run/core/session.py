"""Ties an execution controller to the registry entry it is executing.

The controller knows nothing about the registry. A session loads the run,
forwards commands to its own controller, writes execution events into the
run's history and marks the run completed once every stop is done. Pausing
saves the execution in the registry, so a later session can ``restore`` it.
The optional ``delay`` hook is where a UI waits before reporting a confirmed
action; the engine itself never sleeps.
"""

import logging
from collections.abc import Callable

from school_run.core.execution import ExecutionController, InvalidTransitionError
from school_run.core.registry import RunRegistry
from school_run.models import ExecutionSnapshot, ExecutionState

logger = logging.getLogger(__name__)

_EVENT_NAMES = {
    ExecutionState.ACTIVE: "execution_active",
    ExecutionState.PAUSED: "execution_paused",
    ExecutionState.COMPLETED: "execution_completed",
    ExecutionState.CANCELLED: "execution_cancelled",
}


def _no_delay(seconds: float) -> None:
    return None


class RunSession:
    def __init__(
        self,
        registry: RunRegistry,
        run_id: str,
        delay: Callable[[float], None] | None = None,
        confirm_delay: float = 0.0,
    ):
        self.registry = registry
        self.run = registry.get(run_id)
        self.controller = ExecutionController()
        self._delay = delay or _no_delay
        self._confirm_delay = confirm_delay

    @property
    def state(self) -> ExecutionState:
        return self.controller.state

    @property
    def has_saved_execution(self) -> bool:
        return self.registry.saved_execution(self.run.id) is not None

    def start(self) -> ExecutionSnapshot:
        """Start from the first stop, dropping any saved paused execution."""
        snap = self.controller.start(self.run)
        self.registry.discard_execution(self.run.id)
        self.registry.record_event(self.run.id, "execution_started", None, "stop 1")
        return snap

    def restore(self) -> ExecutionSnapshot:
        """Pick up the paused execution saved for this run. It stays paused."""
        saved = self.registry.saved_execution(self.run.id)
        if saved is None:
            raise InvalidTransitionError(self.controller.state, "restore", "no saved execution")
        snap = self.controller.restore(self.run, saved)
        self.registry.record_event(
            self.run.id, "execution_restored", None, f"stop {snap.current_stop_index + 1}"
        )
        return snap

    def complete_current_stop(self) -> ExecutionSnapshot:
        self._wait()
        index = self.controller.current_stop_index
        snap = self.controller.complete_current_stop()
        self.registry.record_event(
            self.run.id, "stop_completed", None, snap.stops[index].name
        )
        if snap.state == ExecutionState.COMPLETED:
            self._finish(snap)
        return snap

    def pause(self) -> ExecutionSnapshot:
        self._wait()
        snap = self._record(self.controller.pause(), ExecutionState.ACTIVE)
        self.registry.save_execution(snap)
        return snap

    def resume(self) -> ExecutionSnapshot:
        snap = self._record(self.controller.resume(), ExecutionState.PAUSED)
        self.registry.discard_execution(self.run.id)
        return snap

    def cancel(self) -> ExecutionSnapshot:
        self._wait()
        old = self.controller.state
        snap = self._record(self.controller.cancel(), old)
        self.registry.discard_execution(self.run.id)
        return snap

    def snapshot(self) -> ExecutionSnapshot:
        return self.controller.snapshot()

    def _finish(self, snap: ExecutionSnapshot):
        self.registry.record_event(
            self.run.id, _EVENT_NAMES[snap.state], ExecutionState.ACTIVE.value, snap.state.value
        )
        self.run = self.registry.mark_completed(self.run.id)
        logger.info("Run %s finished all %d stops", self.run.id, len(snap.stops))

    def _record(self, snap: ExecutionSnapshot, old: ExecutionState) -> ExecutionSnapshot:
        self.registry.record_event(
            self.run.id, _EVENT_NAMES[snap.state], old.value, snap.state.value
        )
        return snap

    def _wait(self):
        if self._confirm_delay > 0:
            self._delay(self._confirm_delay)
