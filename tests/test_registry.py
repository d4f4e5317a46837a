"""Tests for the run registry."""

import itertools
from datetime import date, datetime, time

import pytest

from school_run.core.registry import DuplicateRunError, RunNotFoundError, RunRegistry
from school_run.models import ExecutionSnapshot, ExecutionState, ScheduledRun, Stop, StopType

NOW = datetime(2024, 3, 14, 12, 0)


@pytest.fixture
def registry():
    counter = itertools.count(1)
    return RunRegistry(clock=lambda: NOW, id_factory=lambda: f"run-{next(counter)}")


def _run(name, day, at=time(8, 0), completed=False, minutes=(5, 10)):
    return ScheduledRun(
        name=name,
        scheduled_date=day,
        scheduled_time=at,
        stops=[Stop(f"Stop {i}", StopType.CUSTOM, "Task", m) for i, m in enumerate(minutes)],
        is_completed=completed,
    )


class TestCreate:
    def test_assigns_id(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        assert run.id == "run-1"
        assert run.created_at == NOW

    def test_keeps_supplied_id(self, registry):
        r = _run("Morning", date(2024, 3, 15))
        r.id = "custom"
        assert registry.create(r).id == "custom"
        assert "custom" in registry

    def test_duplicate_id_rejected(self, registry):
        r = _run("Morning", date(2024, 3, 15))
        r.id = "same"
        registry.create(r)
        with pytest.raises(DuplicateRunError):
            registry.create(r)
        assert len(registry) == 1

    def test_does_not_validate(self, registry):
        run = registry.create(ScheduledRun("", date(2024, 3, 15), time(8, 0)))
        assert run.stops == []

    def test_returned_run_is_a_copy(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        run.name = "Changed"
        run.stops[0].name = "Changed"
        stored = registry.get(run.id)
        assert stored.name == "Morning"
        assert stored.stops[0].name == "Stop 0"

    def test_estimated_duration(self, registry):
        run = registry.create(_run("Morning Run", date(2024, 3, 15), minutes=(5, 10, 15)))
        assert run.estimated_duration == 30


class TestLookup:
    def test_get_missing_raises(self, registry):
        with pytest.raises(RunNotFoundError, match="nope"):
            registry.get("nope")

    def test_find_missing_returns_none(self, registry):
        assert registry.find("nope") is None

    def test_all_in_insertion_order(self, registry):
        registry.create(_run("B", date(2024, 3, 20)))
        registry.create(_run("A", date(2024, 3, 10)))
        assert [r.name for r in registry.all()] == ["B", "A"]


class TestClassification:
    def test_upcoming_sorted_ascending(self, registry):
        registry.create(_run("Later", date(2024, 3, 20)))
        registry.create(_run("Afternoon", date(2024, 3, 15), time(15, 0)))
        registry.create(_run("Morning", date(2024, 3, 15), time(8, 0)))
        assert [r.name for r in registry.upcoming()] == ["Morning", "Afternoon", "Later"]

    def test_today_is_upcoming_even_if_time_passed(self, registry):
        registry.create(_run("Early today", date(2024, 3, 14), time(6, 0)))
        assert [r.name for r in registry.upcoming()] == ["Early today"]
        assert registry.past() == []

    def test_past_sorted_descending(self, registry):
        registry.create(_run("Old", date(2024, 3, 1)))
        registry.create(_run("Yesterday", date(2024, 3, 13)))
        registry.create(_run("Last week", date(2024, 3, 7)))
        assert [r.name for r in registry.past()] == ["Yesterday", "Last week", "Old"]

    def test_past_same_day_latest_time_first(self, registry):
        registry.create(_run("Yesterday morning", date(2024, 3, 13), time(8, 0)))
        registry.create(_run("Yesterday evening", date(2024, 3, 13), time(17, 30)))
        registry.create(_run("Last week", date(2024, 3, 7), time(18, 0)))
        assert [r.name for r in registry.past()] == [
            "Yesterday evening",
            "Yesterday morning",
            "Last week",
        ]

    def test_completed_future_run_is_past(self, registry):
        registry.create(_run("Done early", date(2024, 4, 1), completed=True))
        assert registry.upcoming() == []
        assert [r.name for r in registry.past()] == ["Done early"]

    def test_buckets_partition_all(self, registry):
        registry.create(_run("Past", date(2024, 3, 1)))
        registry.create(_run("Future", date(2024, 3, 30)))
        registry.create(_run("Completed", date(2024, 3, 30), completed=True))
        registry.create(_run("Today", date(2024, 3, 14)))
        upcoming = {r.id for r in registry.upcoming()}
        past = {r.id for r in registry.past()}
        assert upcoming.isdisjoint(past)
        assert upcoming | past == {r.id for r in registry.all()}

    def test_ties_keep_insertion_order(self, registry):
        for name in ("First", "Second", "Third"):
            registry.create(_run(name, date(2024, 3, 20)))
        for name in ("Old 1", "Old 2"):
            registry.create(_run(name, date(2024, 3, 1)))
        assert [r.name for r in registry.upcoming()] == ["First", "Second", "Third"]
        assert [r.name for r in registry.past()] == ["Old 1", "Old 2"]

    def test_reclassifies_when_clock_moves(self):
        now = {"value": datetime(2024, 3, 14, 9, 0)}
        registry = RunRegistry(clock=lambda: now["value"])
        registry.create(_run("Friday", date(2024, 3, 15)))
        assert len(registry.upcoming()) == 1
        now["value"] = datetime(2024, 3, 16, 9, 0)
        assert registry.upcoming() == []
        assert len(registry.past()) == 1

    def test_all_sorted_upcoming_first(self, registry):
        registry.create(_run("Past", date(2024, 3, 1)))
        registry.create(_run("Future", date(2024, 3, 30)))
        assert [r.name for r in registry.all_sorted()] == ["Future", "Past"]

    def test_todays_runs(self, registry):
        registry.create(_run("Pickup", date(2024, 3, 14), time(15, 0)))
        registry.create(_run("Tomorrow", date(2024, 3, 15)))
        registry.create(_run("Dropoff", date(2024, 3, 14), time(8, 0)))
        assert [r.name for r in registry.todays_runs()] == ["Dropoff", "Pickup"]


class TestMutation:
    def test_mark_completed(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        updated = registry.mark_completed(run.id)
        assert updated.is_completed
        assert registry.get(run.id).is_completed

    def test_mark_completed_idempotent(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        registry.mark_completed(run.id)
        registry.mark_completed(run.id)
        completed = [e for e in registry.events(run.id) if e.event_type == "completed"]
        assert len(completed) == 1

    def test_mark_completed_missing(self, registry):
        with pytest.raises(RunNotFoundError):
            registry.mark_completed("missing")

    def test_update(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        run.name = "Early Morning"
        registry.update(run)
        assert registry.get(run.id).name == "Early Morning"
        assert registry.get(run.id).created_at == NOW

    def test_update_missing(self, registry):
        run = _run("Ghost", date(2024, 3, 15))
        run.id = "ghost"
        with pytest.raises(RunNotFoundError):
            registry.update(run)

    def test_delete(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        registry.delete(run.id)
        assert registry.find(run.id) is None
        with pytest.raises(RunNotFoundError):
            registry.delete(run.id)

    def test_events_logged(self, registry):
        run = registry.create(_run("Morning", date(2024, 3, 15)))
        registry.mark_completed(run.id)
        events = registry.events(run.id)
        assert [e.event_type for e in events] == ["created", "completed"]
        assert events[0].created_at == NOW


def _paused(run_id, index=1):
    stops = (Stop("A", StopType.HOME, "Task", 5, is_completed=True), Stop("B", StopType.SCHOOL, "Task", 10))
    return ExecutionSnapshot(run_id, ExecutionState.PAUSED, index, stops)


class TestSavedExecutions:
    def test_save_and_fetch(self, registry):
        run = registry.create(_run("Run", date(2024, 3, 15)))
        assert registry.saved_execution(run.id) is None
        registry.save_execution(_paused(run.id))
        saved = registry.saved_execution(run.id)
        assert saved.current_stop_index == 1
        assert [s.is_completed for s in saved.stops] == [True, False]
        assert registry.saved_executions() == [saved]

    def test_saved_copy_is_detached(self, registry):
        run = registry.create(_run("Run", date(2024, 3, 15)))
        registry.save_execution(_paused(run.id))
        registry.saved_execution(run.id).stops[1].is_completed = True
        assert not registry.saved_execution(run.id).stops[1].is_completed

    def test_save_for_missing_run(self, registry):
        with pytest.raises(RunNotFoundError):
            registry.save_execution(_paused("nope"))

    @pytest.mark.parametrize("action", ["mark_completed", "delete", "update", "discard"])
    def test_dropped_when_run_changes(self, registry, action):
        run = registry.create(_run("Run", date(2024, 3, 15)))
        registry.save_execution(_paused(run.id))
        if action == "mark_completed":
            registry.mark_completed(run.id)
        elif action == "delete":
            registry.delete(run.id)
        elif action == "update":
            registry.update(run)
        else:
            registry.discard_execution(run.id)
        assert registry.saved_executions() == []
