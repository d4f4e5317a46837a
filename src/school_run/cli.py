"""CLI entry point for school run planning."""

import json
import logging
import sys
import time as time_mod
from contextlib import contextmanager
from datetime import date, time

import click

from school_run.config import get_config
from school_run.core import planning as planning_mod
from school_run.core import validation as validation_mod
from school_run.core.execution import InvalidTransitionError
from school_run.core.registry import RunRegistry
from school_run.core.session import RunSession
from school_run.models import ExecutionState, ScheduledRun, Stop, StopType
from school_run.storage import StorageError, load_registry, run_to_dict, save_registry


@contextmanager
def _open_registry(save: bool = True):
    """Load the run file, and write it back afterwards when `save` is set."""
    config = get_config()
    try:
        registry = load_registry(config.data_path)
    except StorageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    yield registry
    if save:
        save_registry(registry, config.data_path)


@click.group()
def main():
    """sr - School Run CLI"""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Parsing ───────────────────────────────────────────────────────────────────


def _parse_stop(text: str) -> Stop:
    """Parse 'name|type|minutes|task[|child]'."""
    parts = [p.strip() for p in text.split("|")]
    if len(parts) < 4 or len(parts) > 5:
        raise click.BadParameter(
            f"expected 'name|type|minutes|task[|child]', got {text!r}", param_hint="--stop"
        )
    name, type_name, minutes, task = parts[:4]
    try:
        stop_type = StopType(type_name.lower())
    except ValueError:
        choices = ", ".join(t.value for t in StopType)
        raise click.BadParameter(
            f"unknown stop type {type_name!r} (choose from {choices})", param_hint="--stop"
        )
    try:
        estimated = int(minutes)
    except ValueError:
        raise click.BadParameter(f"minutes must be a whole number, got {minutes!r}", param_hint="--stop")

    child = planning_mod.child_from_name(parts[4]) if len(parts) == 5 and parts[4] else None
    return Stop(name=name, stop_type=stop_type, task=task, estimated_minutes=estimated, assigned_child=child)


def _parse_date(ctx, param, value):
    if value is None:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter("use YYYY-MM-DD")


def _parse_time(ctx, param, value):
    try:
        return time.fromisoformat(value)
    except ValueError:
        raise click.BadParameter("use HH:MM")


def _resolve_id(registry: RunRegistry, run_id: str) -> str:
    """Accept a full run ID or an unambiguous prefix of one."""
    if run_id in registry:
        return run_id
    matches = [r.id for r in registry.all() if r.id.startswith(run_id)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        click.echo(f"Ambiguous run ID: {run_id} matches {len(matches)} runs", err=True)
    else:
        click.echo(f"Run not found: {run_id}", err=True)
    sys.exit(1)


def _run_options(f):
    f = click.option("--stop", "stops", multiple=True, help="Stop as 'name|type|minutes|task[|child]'")(f)
    f = click.option("--time", "run_time", default="08:00", callback=_parse_time, help="Start time HH:MM")(f)
    f = click.option("--date", "run_date", default=None, callback=_parse_date, help="Date YYYY-MM-DD (default today)")(f)
    f = click.argument("name")(f)
    return f


def _review(name, stops) -> list:
    config = get_config()
    return validation_mod.review_run(
        name, stops,
        max_stop_minutes=config.max_stop_minutes,
        max_run_minutes=config.max_run_minutes,
    )


def _echo_errors(errors) -> None:
    for category, errs in validation_mod.group_by_category(errors).items():
        click.echo(f"{validation_mod.CATEGORY_LABELS[category]}:", err=True)
        for e in errs:
            label = "warning" if e.is_advisory else "error"
            click.echo(f"  [{label}] {e.message}", err=True)


# ── Run Commands ──────────────────────────────────────────────────────────────


@main.group("run")
def run_group():
    """Manage scheduled runs."""
    pass


@run_group.command("add")
@_run_options
def run_add(name, run_date, run_time, stops):
    """Validate and schedule a new run."""
    parsed = [_parse_stop(s) for s in stops]
    errors = _review(name, parsed)
    if validation_mod.blocking(errors):
        _echo_errors(errors)
        sys.exit(1)
    if errors:
        _echo_errors(errors)

    with _open_registry() as registry:
        run = registry.create(ScheduledRun(
            name=name.strip(),
            scheduled_date=run_date,
            scheduled_time=run_time,
            stops=parsed,
        ))
        click.echo(f"Created run: {run.id}")
        click.echo(f"  Name: {run.name}")
        click.echo(f"  When: {run.scheduled_at:%Y-%m-%d %H:%M}")
        click.echo(f"  Stops: {len(run.stops)} ({run.estimated_duration} min)")


@run_group.command("validate")
@_run_options
def run_validate(name, run_date, run_time, stops):
    """Check a run without scheduling it."""
    parsed = [_parse_stop(s) for s in stops]
    errors = _review(name, parsed)
    if not errors:
        click.echo("Run is valid.")
        return
    _echo_errors(errors)
    if validation_mod.blocking(errors):
        sys.exit(1)


@run_group.command("list")
@click.option("--upcoming", "bucket", flag_value="upcoming", help="Only upcoming runs")
@click.option("--past", "bucket", flag_value="past", help="Only past runs")
@click.option("--today", "bucket", flag_value="today", help="Only runs scheduled today")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def run_list(bucket, json_output):
    """List runs, upcoming first."""
    with _open_registry(save=False) as registry:
        if bucket == "upcoming":
            runs = registry.upcoming()
        elif bucket == "past":
            runs = registry.past()
        elif bucket == "today":
            runs = registry.todays_runs()
        else:
            runs = registry.all_sorted()

        if json_output:
            click.echo(json.dumps([run_to_dict(r) for r in runs], indent=2))
            return

        if not runs:
            click.echo("No runs found.")
            return

        for run in runs:
            icon = "✓" if run.is_completed else ("○" if registry.is_upcoming(run) else "✗")
            click.echo(
                f"  {icon} {run.id[:8]} {run.scheduled_at:%Y-%m-%d %H:%M} "
                f"{run.name} ({len(run.stops)} stops, {run.estimated_duration} min)"
            )


@run_group.command("show")
@click.argument("run_id")
def run_show(run_id):
    """Show run details."""
    with _open_registry(save=False) as registry:
        run = registry.get(_resolve_id(registry, run_id))
        click.echo(f"Run: {run.id}")
        click.echo(f"  Name: {run.name}")
        click.echo(f"  When: {run.scheduled_at:%Y-%m-%d %H:%M}")
        saved = registry.saved_execution(run.id)
        if run.is_completed:
            status = "completed"
        elif saved:
            status = f"paused at stop {saved.current_stop_index + 1} of {len(saved.stops)}"
        else:
            status = "scheduled"
        click.echo(f"  Status: {status}")
        click.echo(f"  Duration: {run.estimated_duration} min")
        click.echo(f"  Finish: {planning_mod.estimated_finish(run):%H:%M}")
        children = run.participating_children
        if children:
            click.echo(f"  Children: {', '.join(c.display_name for c in children)}")
        click.echo("  Stops:")
        arrivals = planning_mod.estimated_arrivals(run.stops, run.scheduled_at)
        for i, (stop, eta) in enumerate(zip(run.stops, arrivals), start=1):
            who = f" [{stop.assigned_child.name}]" if stop.assigned_child else ""
            click.echo(f"    {i}. {stop.display_name}{who} - {stop.task} ({stop.formatted_duration}, done by {eta:%H:%M})")


@run_group.command("done")
@click.argument("run_id")
def run_done(run_id):
    """Mark a run as completed."""
    with _open_registry() as registry:
        run = registry.mark_completed(_resolve_id(registry, run_id))
        click.echo(f"Completed run: {run.id} ({run.name})")


@run_group.command("delete")
@click.argument("run_id")
def run_delete(run_id):
    """Delete a run."""
    with _open_registry() as registry:
        resolved = _resolve_id(registry, run_id)
        registry.delete(resolved)
        click.echo(f"Deleted run: {resolved}")


@run_group.command("execute")
@click.argument("run_id")
@click.option("--restart", is_flag=True, help="Start again from the first stop, dropping a paused execution")
def run_execute(run_id, restart):
    """Step through a run stop by stop, resuming a paused run where it stopped."""
    config = get_config()
    with _open_registry() as registry:
        session = RunSession(
            registry, _resolve_id(registry, run_id),
            delay=time_mod.sleep, confirm_delay=config.confirm_delay,
        )
        if session.run.is_completed:
            click.echo(f"Run already completed: {session.run.name}", err=True)
            sys.exit(1)

        try:
            if session.has_saved_execution and not restart:
                snap = session.restore()
                click.echo(
                    f"Restored {session.run.name}: paused at stop "
                    f"{snap.current_stop_index + 1} of {len(snap.stops)} "
                    f"({snap.completed_count} done)"
                )
            else:
                snap = session.start()
                click.echo(f"Started {session.run.name} ({len(snap.stops)} stops)")
            _step_through(session, len(snap.stops))
        except InvalidTransitionError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)


def _step_through(session: RunSession, total: int):
    while not session.controller.is_terminal:
        if session.state == ExecutionState.PAUSED:
            if click.confirm("Resume run?", default=True):
                session.resume()
                continue
            click.echo(f"Run paused at stop {session.controller.current_stop_index + 1} of {total}")
            click.echo(f"Run 'sr run execute {session.run.id[:8]}' to pick it up again.")
            return

        stop = session.controller.current_stop()
        index = session.controller.current_stop_index
        click.echo(f"Stop {index + 1}/{total}: {stop.display_name} - {stop.task}")
        if click.confirm("Mark stop complete?", default=True):
            session.complete_current_stop()
            click.echo(f"  Stop {index + 1} completed")
            continue

        action = click.prompt(
            "Pause or cancel?",
            type=click.Choice(["pause", "cancel", "continue"]),
            default="pause",
        )
        if action == "pause":
            session.pause()
            click.echo(f"Run paused at stop {index + 1}")
        elif action == "cancel":
            snap = session.cancel()
            click.echo(f"Run cancelled after {snap.completed_count} of {total} stops. Progress discarded.")

    if session.state == ExecutionState.COMPLETED:
        click.echo(f"Run completed: all {total} stops done")


# ── Other Commands ────────────────────────────────────────────────────────────


@main.command("seed")
def seed():
    """Load demo runs."""
    with _open_registry() as registry:
        runs = [registry.create(r) for r in planning_mod.demo_runs(registry.today())]
        for run in runs:
            click.echo(f"  Added {run.id[:8]} {run.name}")


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def serve(host, port):
    """Serve the JSON API."""
    from school_run.web.app import run_server

    click.echo(f"Serving runs at http://{host}:{port}")
    run_server(host=host, port=port)


if __name__ == "__main__":
    main()
