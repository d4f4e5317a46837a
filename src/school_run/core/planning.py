"""Helpers for building runs: stop presets, arrival estimates, demo data."""

import re
from datetime import date, datetime, time, timedelta

from school_run.models import ChildProfile, ScheduledRun, Stop, StopType

DEFAULT_TASKS = {
    StopType.HOME: "Gather items and prepare",
    StopType.SCHOOL: "Pick up {child}",
    StopType.OT: "Drop off for therapy session",
    StopType.MUSIC: "Drop off for lesson",
    StopType.ACTIVITY: "Drop off for activity",
    StopType.CUSTOM: "Complete activity",
}

DEFAULT_MINUTES = {
    StopType.HOME: 5,
    StopType.SCHOOL: 10,
    StopType.OT: 15,
    StopType.MUSIC: 10,
    StopType.ACTIVITY: 10,
    StopType.CUSTOM: 12,
}

DEFAULT_NAMES = {
    StopType.HOME: "Home",
    StopType.SCHOOL: "School",
    StopType.OT: "OT Clinic",
    StopType.MUSIC: "Music Lesson",
    StopType.ACTIVITY: "Activity",
    StopType.CUSTOM: "Custom Stop",
}

DEMO_CHILDREN = [
    ChildProfile(id="emma", name="Emma", age=8),
    ChildProfile(id="liam", name="Liam", age=10),
    ChildProfile(id="sophia", name="Sophia", age=6),
    ChildProfile(id="noah", name="Noah", age=12),
]


def empty_stop() -> Stop:
    """A blank stop as shown when the user taps 'add stop'."""
    return Stop(name="", stop_type=StopType.CUSTOM, task="", estimated_minutes=5)


def preset_stop(
    stop_type: StopType,
    assigned_child: ChildProfile | None = None,
    name: str | None = None,
) -> Stop:
    """Build a stop with sensible defaults for its type."""
    child_name = assigned_child.name if assigned_child else "child"
    return Stop(
        name=name or DEFAULT_NAMES[stop_type],
        stop_type=stop_type,
        task=DEFAULT_TASKS[stop_type].format(child=child_name),
        estimated_minutes=DEFAULT_MINUTES[stop_type],
        assigned_child=assigned_child,
    )


def estimated_arrivals(stops: list[Stop], start: datetime) -> list[datetime]:
    """Time each stop is expected to be finished, in stop order."""
    arrivals = []
    current = start
    for stop in stops:
        current = current + timedelta(minutes=stop.estimated_minutes)
        arrivals.append(current)
    return arrivals


def estimated_finish(run: ScheduledRun) -> datetime:
    return run.scheduled_at + timedelta(minutes=run.estimated_duration)


def demo_runs(today: date) -> list[ScheduledRun]:
    """A small mixed dataset: two upcoming runs, one overdue, one completed."""
    emma, liam, sophia, noah = DEMO_CHILDREN
    return [
        ScheduledRun(
            name="Morning School Run",
            scheduled_date=today + timedelta(days=1),
            scheduled_time=time(8, 0),
            stops=[
                preset_stop(StopType.HOME, name="Home"),
                preset_stop(StopType.SCHOOL, emma, name="Riverside Elementary"),
                preset_stop(StopType.SCHOOL, noah, name="Oak Hill Middle"),
            ],
        ),
        ScheduledRun(
            name="Thursday Activities",
            scheduled_date=today + timedelta(days=3),
            scheduled_time=time(15, 30),
            stops=[
                Stop("Home", StopType.HOME, "Pick snacks & guitar", 5),
                Stop("Riverside Elementary", StopType.SCHOOL, "Pick up Emma", 10, emma),
                Stop("Children's OT Clinic", StopType.OT, "Drop off Emma", 15, emma),
                Stop("Harmony Music School", StopType.MUSIC, "Drop off Liam", 10, liam),
            ],
        ),
        ScheduledRun(
            name="Swim Practice",
            scheduled_date=today - timedelta(days=2),
            scheduled_time=time(16, 0),
            stops=[
                Stop("Home", StopType.HOME, "Grab swim bags", 5),
                Stop("Aquatic Center", StopType.ACTIVITY, "Drop off Sophia", 10, sophia),
            ],
        ),
        ScheduledRun(
            name="Monday School Run",
            scheduled_date=today - timedelta(days=4),
            scheduled_time=time(8, 0),
            stops=[
                Stop("Home", StopType.HOME, "Pack lunches", 5),
                Stop("Riverside Elementary", StopType.SCHOOL, "Drop off Emma", 10, emma),
            ],
            is_completed=True,
        ),
    ]


def slugify(text: str) -> str:
    """Convert a name to a URL-friendly slug."""
    slug = text.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def child_from_name(name: str) -> ChildProfile:
    """Look up a demo child by name, or make a profile for a new one."""
    for child in DEMO_CHILDREN:
        if child.name.lower() == name.strip().lower():
            return child
    return ChildProfile(id=slugify(name), name=name.strip())
