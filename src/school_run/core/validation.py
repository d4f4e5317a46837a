"""Run validation.

Validation never raises and never mutates its input: every problem found is
returned as a ``ValidationError`` value so the caller can show it next to the
offending field or stop.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from school_run.models import ScheduledRun, Stop

logger = logging.getLogger(__name__)


class ValidationErrorKind(str, Enum):
    EMPTY_NAME = "empty_name"
    NO_STOPS = "no_stops"
    INVALID_STOP = "invalid_stop"
    # Advisory kinds, only produced by review_run()
    EMPTY_STOP_TASK = "empty_stop_task"
    EXCESSIVE_STOP_DURATION = "excessive_stop_duration"
    EXCESSIVE_TOTAL_DURATION = "excessive_total_duration"
    DUPLICATE_STOP_NAMES = "duplicate_stop_names"


ADVISORY_KINDS = frozenset({
    ValidationErrorKind.EMPTY_STOP_TASK,
    ValidationErrorKind.EXCESSIVE_STOP_DURATION,
    ValidationErrorKind.EXCESSIVE_TOTAL_DURATION,
    ValidationErrorKind.DUPLICATE_STOP_NAMES,
})

CATEGORY_LABELS = {
    "run_details": "Run Information",
    "run_structure": "Run Structure",
    "stop_details": "Stop Details",
}


@dataclass(frozen=True)
class ValidationError:
    kind: ValidationErrorKind
    stop_index: int | None = None
    field: str | None = None

    @property
    def is_advisory(self) -> bool:
        return self.kind in ADVISORY_KINDS

    @property
    def category(self) -> str:
        if self.kind == ValidationErrorKind.EMPTY_NAME:
            return "run_details"
        if self.kind in (
            ValidationErrorKind.NO_STOPS,
            ValidationErrorKind.EXCESSIVE_TOTAL_DURATION,
            ValidationErrorKind.DUPLICATE_STOP_NAMES,
        ):
            return "run_structure"
        return "stop_details"

    @property
    def message(self) -> str:
        # Stops are numbered from 1 in user-facing text
        n = self.stop_index + 1 if self.stop_index is not None else None
        if self.kind == ValidationErrorKind.EMPTY_NAME:
            return "Please enter a name for your run"
        if self.kind == ValidationErrorKind.NO_STOPS:
            return "Please add at least one stop to your run"
        if self.kind == ValidationErrorKind.INVALID_STOP:
            if self.field == "estimated_minutes":
                return f"Stop {n}: Estimated minutes cannot be negative"
            return f"Stop {n}: Please enter a location name"
        if self.kind == ValidationErrorKind.EMPTY_STOP_TASK:
            return f"Stop {n}: Please describe what needs to be done at this stop"
        if self.kind == ValidationErrorKind.EXCESSIVE_STOP_DURATION:
            return f"Stop {n}: Duration is longer than the per-stop limit"
        if self.kind == ValidationErrorKind.EXCESSIVE_TOTAL_DURATION:
            return "Total run duration is longer than the run limit"
        return "Multiple stops have the same name"

    @property
    def suggestion(self) -> str:
        return _SUGGESTIONS.get((self.kind, self.field), _SUGGESTIONS.get((self.kind, None), ""))

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "stop_index": self.stop_index,
            "field": self.field,
            "category": self.category,
            "message": self.message,
            "advisory": self.is_advisory,
        }


_SUGGESTIONS = {
    (ValidationErrorKind.EMPTY_NAME, None): "Try something like 'Monday School Run' or 'After School Activities'",
    (ValidationErrorKind.NO_STOPS, None): "Add at least one stop to the run",
    (ValidationErrorKind.INVALID_STOP, "name"): "Choose a preset location or enter a custom location name",
    (ValidationErrorKind.INVALID_STOP, "estimated_minutes"): "Enter the estimated time you'll spend at this stop",
    (ValidationErrorKind.EMPTY_STOP_TASK, None): "Describe what you need to do, like 'Pick up Emma'",
    (ValidationErrorKind.EXCESSIVE_STOP_DURATION, None): "Consider breaking long activities into multiple shorter stops",
    (ValidationErrorKind.EXCESSIVE_TOTAL_DURATION, None): "Consider splitting this into multiple shorter runs",
    (ValidationErrorKind.DUPLICATE_STOP_NAMES, None): "Add numbers or descriptions to make each stop unique",
}


def _is_blank(value: str | None) -> bool:
    return not value or not value.strip()


def validate(name: str, stops: list[Stop]) -> list[ValidationError]:
    """Check a candidate run name and stop list.

    Returns one error per problem found, in a stable order: run name first,
    then the stop list, then each stop by position.
    """
    errors: list[ValidationError] = []

    if _is_blank(name):
        errors.append(ValidationError(ValidationErrorKind.EMPTY_NAME))

    if not stops:
        errors.append(ValidationError(ValidationErrorKind.NO_STOPS))

    for index, stop in enumerate(stops):
        if _is_blank(stop.name):
            errors.append(ValidationError(ValidationErrorKind.INVALID_STOP, index, "name"))
        if stop.estimated_minutes < 0:
            errors.append(
                ValidationError(ValidationErrorKind.INVALID_STOP, index, "estimated_minutes")
            )

    if errors:
        logger.debug("Run %r failed validation with %d error(s)", name, len(errors))
    return errors


def validate_run(run: ScheduledRun) -> list[ValidationError]:
    """Validate an already-built run."""
    return validate(run.name, run.stops)


def review_run(
    name: str,
    stops: list[Stop],
    max_stop_minutes: int = 120,
    max_run_minutes: int = 240,
) -> list[ValidationError]:
    """Run validate() and then the advisory checks used by the creation form.

    Advisory errors do not make a run invalid; they flag plans that are
    probably mistakes (a stop with no task, a three hour stop, two stops
    with the same name).
    """
    errors = validate(name, stops)

    for index, stop in enumerate(stops):
        if _is_blank(stop.task):
            errors.append(ValidationError(ValidationErrorKind.EMPTY_STOP_TASK, index))
        if stop.estimated_minutes > max_stop_minutes:
            errors.append(ValidationError(ValidationErrorKind.EXCESSIVE_STOP_DURATION, index))

    if sum(s.estimated_minutes for s in stops) > max_run_minutes:
        errors.append(ValidationError(ValidationErrorKind.EXCESSIVE_TOTAL_DURATION))

    names = [s.name.strip().lower() for s in stops if not _is_blank(s.name)]
    if len(names) != len(set(names)):
        errors.append(ValidationError(ValidationErrorKind.DUPLICATE_STOP_NAMES))

    return errors


def blocking(errors: list[ValidationError]) -> list[ValidationError]:
    """Errors that must be fixed before a run can be committed."""
    return [e for e in errors if not e.is_advisory]


def group_by_category(errors: list[ValidationError]) -> dict[str, list[ValidationError]]:
    """Group errors by category, in display order."""
    grouped: dict[str, list[ValidationError]] = {}
    for category in CATEGORY_LABELS:
        matching = [e for e in errors if e.category == category]
        if matching:
            grouped[category] = matching
    return grouped
