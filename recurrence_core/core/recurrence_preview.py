from __future__ import annotations

from dataclasses import dataclass

from recurrence_core.core.recurrence_rules import describe_cadence, next_occurrence, next_occurrence_on_or_after
from recurrence_core.db.models import RecurrenceSeries, Task

BEHAVIOR_LABELS = {
    "after_completion": "After Completion",
    "duplicate_on_schedule": "Duplicate On Schedule",
}


@dataclass(slots=True)
class RecurrencePreview:
    cadence: str
    next: str | None
    detail: str


def task_recurrence_preview(task: Task, today: str) -> RecurrencePreview:
    cadence = describe_cadence(task.recurrence_type, task.recurrence_rule)

    if task.recurrence_behavior == "after_completion":
        anchor = task.due_date if task.due_date and task.due_date > today else today
        following = next_occurrence(anchor, task.recurrence_type, task.recurrence_rule)
        if following:
            detail = f"If completed today, next occurrence is scheduled for {following}."
        else:
            detail = "Set a valid recurrence rule to preview the next occurrence."
        return RecurrencePreview(cadence=cadence, next=following, detail=detail)

    if not task.due_date:
        return RecurrencePreview(
            cadence=cadence,
            next=None,
            detail="Add a due date to anchor schedule-based duplicates.",
        )
    following = next_occurrence_on_or_after(task.due_date, task.recurrence_type, task.recurrence_rule, today)
    if following:
        detail = f"Next scheduled duplicate: {following}."
    else:
        detail = "Unable to calculate the next duplicate date."
    return RecurrencePreview(cadence=cadence, next=following, detail=detail)


def series_preview(series: RecurrenceSeries) -> RecurrencePreview:
    cadence = describe_cadence(series.recurrence_type, series.recurrence_rule)
    if series.recurrence_behavior == "after_completion":
        detail = f"Next instance due {series.next_due_date}. Completing an instance advances this date."
    else:
        detail = f"Next scheduled instance due {series.next_due_date}. Instances are created on schedule dates."
    return RecurrencePreview(cadence=cadence, next=series.next_due_date, detail=detail)
