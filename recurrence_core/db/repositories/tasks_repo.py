import json
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from recurrence_core.core.dates import is_iso_date
from recurrence_core.core.recurrence_rules import (
    DEFAULT_BEHAVIOR,
    RecurrenceRuleError,
    is_priority,
    is_recurrence_behavior,
    is_recurrence_type,
    next_occurrence,
    resolve_series_rule,
)
from recurrence_core.db.models import RecurrenceSeries, Task, TaskEvent

TASK_STATUSES = ("open", "in_progress", "done")


def _json_default(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def log_task_event(session: Session, task_id: str, event_type: str, meta: dict | str | None = None) -> None:
    if isinstance(meta, dict):
        meta_json = json.dumps(meta, ensure_ascii=False, default=_json_default)
    elif meta is None:
        meta_json = None
    else:
        meta_json = str(meta)

    session.add(
        TaskEvent(
            task_id=task_id,
            event_type=event_type,
            ts=datetime.now(timezone.utc),
            meta_json=meta_json,
        )
    )


def get_task(session: Session, user_id: str, task_id: str) -> Task:
    task = session.scalar(
        select(Task).where(Task.id == task_id, Task.user_id == user_id, Task.deleted_at.is_(None))
    )
    if task is None:
        raise LookupError("Task not found")
    return task


def create_task(
    session: Session,
    *,
    user_id: str,
    title: str,
    description: str | None = None,
    status: str = "open",
    priority: str = "medium",
    project_id: str | None = None,
    due_date: str | None = None,
    recurrence_type: str = "none",
    recurrence_behavior: str = DEFAULT_BEHAVIOR,
    recurrence_rule=None,
) -> Task:
    """
    Create a task owned by ``user_id``.
    A recurrence_type other than "none" stores the legacy inline definition;
    the next sync lifts it into a series.
    """
    if not title or not title.strip():
        raise ValueError("title is required and must be a non-empty string")
    if status not in TASK_STATUSES:
        raise ValueError(f"Invalid task status: {status}")
    if not is_priority(priority):
        raise ValueError(f"Invalid priority: {priority}")
    if due_date is not None and not is_iso_date(due_date):
        raise ValueError("due_date must be a YYYY-MM-DD date")
    if not is_recurrence_type(recurrence_type):
        raise RecurrenceRuleError(f"Invalid recurrence_type: {recurrence_type}")
    if not is_recurrence_behavior(recurrence_behavior):
        raise RecurrenceRuleError(f"Invalid recurrence_behavior: {recurrence_behavior}")
    rule = None if recurrence_type == "none" else resolve_series_rule(recurrence_type, recurrence_rule)

    task = Task(
        user_id=user_id,
        title=title.strip(),
        description=description,
        status=status,
        priority=priority,
        project_id=project_id,
        due_date=due_date,
        recurrence_type=recurrence_type,
        recurrence_behavior=recurrence_behavior,
        recurrence_rule=rule,
    )
    session.add(task)
    session.flush()
    log_task_event(session, task.id, "created")
    session.commit()
    session.refresh(task)
    return task


def set_task_status(session: Session, user_id: str, task_id: str, status: str) -> Task:
    if status == "done":
        raise ValueError("Use complete_task to mark a task done")
    if status not in TASK_STATUSES:
        raise ValueError(f"Invalid task status: {status}")
    task = get_task(session, user_id, task_id)
    task.status = status
    task.updated_at = datetime.now(timezone.utc)
    log_task_event(session, task.id, "updated", meta={"fields": ["status"]})
    session.commit()
    session.refresh(task)
    return task


def _completion_anchor(task: Task, today: str) -> str:
    due_anchor = task.due_date if is_iso_date(task.due_date) else today
    return max(due_anchor, today)


def complete_task(session: Session, user_id: str, task_id: str, today: str) -> Task:
    """
    Mark a task done.
    Completing an instance of an active after_completion series moves the
    series' next_due_date to the occurrence following max(due date, today).
    The series date never moves backwards.
    Completing a legacy after_completion task moves its own due date the same
    way; rollover reopens it once that date arrives.
    """
    task = get_task(session, user_id, task_id)
    if task.status == "done":
        return task

    now = datetime.now(timezone.utc)
    task.status = "done"
    task.updated_at = now
    meta: dict = {}

    series = session.get(RecurrenceSeries, task.recurrence_series_id) if task.recurrence_series_id else None
    if (
        series is not None
        and series.deleted_at is None
        and series.active
        and series.recurrence_behavior == "after_completion"
    ):
        anchor = _completion_anchor(task, today)
        following = next_occurrence(anchor, series.recurrence_type, series.recurrence_rule)
        if following is None:
            logger.warning("series rule cannot advance series={} anchor={}", series.id, anchor)
        elif following > series.next_due_date:
            series.next_due_date = following
            series.updated_at = now
            meta["next_due_date"] = following
    elif (
        task.recurrence_series_id is None
        and task.recurrence_type != "none"
        and task.recurrence_behavior == "after_completion"
    ):
        anchor = _completion_anchor(task, today)
        following = next_occurrence(anchor, task.recurrence_type, task.recurrence_rule)
        if following is None:
            logger.warning("legacy rule cannot advance task={} anchor={}", task.id, anchor)
        else:
            task.due_date = following
            task.recurrence_processed_at = now
            meta["due_date"] = following

    log_task_event(session, task.id, "completed", meta=meta or None)
    session.commit()
    session.refresh(task)
    return task


def list_tasks(session: Session, user_id: str, *, series_id: str | None = None) -> list[Task]:
    stmt = select(Task).where(Task.user_id == user_id, Task.deleted_at.is_(None))
    if series_id is not None:
        stmt = stmt.where(Task.recurrence_series_id == series_id)
    return list(session.scalars(stmt.order_by(Task.due_date, Task.created_at)).all())
