from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recurrence_core.core.dates import is_iso_date
from recurrence_core.core.recurrence_rules import (
    DEFAULT_BEHAVIOR,
    PRIORITIES,
    RecurrenceRuleError,
    is_priority,
    is_recurrence_behavior,
    is_series_type,
    resolve_series_rule,
)
from recurrence_core.db.models import Project, RecurrenceSeries, Task
from recurrence_core.db.repositories.tasks_repo import log_task_event

TITLE_MAX_LEN = 500
DESCRIPTION_MAX_LEN = 5000

_EDITABLE_FIELDS = {
    "title",
    "description",
    "priority",
    "project_id",
    "recurrence_type",
    "recurrence_behavior",
    "recurrence_rule",
    "next_due_date",
    "active",
}


@dataclass(slots=True)
class SeriesDraft:
    user_id: str
    title: str
    recurrence_type: str
    next_due_date: str
    description: str | None = None
    priority: str = "medium"
    project_id: str | None = None
    recurrence_behavior: str = DEFAULT_BEHAVIOR
    recurrence_rule: str | None = None
    active: bool = True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Storage contract used by the migration, sync and rollover steps. These
# functions flush but never commit; callers own the unit of work.


def find_active_series_due_by(session: Session, user_id: str, date: str) -> list[RecurrenceSeries]:
    return list(
        session.scalars(
            select(RecurrenceSeries)
            .where(
                RecurrenceSeries.user_id == user_id,
                RecurrenceSeries.deleted_at.is_(None),
                RecurrenceSeries.active.is_(True),
                RecurrenceSeries.next_due_date <= date,
            )
            .order_by(RecurrenceSeries.next_due_date, RecurrenceSeries.id)
        ).all()
    )


def find_outstanding_instance(session: Session, series_id: str) -> Task | None:
    return session.scalar(
        select(Task)
        .where(
            Task.recurrence_series_id == series_id,
            Task.deleted_at.is_(None),
            Task.status != "done",
        )
        .limit(1)
    )


def find_instance_by_due_date(session: Session, series_id: str, date: str) -> Task | None:
    return session.scalar(
        select(Task)
        .where(
            Task.recurrence_series_id == series_id,
            Task.due_date == date,
            Task.deleted_at.is_(None),
        )
        .limit(1)
    )


def insert_series(session: Session, draft: SeriesDraft) -> RecurrenceSeries:
    now = _utcnow()
    series = RecurrenceSeries(
        user_id=draft.user_id,
        project_id=draft.project_id,
        title=draft.title,
        description=draft.description,
        priority=draft.priority,
        recurrence_type=draft.recurrence_type,
        recurrence_behavior=draft.recurrence_behavior,
        recurrence_rule=draft.recurrence_rule,
        next_due_date=draft.next_due_date,
        active=draft.active,
        created_at=now,
        updated_at=now,
    )
    session.add(series)
    session.flush()
    return series


def update_series(session: Session, series_id: str, **patch: Any) -> RecurrenceSeries:
    series = session.get(RecurrenceSeries, series_id)
    if series is None:
        raise LookupError("Recurrence series not found")
    for key, value in patch.items():
        setattr(series, key, value)
    series.updated_at = _utcnow()
    session.flush()
    return series


def insert_instance(session: Session, series: RecurrenceSeries, due_date: str) -> Task | None:
    """Materialize one open task for ``series`` due on ``due_date``.

    Returns None when the (series, due date) pair is already taken, which only
    happens when another pass materialized it after our existence check.
    """
    now = _utcnow()
    task = Task(
        user_id=series.user_id,
        project_id=series.project_id,
        title=series.title,
        description=series.description,
        status="open",
        priority=series.priority,
        due_date=due_date,
        recurrence_series_id=series.id,
        recurrence_type="none",
        recurrence_behavior=DEFAULT_BEHAVIOR,
        recurrence_rule=None,
        recurrence_processed_at=None,
        created_at=now,
        updated_at=now,
    )
    try:
        with session.begin_nested():
            session.add(task)
            session.flush()
    except IntegrityError:
        logger.info("instance already materialized series={} due_date={}", series.id, due_date)
        return None
    log_task_event(session, task.id, "materialized", meta={"series_id": series.id, "due_date": due_date})
    session.flush()
    return task


def find_legacy_recurring_items(session: Session, user_id: str) -> list[Task]:
    return list(
        session.scalars(
            select(Task)
            .where(
                Task.user_id == user_id,
                Task.deleted_at.is_(None),
                Task.recurrence_series_id.is_(None),
                Task.recurrence_type != "none",
            )
            .order_by(Task.created_at, Task.id)
        ).all()
    )


def find_users_with_legacy_items(session: Session) -> list[str]:
    return list(
        session.scalars(
            select(Task.user_id)
            .where(
                Task.deleted_at.is_(None),
                Task.recurrence_series_id.is_(None),
                Task.recurrence_type != "none",
            )
            .distinct()
            .order_by(Task.user_id)
        ).all()
    )


def update_item(session: Session, task_id: str, **patch: Any) -> Task:
    task = session.get(Task, task_id)
    if task is None:
        raise LookupError("Task not found")
    for key, value in patch.items():
        setattr(task, key, value)
    task.updated_at = _utcnow()
    session.flush()
    return task


def bulk_reopen_due_legacy_items(session: Session, user_id: str, date: str) -> list[str]:
    task_ids = list(
        session.scalars(
            select(Task.id).where(
                Task.user_id == user_id,
                Task.deleted_at.is_(None),
                Task.status == "done",
                Task.recurrence_type != "none",
                Task.due_date.is_not(None),
                Task.due_date <= date,
            )
        ).all()
    )
    if not task_ids:
        return []

    session.execute(
        update(Task)
        .where(Task.id.in_(task_ids))
        .values(status="open", updated_at=_utcnow())
        .execution_options(synchronize_session="fetch")
    )
    for task_id in task_ids:
        log_task_event(session, task_id, "reopened", meta={"today": date})
    session.flush()
    return task_ids


# User-facing series management.


def _validate_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValueError("title is required and must be a non-empty string")
    if len(title) > TITLE_MAX_LEN:
        raise ValueError(f"title must be at most {TITLE_MAX_LEN} characters")
    return title.strip()


def _validate_description(description: Any) -> str | None:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValueError("description must be a string")
    if len(description) > DESCRIPTION_MAX_LEN:
        raise ValueError(f"description must be at most {DESCRIPTION_MAX_LEN} characters")
    return description


def _validate_priority(priority: Any) -> str:
    if not is_priority(priority):
        raise ValueError(f"Invalid priority. Must be one of: {', '.join(PRIORITIES)}")
    return priority


def _validate_series_type(recurrence_type: Any) -> str:
    if not is_series_type(recurrence_type):
        raise RecurrenceRuleError("recurrence_type must be one of: daily, weekly, monthly, custom")
    return recurrence_type


def _validate_behavior(behavior: Any) -> str:
    if not is_recurrence_behavior(behavior):
        raise RecurrenceRuleError("recurrence_behavior must be one of: after_completion, duplicate_on_schedule")
    return behavior


def _validate_due_date(value: Any) -> str:
    if not is_iso_date(value):
        raise ValueError("next_due_date must be a YYYY-MM-DD date")
    return value


def _validate_project(session: Session, user_id: str, project_id: Any) -> str | None:
    if project_id is None:
        return None
    if not isinstance(project_id, str):
        raise ValueError("project_id must be a string or None")
    owned = session.scalar(select(Project.id).where(Project.id == project_id, Project.user_id == user_id))
    if owned is None:
        raise ValueError("project_id does not match an existing project")
    return project_id


def _validate_active(active: Any) -> bool:
    if not isinstance(active, bool):
        raise ValueError("active must be a boolean")
    return active


def create_series(
    session: Session,
    *,
    user_id: str,
    title: str,
    recurrence_type: str,
    next_due_date: str,
    description: str | None = None,
    priority: str = "medium",
    project_id: str | None = None,
    recurrence_behavior: str = DEFAULT_BEHAVIOR,
    recurrence_rule: Any = None,
    active: bool = True,
) -> RecurrenceSeries:
    draft = SeriesDraft(
        user_id=user_id,
        title=_validate_title(title),
        description=_validate_description(description),
        priority=_validate_priority(priority),
        recurrence_type=_validate_series_type(recurrence_type),
        recurrence_behavior=_validate_behavior(recurrence_behavior),
        next_due_date=_validate_due_date(next_due_date),
        active=_validate_active(active),
        project_id=_validate_project(session, user_id, project_id),
        recurrence_rule=resolve_series_rule(recurrence_type, recurrence_rule),
    )
    series = insert_series(session, draft)
    session.commit()
    session.refresh(series)
    logger.info("series created id={} user={} type={}", series.id, user_id, series.recurrence_type)
    return series


def get_series(session: Session, user_id: str, series_id: str) -> RecurrenceSeries:
    series = session.scalar(
        select(RecurrenceSeries).where(
            RecurrenceSeries.id == series_id,
            RecurrenceSeries.user_id == user_id,
            RecurrenceSeries.deleted_at.is_(None),
        )
    )
    if series is None:
        raise LookupError("Recurrence series not found")
    return series


def edit_series(session: Session, user_id: str, series_id: str, /, **changes: Any) -> RecurrenceSeries:
    """
    Partially update a series.
    - Only keys present in ``changes`` are touched.
    - Switching to a non-custom type clears the stored rule.
    - A custom type needs a rule, either supplied now or already stored.
    """
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported series fields: {', '.join(sorted(unknown))}")

    series = get_series(session, user_id, series_id)
    patch: dict[str, Any] = {}

    if "title" in changes:
        patch["title"] = _validate_title(changes["title"])
    if "description" in changes:
        patch["description"] = _validate_description(changes["description"])
    if "priority" in changes:
        patch["priority"] = _validate_priority(changes["priority"])
    if "project_id" in changes:
        patch["project_id"] = _validate_project(session, user_id, changes["project_id"])
    if "recurrence_behavior" in changes:
        patch["recurrence_behavior"] = _validate_behavior(changes["recurrence_behavior"])
    if "next_due_date" in changes:
        patch["next_due_date"] = _validate_due_date(changes["next_due_date"])
    if "active" in changes:
        patch["active"] = _validate_active(changes["active"])

    has_type = "recurrence_type" in changes
    has_rule = "recurrence_rule" in changes
    next_type = _validate_series_type(changes["recurrence_type"]) if has_type else series.recurrence_type
    raw_rule = changes.get("recurrence_rule")

    if has_type or has_rule:
        if next_type == "custom":
            patch["recurrence_rule"] = resolve_series_rule("custom", raw_rule if has_rule else series.recurrence_rule)
        elif has_rule and raw_rule is not None:
            raise RecurrenceRuleError("recurrence_rule can only be set when recurrence_type is custom")
        else:
            patch["recurrence_rule"] = None
    if has_type:
        patch["recurrence_type"] = next_type

    series = update_series(session, series.id, **patch)
    session.commit()
    session.refresh(series)
    logger.info("series updated id={} fields={}", series.id, sorted(patch))
    return series


def soft_delete_series(session: Session, user_id: str, series_id: str) -> RecurrenceSeries:
    series = get_series(session, user_id, series_id)
    now = _utcnow()
    series = update_series(session, series.id, deleted_at=now)
    session.commit()
    logger.info("series deleted id={} user={}", series.id, user_id)
    return series


def list_series(session: Session, user_id: str) -> list[RecurrenceSeries]:
    return list(
        session.scalars(
            select(RecurrenceSeries)
            .where(RecurrenceSeries.user_id == user_id, RecurrenceSeries.deleted_at.is_(None))
            .order_by(RecurrenceSeries.updated_at.desc(), RecurrenceSeries.id)
        ).all()
    )


def list_series_instances(session: Session, series_id: str) -> list[Task]:
    return list(
        session.scalars(
            select(Task)
            .where(Task.recurrence_series_id == series_id, Task.deleted_at.is_(None))
            .order_by(Task.due_date, Task.created_at)
        ).all()
    )
