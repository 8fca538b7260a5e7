from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session

from recurrence_core.core.dates import is_iso_date
from recurrence_core.core.recurrence_rules import DEFAULT_BEHAVIOR, next_occurrence
from recurrence_core.db.models import Task
from recurrence_core.db.repositories.series_repo import (
    SeriesDraft,
    find_legacy_recurring_items,
    find_users_with_legacy_items,
    insert_series,
    update_item,
)
from recurrence_core.db.repositories.tasks_repo import log_task_event


def _series_next_due_date(task: Task, today: str) -> str:
    due_anchor = task.due_date if is_iso_date(task.due_date) else today
    if task.status != "done":
        # The open task already stands for this occurrence.
        return due_anchor
    if task.recurrence_processed_at is not None:
        # complete_task already moved the due date past this completion.
        return due_anchor
    completion_anchor = max(due_anchor, today)
    return next_occurrence(completion_anchor, task.recurrence_type, task.recurrence_rule) or completion_anchor


def migrate_legacy_task_recurrences(session: Session, user_id: str, today: str) -> int:
    """Lift every inline-recurring task of ``user_id`` into its own series.

    Linked tasks are never candidates, so repeated calls are no-ops. Each task
    is committed together with its new series.
    """
    migrated = 0
    for task in find_legacy_recurring_items(session, user_id):
        if task.recurrence_type == "none":
            continue

        now = datetime.now(timezone.utc)
        was_done = task.status == "done"
        series = insert_series(
            session,
            SeriesDraft(
                user_id=task.user_id,
                project_id=task.project_id,
                title=task.title,
                description=task.description,
                priority=task.priority,
                recurrence_type=task.recurrence_type,
                recurrence_behavior=task.recurrence_behavior,
                recurrence_rule=task.recurrence_rule,
                next_due_date=_series_next_due_date(task, today),
                active=True,
            ),
        )
        update_item(
            session,
            task.id,
            recurrence_series_id=series.id,
            recurrence_type="none",
            recurrence_behavior=DEFAULT_BEHAVIOR,
            recurrence_rule=None,
            recurrence_processed_at=now if was_done else None,
        )
        log_task_event(session, task.id, "migrated", meta={"series_id": series.id})
        session.commit()
        migrated += 1
        logger.info(
            "legacy recurrence migrated task={} series={} next_due_date={}",
            task.id,
            series.id,
            series.next_due_date,
        )
    return migrated


def migrate_all_users(session: Session, today: str) -> int:
    total = 0
    for user_id in find_users_with_legacy_items(session):
        total += migrate_legacy_task_recurrences(session, user_id, today)
    logger.info("legacy recurrence batch done migrated={}", total)
    return total
