"""Lazy reconciliation of recurrence series against their materialized tasks.

There is no scheduler: callers run ``sync_recurrence_series`` before reading a
user's recurring tasks, and every decision re-checks current rows, so a pass
that is interrupted or repeated is safe.
"""

from __future__ import annotations

import threading
import weakref
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.orm import Session

from recurrence_core.config import settings
from recurrence_core.core.legacy_migration import migrate_legacy_task_recurrences
from recurrence_core.core.recurrence_rules import next_occurrence
from recurrence_core.db.models import RecurrenceSeries
from recurrence_core.db.repositories.series_repo import (
    find_active_series_due_by,
    find_instance_by_due_date,
    find_outstanding_instance,
    insert_instance,
    update_series,
)

# An entry lives only while some pass holds that user's lock.
_user_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_user_locks_guard = threading.Lock()


@dataclass(slots=True)
class SyncReport:
    migrated: int = 0
    series_checked: int = 0
    instances_created: int = 0
    series_advanced: int = 0
    series_waiting: int = 0
    series_degenerate: int = 0


def _lock_for(user_id: str) -> threading.Lock:
    with _user_locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = threading.Lock()
            _user_locks[user_id] = lock
        return lock


def _materialize_if_missing(session: Session, series: RecurrenceSeries, due_date: str) -> bool:
    if find_instance_by_due_date(session, series.id, due_date) is not None:
        return False
    return insert_instance(session, series, due_date) is not None


def _sync_after_completion(session: Session, series: RecurrenceSeries, report: SyncReport) -> None:
    # next_due_date only moves when the outstanding instance is completed.
    if find_outstanding_instance(session, series.id) is not None:
        report.series_waiting += 1
        return
    if _materialize_if_missing(session, series, series.next_due_date):
        report.instances_created += 1


def _sync_duplicate_on_schedule(session: Session, series: RecurrenceSeries, today: str, report: SyncReport) -> None:
    start = series.next_due_date
    cursor = start
    for _ in range(settings.catchup_max_iterations):
        if cursor > today:
            break
        if _materialize_if_missing(session, series, cursor):
            report.instances_created += 1

        following = next_occurrence(cursor, series.recurrence_type, series.recurrence_rule)
        if following is None or following <= cursor:
            report.series_degenerate += 1
            logger.warning(
                "series catch-up aborted series={} type={} rule={} cursor={}",
                series.id,
                series.recurrence_type,
                series.recurrence_rule,
                cursor,
            )
            break
        cursor = following
    else:
        if cursor <= today:
            logger.warning(
                "series catch-up hit iteration limit series={} limit={} cursor={}",
                series.id,
                settings.catchup_max_iterations,
                cursor,
            )

    if cursor > start:
        update_series(session, series.id, next_due_date=cursor)
        report.series_advanced += 1


def sync_recurrence_series(session: Session, user_id: str, today: str) -> SyncReport:
    report = SyncReport()
    with _lock_for(user_id):
        if settings.legacy_migration_on_sync:
            report.migrated = migrate_legacy_task_recurrences(session, user_id, today)

        for series in find_active_series_due_by(session, user_id, today):
            report.series_checked += 1
            try:
                if series.recurrence_behavior == "after_completion":
                    _sync_after_completion(session, series, report)
                else:
                    _sync_duplicate_on_schedule(session, series, today, report)
                session.commit()
            except Exception:
                session.rollback()
                logger.exception("series sync failed series={} user={}", series.id, user_id)
                raise

    logger.info(
        "series_sync end user={} today={} migrated={} checked={} created={} advanced={} waiting={} degenerate={}",
        user_id,
        today,
        report.migrated,
        report.series_checked,
        report.instances_created,
        report.series_advanced,
        report.series_waiting,
        report.series_degenerate,
    )
    return report
