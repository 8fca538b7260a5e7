from __future__ import annotations

import gc

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from recurrence_core.config import settings
from recurrence_core.core import series_sync
from recurrence_core.core.series_sync import sync_recurrence_series
from recurrence_core.db.models import RecurrenceSeries, Task
from recurrence_core.db.repositories.series_repo import (
    SeriesDraft,
    create_series,
    edit_series,
    insert_instance,
    insert_series,
    soft_delete_series,
)
from recurrence_core.db.repositories.tasks_repo import complete_task, set_task_status

USER = "user-1"


def _instances(session: Session, series_id: str) -> list[Task]:
    return list(
        session.scalars(
            select(Task).where(Task.recurrence_series_id == series_id).order_by(Task.due_date)
        ).all()
    )


def _task_count(session: Session) -> int:
    return int(session.scalar(select(func.count()).select_from(Task)) or 0)


def _series(session: Session, **overrides) -> RecurrenceSeries:
    fields = {
        "user_id": USER,
        "title": "Water plants",
        "recurrence_type": "daily",
        "next_due_date": "2024-05-10",
    }
    fields.update(overrides)
    return create_series(session, **fields)


def test_after_completion_materializes_one_instance_when_due(session: Session) -> None:
    series = _series(session, priority="high", description="Balcony")

    report = sync_recurrence_series(session, USER, "2024-05-10")

    rows = _instances(session, series.id)
    assert report.instances_created == 1
    assert len(rows) == 1
    assert rows[0].status == "open"
    assert rows[0].due_date == "2024-05-10"
    assert rows[0].title == "Water plants"
    assert rows[0].description == "Balcony"
    assert rows[0].priority == "high"
    assert rows[0].user_id == USER
    session.refresh(series)
    assert series.next_due_date == "2024-05-10"


def test_after_completion_waits_for_open_instance(session: Session) -> None:
    series = _series(session)
    sync_recurrence_series(session, USER, "2024-05-10")

    report = sync_recurrence_series(session, USER, "2024-05-12")

    assert report.instances_created == 0
    assert report.series_waiting == 1
    assert len(_instances(session, series.id)) == 1


def test_after_completion_in_progress_instance_blocks(session: Session) -> None:
    series = _series(session)
    sync_recurrence_series(session, USER, "2024-05-10")
    instance = _instances(session, series.id)[0]
    set_task_status(session, USER, instance.id, "in_progress")

    sync_recurrence_series(session, USER, "2024-05-11")

    assert len(_instances(session, series.id)) == 1


def test_after_completion_future_series_is_idle(session: Session) -> None:
    series = _series(session, next_due_date="2024-06-01")

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.series_checked == 0
    assert _instances(session, series.id) == []


def test_after_completion_cycle_through_completion(session: Session) -> None:
    series = _series(session, recurrence_type="weekly")
    sync_recurrence_series(session, USER, "2024-05-10")
    first = _instances(session, series.id)[0]

    complete_task(session, USER, first.id, "2024-05-10")
    session.refresh(series)
    assert series.next_due_date == "2024-05-17"

    # Not due yet: nothing new, completed instance stays done.
    sync_recurrence_series(session, USER, "2024-05-12")
    assert len(_instances(session, series.id)) == 1

    sync_recurrence_series(session, USER, "2024-05-17")
    rows = _instances(session, series.id)
    assert [r.due_date for r in rows] == ["2024-05-10", "2024-05-17"]
    assert [r.status for r in rows] == ["done", "open"]


def test_after_completion_does_not_rematerialize_completed_date(session: Session) -> None:
    series = _series(session)
    sync_recurrence_series(session, USER, "2024-05-10")
    instance = _instances(session, series.id)[0]
    # Completion advances the series; rewind it by hand to the old date.
    complete_task(session, USER, instance.id, "2024-05-10")
    edit_series(session, USER, series.id, next_due_date="2024-05-10")

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.instances_created == 0
    assert len(_instances(session, series.id)) == 1


def test_duplicate_on_schedule_catches_up_missed_days(session: Session) -> None:
    series = _series(session, recurrence_behavior="duplicate_on_schedule", next_due_date="2024-05-01")

    report = sync_recurrence_series(session, USER, "2024-05-10")

    rows = _instances(session, series.id)
    assert report.instances_created == 10
    assert [r.due_date for r in rows] == [f"2024-05-{day:02d}" for day in range(1, 11)]
    session.refresh(series)
    assert series.next_due_date == "2024-05-11"


def test_duplicate_on_schedule_ignores_completion_state(session: Session) -> None:
    series = _series(session, recurrence_behavior="duplicate_on_schedule", recurrence_type="weekly")
    sync_recurrence_series(session, USER, "2024-05-10")

    sync_recurrence_series(session, USER, "2024-05-24")

    rows = _instances(session, series.id)
    assert [r.due_date for r in rows] == ["2024-05-10", "2024-05-17", "2024-05-24"]
    assert all(r.status == "open" for r in rows)
    session.refresh(series)
    assert series.next_due_date == "2024-05-31"


def test_duplicate_on_schedule_completion_keeps_cursor(session: Session) -> None:
    series = _series(session, recurrence_behavior="duplicate_on_schedule")
    sync_recurrence_series(session, USER, "2024-05-10")
    instance = _instances(session, series.id)[0]

    complete_task(session, USER, instance.id, "2024-05-10")

    session.refresh(series)
    assert series.next_due_date == "2024-05-11"


def test_sync_twice_is_idempotent(session: Session) -> None:
    _series(session, recurrence_behavior="duplicate_on_schedule", next_due_date="2024-04-01", recurrence_type="weekly")
    _series(session, title="Pay rent", recurrence_type="monthly", next_due_date="2024-05-01")
    _series(
        session,
        title="Backup",
        recurrence_type="custom",
        recurrence_rule={"interval": 3, "unit": "day"},
        recurrence_behavior="duplicate_on_schedule",
        next_due_date="2024-04-20",
    )

    sync_recurrence_series(session, USER, "2024-05-10")
    first = _task_count(session)
    next_dates = sorted(session.scalars(select(RecurrenceSeries.next_due_date)).all())

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.instances_created == 0
    assert _task_count(session) == first
    assert sorted(session.scalars(select(RecurrenceSeries.next_due_date)).all()) == next_dates


def test_custom_monthly_series_clamps_month_end(session: Session) -> None:
    series = _series(
        session,
        recurrence_type="custom",
        recurrence_rule={"interval": 1, "unit": "month"},
        recurrence_behavior="duplicate_on_schedule",
        next_due_date="2024-01-31",
    )

    sync_recurrence_series(session, USER, "2024-03-01")

    assert [r.due_date for r in _instances(session, series.id)] == ["2024-01-31", "2024-02-29"]
    session.refresh(series)
    assert series.next_due_date == "2024-03-29"


def test_degenerate_rule_does_not_block_other_series(session: Session) -> None:
    broken = insert_series(
        session,
        SeriesDraft(
            user_id=USER,
            title="Broken",
            recurrence_type="custom",
            recurrence_behavior="duplicate_on_schedule",
            recurrence_rule='{"interval":0,"unit":"day"}',
            next_due_date="2024-05-01",
        ),
    )
    session.commit()
    healthy = _series(session, recurrence_behavior="duplicate_on_schedule", next_due_date="2024-05-09")

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.series_degenerate == 1
    assert [r.due_date for r in _instances(session, broken.id)] == ["2024-05-01"]
    session.refresh(broken)
    assert broken.next_due_date == "2024-05-01"
    assert len(_instances(session, healthy.id)) == 2
    session.refresh(healthy)
    assert healthy.next_due_date == "2024-05-11"


def test_catch_up_is_bounded_per_pass(session: Session, monkeypatch) -> None:
    monkeypatch.setattr(settings, "catchup_max_iterations", 5)
    series = _series(session, recurrence_behavior="duplicate_on_schedule", next_due_date="2024-01-01")

    sync_recurrence_series(session, USER, "2024-01-31")
    session.refresh(series)
    assert len(_instances(session, series.id)) == 5
    assert series.next_due_date == "2024-01-06"

    sync_recurrence_series(session, USER, "2024-01-31")
    session.refresh(series)
    assert len(_instances(session, series.id)) == 10
    assert series.next_due_date == "2024-01-11"


def test_inactive_and_deleted_series_are_skipped(session: Session) -> None:
    paused = _series(session, title="Paused", active=False)
    deleted = _series(session, title="Deleted")
    soft_delete_series(session, USER, deleted.id)

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.series_checked == 0
    assert _instances(session, paused.id) == []
    assert _instances(session, deleted.id) == []


def test_sync_is_scoped_to_user(session: Session) -> None:
    mine = _series(session)
    theirs = _series(session, user_id="user-2")

    sync_recurrence_series(session, USER, "2024-05-10")

    assert len(_instances(session, mine.id)) == 1
    assert _instances(session, theirs.id) == []


def test_insert_instance_refuses_duplicate_due_date(session: Session) -> None:
    series = _series(session)
    assert insert_instance(session, series, "2024-05-10") is not None
    session.commit()

    assert insert_instance(session, series, "2024-05-10") is None
    session.commit()

    assert len(_instances(session, series.id)) == 1


def test_sync_migrates_legacy_tasks_first(session: Session) -> None:
    legacy = Task(
        user_id=USER,
        title="Stretch",
        status="done",
        due_date="2024-05-08",
        recurrence_type="daily",
        recurrence_behavior="duplicate_on_schedule",
    )
    session.add(legacy)
    session.commit()

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.migrated == 1
    session.refresh(legacy)
    series = session.get(RecurrenceSeries, legacy.recurrence_series_id)
    # Completed on or before today: schedule resumes tomorrow.
    assert series.next_due_date == "2024-05-11"
    assert [t.id for t in _instances(session, series.id)] == [legacy.id]


def test_legacy_migration_can_be_disabled_on_sync(session: Session, monkeypatch) -> None:
    monkeypatch.setattr(settings, "legacy_migration_on_sync", False)
    session.add(Task(user_id=USER, title="Stretch", due_date="2024-05-08", recurrence_type="daily"))
    session.commit()

    report = sync_recurrence_series(session, USER, "2024-05-10")

    assert report.migrated == 0
    assert session.scalar(select(func.count()).select_from(RecurrenceSeries)) == 0


def test_user_lock_is_released_after_pass(session: Session) -> None:
    _series(session, user_id="user-transient")

    sync_recurrence_series(session, "user-transient", "2024-05-10")
    gc.collect()

    assert "user-transient" not in series_sync._user_locks
