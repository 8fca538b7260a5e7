from loguru import logger
from sqlalchemy.orm import Session

from recurrence_core.db.repositories.series_repo import bulk_reopen_due_legacy_items


def rollover_due_legacy_tasks(session: Session, user_id: str, today: str) -> int:
    """
    Reopen done tasks that still carry inline recurrence once their due date
    has arrived. Only needed while unmigrated tasks exist.
    """
    reopened = bulk_reopen_due_legacy_items(session, user_id, today)
    session.commit()
    if reopened:
        logger.info("legacy rollover user={} today={} reopened={}", user_id, today, len(reopened))
    return len(reopened)
