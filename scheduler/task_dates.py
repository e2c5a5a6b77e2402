import logging
from typing import Iterable

from sqlalchemy.orm import Session

from . import models
from .dates import DateLike, add_days
from .errors import TaskNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def compute_final_end_date(end_date_original: DateLike, delay_days: int, issue_durations: Iterable[int] = ()) -> DateLike:
    """Planned end plus the explicit delay plus every linked issue's duration."""
    durations = list(issue_durations)
    if delay_days < 0:
        raise ValidationError(f"delay_days must be non-negative, got {delay_days}")
    if any(duration < 0 for duration in durations):
        raise ValidationError("Issue durations must be non-negative")
    total_delay = delay_days + sum(durations)
    return add_days(end_date_original, total_delay)


def recalc_task_end_date(db: Session, task_id: int) -> models.Task:
    """Store the derived ``end_date_final`` of a task.

    This is the only writer of ``Task.end_date_final``. It flushes but does not
    commit, so the caller's mutation and audit entry share one transaction.
    """
    task = db.get(models.Task, task_id)
    if task is None:
        raise TaskNotFoundError(f"Task {task_id} not found during end date recalculation")

    durations = [
        row.duration_days
        for row in db.query(models.Issue.duration_days).filter(models.Issue.task_id == task_id)
    ]
    task.end_date_final = compute_final_end_date(task.end_date_original, task.delay_days, durations)
    db.flush()
    logger.debug(
        "Recalculated task %s end date: %s (+%s delay, %s issue days)",
        task_id, task.end_date_final, task.delay_days, sum(durations),
    )
    return task
