import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from celery import Celery
from celery.schedules import crontab
from sqlalchemy.orm import Session

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

celery = Celery("scheduler", broker=settings.celery_broker_url, backend=settings.celery_backend_url)
celery.conf.task_always_eager = settings.celery_task_always_eager
celery.conf.beat_schedule = {
    "daily-alert-digest": {
        "task": "scheduler.celery_worker.send_daily_alert_digest",
        "schedule": crontab(hour=6, minute=0),
    },
}

DIGEST_SUBJECT = "Upcoming schedule alerts"


@celery.task
def send_email_async(to_email: str, subject: str, body: str):
    from .email_utils import send_email
    send_email(get_settings(), to_email, subject, body)


def build_alert_digest(db: Session, today: date, horizon_days: int) -> List[Tuple[str, str, str]]:
    """One (email, subject, body) per ADMIN/MANAGER member of a project with alerts."""
    from . import models
    from .schedule_analytics import generate_alerts, schedule_tasks_from_project

    messages = []
    for project in db.query(models.Project).order_by(models.Project.id).all():
        alerts = generate_alerts(schedule_tasks_from_project(project.tasks), today, horizon_days)
        if not alerts:
            continue
        lines = [f"{project.name}: {len(alerts)} alert(s) in the next {horizon_days} day(s)"]
        for alert in alerts:
            when = "today" if alert.due_in_days == 0 else f"in {alert.due_in_days} day(s)"
            lines.append(f"- {alert.task_name}: {alert.type} {when}")
        body = "\n".join(lines)
        for member in project.members:
            if member.role in (models.Role.ADMIN, models.Role.MANAGER):
                messages.append((member.user.email, f"{DIGEST_SUBJECT} - {project.name}", body))
    return messages


@celery.task
def send_daily_alert_digest(today: Optional[str] = None):
    from .database import make_engine, make_session_factory
    from .email_utils import send_email

    current = get_settings()
    engine = make_engine(current.database_url)
    db = make_session_factory(engine)()
    try:
        day = date.fromisoformat(today) if today else datetime.now(timezone.utc).date()
        messages = build_alert_digest(db, day, current.alert_horizon_days)
        for to_email, subject, body in messages:
            send_email(current, to_email, subject, body)
        logger.info("Alert digest for %s: %s e-mail(s)", day, len(messages))
    finally:
        db.close()
        engine.dispose()
