import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from fastapi import BackgroundTasks

from .config import Settings

logger = logging.getLogger(__name__)


def log_email(to_email: str, subject: str, body: str):
    logger.info("E-mail to %s | %s\n%s", to_email, subject, body)

def send_email_smtp(settings: Settings, email_to: str, subject: str, body: str):
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.smtp_user
    msg["To"] = email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    with smtplib.SMTP(settings.smtp_server, settings.smtp_port) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.smtp_user, email_to, msg.as_string())
    logger.info("Sent e-mail to %s: %s", email_to, subject)

def send_email(settings: Settings, email_to: str, subject: str, body: str):
    """Send through SMTP when credentials are configured, otherwise only log."""
    if settings.smtp_enabled:
        send_email_smtp(settings, email_to, subject, body)
    else:
        log_email(email_to, subject, body)

def send_email_background(background_tasks: BackgroundTasks, settings: Settings, email_to: str, subject: str, body: str):
    background_tasks.add_task(send_email, settings, email_to, subject, body)
