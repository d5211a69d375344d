"""
Celery tasks for mail delivery.
"""
from typing import List
import logging
import smtplib

from app.core.celery import EMAIL_QUEUE, celery_app
from app.modules.email.service import email_service

logger = logging.getLogger(__name__)

RETRY_BASE_SECONDS = 60


@celery_app.task(bind=True, max_retries=3, queue=EMAIL_QUEUE)
def send_email_task(self, to_emails: List[str], subject: str, html_content: str):
    """
    Deliver an invoice mail rendered by the API process.

    Transient SMTP failures are retried with exponential backoff. Once the
    retries are used up the failure is logged and reported in the result;
    the invoice itself is already committed at that point.
    """
    try:
        email_service.send_email(to_emails, subject, html_content)
    except (smtplib.SMTPException, OSError) as exc:
        attempt = self.request.retries
        if attempt < self.max_retries:
            logger.warning(f"Mail '{subject}' to {to_emails} failed (attempt {attempt + 1}): {exc}")
            raise self.retry(exc=exc, countdown=RETRY_BASE_SECONDS * (2 ** attempt))
        logger.error(f"Giving up on mail '{subject}' to {to_emails}: {exc}")
        return {"status": "failed", "recipients": to_emails, "error": str(exc)}

    return {"status": "sent", "recipients": to_emails}
