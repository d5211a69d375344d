"""
Fire-and-forget invoice mails.

Rendering happens in the API process; delivery is queued on the Celery
``email`` queue so SMTP latency never holds a request.
"""
from typing import Any, Dict
import asyncio
import logging

from app.modules.email.service import email_service
from app.modules.email.tasks import send_email_task

logger = logging.getLogger(__name__)

NEGOTIATION_INVOICE_SUBJECT = "Your payout-invoice for redeemed Universal-Giftcards"
NEGOTIATION_INVOICE_TEMPLATE = "negotiation_invoice_mail.html"
PAYMENT_INVOICE_SUBJECT = "Your invoice for giftcard handling-fees"
PAYMENT_INVOICE_TEMPLATE = "payment_invoice_mail.html"


class EmailNotifier:

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        return email_service.render_template(template_name, context)

    async def send(self, shop_email: str, subject: str, rendered_body: str) -> None:
        await asyncio.to_thread(send_email_task.delay, [shop_email], subject, rendered_body)
        logger.info(f"Queued '{subject}' mail to {shop_email}")


_notifier = None


def get_notifier() -> EmailNotifier:
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier()
    return _notifier
