"""
SMTP delivery and Jinja2 rendering for settlement mails.

Templates live next to this module in ``templates/``. Delivery is
synchronous and only ever runs inside the Celery worker.
"""
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Any, Dict, List
import logging
import smtplib
import ssl

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from app.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

class SettlementMailer:

    def __init__(self, config=settings, template_dir: Path = TEMPLATE_DIR):
        self.config = config
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined
        )

    @property
    def sender(self) -> str:
        return formataddr((self.config.EMAIL_FROM_NAME, self.config.EMAIL_FROM))

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render one of the invoice mail templates.

        Missing context keys raise ``jinja2.UndefinedError`` instead of
        silently producing a mail without the invoice link or amount.
        """
        return self.jinja_env.get_template(template_name).render(**context)

    def build_message(self, recipients: List[str], subject: str, html_content: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = ", ".join(recipients)
        message.set_content(html_content, subtype="html")
        return message

    def _connect(self) -> smtplib.SMTP:
        host, port = self.config.EMAIL_SMTP_SERVER, self.config.EMAIL_SMTP_PORT
        context = ssl.create_default_context()
        if self.config.EMAIL_USE_TLS:
            server = smtplib.SMTP(host, port, timeout=30)
            server.starttls(context=context)
        else:
            server = smtplib.SMTP_SSL(host, port, context=context, timeout=30)
        if self.config.EMAIL_USERNAME:
            server.login(self.config.EMAIL_USERNAME, self.config.EMAIL_PASSWORD)
        return server

    def send_email(self, to_emails: List[str], subject: str, html_content: str) -> None:
        """Hand the mail to the SMTP server. SMTP and socket errors propagate."""
        message = self.build_message(to_emails, subject, html_content)
        with self._connect() as server:
            server.send_message(message)
        logger.info(f"Delivered '{subject}' to {', '.join(to_emails)}")


email_service = SettlementMailer()
