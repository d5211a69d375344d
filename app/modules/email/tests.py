"""
Tests for invoice mails
"""
from types import SimpleNamespace
import smtplib

import pytest
from jinja2 import UndefinedError

from app.modules.email import notifier as notifier_module
from app.modules.email import service as service_module
from app.modules.email import tasks as tasks_module
from app.modules.email.notifier import (
    NEGOTIATION_INVOICE_TEMPLATE, PAYMENT_INVOICE_TEMPLATE, EmailNotifier
)
from app.modules.email.service import SettlementMailer
from app.modules.email.tasks import send_email_task


def _context(**extra):
    context = {
        "invoice_date": "01.03.2025",
        "invoice_number": "RE-1-202542",
        "invoice_url": "https://files.example.com/vouchers/x.pdf",
        "logo_url": "",
        "studio_name": "Studio <Nord>",
    }
    context.update(extra)
    return context


def _smtp_config(**overrides):
    values = {
        "EMAIL_SMTP_SERVER": "smtp.test",
        "EMAIL_SMTP_PORT": 587,
        "EMAIL_USE_TLS": True,
        "EMAIL_USERNAME": "mailer",
        "EMAIL_PASSWORD": "secret",
        "EMAIL_FROM": "billing@platform.test",
        "EMAIL_FROM_NAME": "Voucher Platform",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class RecordingSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.calls = []
        self.messages = []
        RecordingSMTP.instances.append(self)

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def send_message(self, message):
        self.messages.append(message)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.calls.append("quit")


# ===== RENDERING =====

def test_negotiation_mail_renders_payout():
    body = EmailNotifier().render(NEGOTIATION_INVOICE_TEMPLATE, _context(total_payout="76,00 €"))
    assert "RE-1-202542" in body
    assert "76,00 €" in body
    assert "https://files.example.com/vouchers/x.pdf" in body
    # Shop names are escaped
    assert "Studio &lt;Nord&gt;" in body


def test_payment_mail_renders_amount():
    body = EmailNotifier().render(PAYMENT_INVOICE_TEMPLATE, _context(total_amount="130,00 €"))
    assert "130,00 €" in body


def test_missing_amount_is_an_error():
    with pytest.raises(UndefinedError):
        EmailNotifier().render(PAYMENT_INVOICE_TEMPLATE, _context())


# ===== DELIVERY =====

def test_message_is_html_only():
    mailer = SettlementMailer(config=_smtp_config())
    message = mailer.build_message(["owner@nord.test"], "Invoice", "<p>Payout 76,00 €</p>")

    assert message["From"] == "Voucher Platform <billing@platform.test>"
    assert message["To"] == "owner@nord.test"
    assert message.get_content_type() == "text/html"
    assert not message.is_multipart()
    assert "Payout 76,00 €" in message.get_content()


def test_send_uses_starttls_and_login(monkeypatch):
    RecordingSMTP.instances = []
    monkeypatch.setattr(service_module.smtplib, "SMTP", RecordingSMTP)

    SettlementMailer(config=_smtp_config()).send_email(["owner@nord.test"], "Invoice", "<p>Hi</p>")

    server = RecordingSMTP.instances[0]
    assert (server.host, server.port) == ("smtp.test", 587)
    assert server.calls == ["starttls", ("login", "mailer"), "quit"]
    assert server.messages[0]["Subject"] == "Invoice"


def test_send_without_credentials_skips_login(monkeypatch):
    RecordingSMTP.instances = []
    monkeypatch.setattr(service_module.smtplib, "SMTP", RecordingSMTP)

    SettlementMailer(config=_smtp_config(EMAIL_USERNAME="")).send_email(["a@b.test"], "S", "<p>x</p>")

    assert RecordingSMTP.instances[0].calls == ["starttls", "quit"]


# ===== QUEUEING =====

async def test_send_queues_the_celery_task(monkeypatch):
    queued = []
    monkeypatch.setattr(notifier_module.send_email_task, "delay", lambda *args: queued.append(args))

    await EmailNotifier().send("owner@nord.test", "Subject", "<p>Body</p>")

    assert queued == [(["owner@nord.test"], "Subject", "<p>Body</p>")]


def test_task_reports_delivery(monkeypatch):
    delivered = []
    monkeypatch.setattr(tasks_module.email_service, "send_email", lambda *args: delivered.append(args))

    result = send_email_task.run(["owner@nord.test"], "Subject", "<p>Body</p>")

    assert result == {"status": "sent", "recipients": ["owner@nord.test"]}
    assert delivered == [(["owner@nord.test"], "Subject", "<p>Body</p>")]


def test_task_gives_up_after_the_last_retry(monkeypatch):
    def refuse(*args):
        raise smtplib.SMTPServerDisconnected("gone")

    monkeypatch.setattr(tasks_module.email_service, "send_email", refuse)
    monkeypatch.setattr(send_email_task, "max_retries", 0)

    result = send_email_task.run(["owner@nord.test"], "Subject", "<p>Body</p>")

    assert result["status"] == "failed"
    assert "gone" in result["error"]
