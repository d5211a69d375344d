"""
Invoice mails: Jinja2 rendering in the API, SMTP delivery in Celery.
"""
from .notifier import EmailNotifier, get_notifier

__all__ = ["EmailNotifier", "get_notifier"]
