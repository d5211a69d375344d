"""
Celery application for work that must not hold an API request.

Only invoice mail delivery runs here for now; it has its own queue so a
slow SMTP server cannot starve other workers.
"""
from celery import Celery

from app.core.config import settings

EMAIL_QUEUE = "email"


def create_celery_app() -> Celery:
    app = Celery(
        "voucher_settlement",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["app.modules.email.tasks"]
    )
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        enable_utc=True,
        timezone=settings.INVOICE_TIMEZONE,
        # A mail task holds one SMTP connection; two minutes is plenty
        task_soft_time_limit=90,
        task_time_limit=120,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        result_expires=24 * 3600,
        task_routes={"app.modules.email.tasks.*": {"queue": EMAIL_QUEUE}},
    )
    return app


celery_app = create_celery_app()
