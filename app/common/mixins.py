"""
Column mixins shared by the settlement tables
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Row creation and last modification times.

    Values come from Python so rows written by the tests (SQLite) and by
    Postgres carry the same timezone-aware UTC stamps.
    """

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class SoftDeleteMixin:
    """Rows are never removed; ``deleted_at`` hides them from every read."""

    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @classmethod
    def not_deleted(cls):
        return cls.deleted_at.is_(None)
