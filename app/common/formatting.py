"""
Display helpers for invoice documents and mails
"""
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.common.exceptions import ValidationError
from app.core.config import settings


def invoice_timezone(tz_name: Optional[str] = None) -> ZoneInfo:
    """
    Resolve an IANA timezone name, defaulting to the invoice timezone.

    Names come from query parameters, so unknown or malformed ones are a
    ``ValidationError`` rather than a lookup failure.
    """
    try:
        return ZoneInfo(tz_name or settings.INVOICE_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz_name}")


def format_date_german(value: Union[datetime, date, str], tz_name: Optional[str] = None) -> str:
    """Render a date as DD.MM.YYYY in the given timezone (naive values are UTC)."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(invoice_timezone(tz_name)).date()
    return value.strftime("%d.%m.%Y")


def format_giftcard_code(code: str) -> str:
    """Regroup a gift card code in blocks of four: 'ABCD1234EF' -> 'ABCD-1234-EF'."""
    compact = code.replace("-", "")
    return "-".join(compact[i:i + 4] for i in range(0, len(compact), 4))


def to_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
