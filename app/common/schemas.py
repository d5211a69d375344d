"""
Shared Pydantic types for API responses
"""
from decimal import Decimal
from typing import Annotated, Optional, Tuple

from pydantic import PlainSerializer

from app.core.config import settings

# Amounts stay Decimal internally and go out as JSON numbers
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def get_pagination(page: Optional[int], size: Optional[int]) -> Tuple[int, int]:
    """1-based page and page size to (limit, offset), clamped to the configured maximum."""
    limit = min(size or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    offset = max((page or 1) - 1, 0) * limit
    return limit, offset
