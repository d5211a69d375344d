from dataclasses import dataclass
from typing import Annotated, List, Optional
import json

from fastapi import Depends, Query
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.common.exceptions import ValidationError
from app.common.listing import ColumnFilter, SortOrder

_column_filters_adapter = TypeAdapter(List[ColumnFilter])


def parse_column_filters(raw: Optional[str]) -> Optional[List[ColumnFilter]]:
    """``[{"id": "studio_name", "value": "abc"}, ...]`` as sent in the query string"""
    if not raw:
        return None
    try:
        return _column_filters_adapter.validate_python(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError):
        raise ValidationError("column_filters must be a JSON list of {id, value} objects")


@dataclass
class ListParams:
    page: Optional[int]
    size: Optional[int]
    sort_by: Optional[str]
    sort_order: SortOrder
    search_value: Optional[str]
    column_filters: Optional[List[ColumnFilter]]


def get_list_params(
    page: Optional[int] = Query(None, ge=1, description="1-based page number"),
    size: Optional[int] = Query(None, ge=1, description="Page size"),
    sort_by: Optional[str] = Query(None, description="Column id to sort by"),
    sort_order: SortOrder = Query(SortOrder.DESC),
    search_value: Optional[str] = Query(None, description="Free text search over the list columns"),
    column_filters: Optional[str] = Query(None, description="JSON list of {id, value} column filters")
) -> ListParams:
    return ListParams(
        page=page,
        size=size,
        sort_by=sort_by,
        sort_order=sort_order,
        search_value=search_value,
        column_filters=parse_column_filters(column_filters)
    )


list_params_dependency = Annotated[ListParams, Depends(get_list_params)]
