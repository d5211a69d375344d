"""
Static column tables for list endpoints.

A list endpoint declares an Enum of the column ids a client may filter or sort
by and maps every member to a ``ColumnSpec``. The table refuses to build when
a member has no spec, and unknown ids raise ``UnknownColumnError`` instead of
being ignored.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional, Type

from pydantic import BaseModel
from sqlalchemy import and_, or_

from app.common.exceptions import UnknownColumnError, ValidationError
from app.common.money import to_decimal


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class FilterKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE_RANGE = "date_range"


class ColumnFilter(BaseModel):
    id: str
    value: Any


@dataclass(frozen=True)
class ColumnSpec:
    expression: Any
    kind: FilterKind = FilterKind.TEXT
    searchable: bool = True


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date value: {value}")


class ColumnTable:
    """Column id -> SQL expression mapping for one list query"""

    def __init__(self, columns: Type[Enum], specs: Mapping[Enum, ColumnSpec], aggregated: bool = False):
        missing = [member.value for member in columns if member not in specs]
        if missing:
            raise ValueError(f"Columns without a field mapping: {missing}")
        self.columns = columns
        self.specs = dict(specs)
        # Grouped queries filter on aggregates, so conditions go to HAVING
        self.aggregated = aggregated

    def resolve(self, column_id: str) -> ColumnSpec:
        try:
            return self.specs[self.columns(column_id)]
        except ValueError:
            raise UnknownColumnError(f"Unknown column: {column_id}")

    def filter_clause(self, column_filter: ColumnFilter):
        spec = self.resolve(column_filter.id)
        value = column_filter.value
        if spec.kind == FilterKind.NUMBER:
            number = to_decimal(value)
            if number is None:
                raise ValidationError(f"Column {column_filter.id} expects a number")
            return spec.expression == number
        if spec.kind == FilterKind.DATE_RANGE:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise ValidationError(f"Column {column_filter.id} expects [start, end]")
            return spec.expression.between(_parse_datetime(value[0]), _parse_datetime(value[1]))
        return spec.expression.icontains(str(value), autoescape=True)

    def search_clause(self, search_value: str):
        """Case-insensitive match on text columns, equality on numeric ones when the value is a number."""
        number = to_decimal(search_value)
        conditions = []
        for spec in self.specs.values():
            if not spec.searchable:
                continue
            if spec.kind == FilterKind.TEXT:
                conditions.append(spec.expression.icontains(search_value, autoescape=True))
            elif spec.kind == FilterKind.NUMBER and number is not None:
                conditions.append(spec.expression == number)
        return or_(*conditions)

    def apply_filters(self, query, search_value: Optional[str] = None,
                      column_filters: Optional[List[ColumnFilter]] = None):
        """Search wins over column filters; the two are never combined."""
        if search_value:
            clause = self.search_clause(search_value)
        elif column_filters:
            clause = and_(*[self.filter_clause(f) for f in column_filters])
        else:
            return query
        return query.having(clause) if self.aggregated else query.where(clause)

    def order_by(self, query, sort_by: Optional[str], sort_order: SortOrder = SortOrder.DESC, default=None):
        if not sort_by:
            return query.order_by(default) if default is not None else query
        expression = self.resolve(sort_by).expression
        ordering = expression.asc() if sort_order == SortOrder.ASC else expression.desc()
        return query.order_by(ordering)
