"""
Tests for the shared money, formatting and column table helpers
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

import pytest
from sqlalchemy import Column, Integer, MetaData, Numeric, String, Table, select

from app.common.exceptions import UnknownColumnError, ValidationError
from app.common.formatting import format_date_german, format_giftcard_code, invoice_timezone, to_utc
from app.common.listing import ColumnFilter, ColumnSpec, ColumnTable, FilterKind, SortOrder
from app.common.money import (
    format_euro, inclusive_tax_split, localized_format, percentage_fee,
    to_decimal, truncate_amount, truncate_to_decimals
)
from app.common.schemas import get_pagination
from app.core.config import settings


# ===== MONEY =====

class TestTruncateToDecimals:

    @pytest.mark.parametrize("value, expected", [
        (2.345, "2.35"),
        ("10.005", "10.01"),
        (Decimal("1.004"), "1.00"),
        (7, "7.00"),
        (-2.345, "-2.34"),
        (-0.001, "0.00"),
    ])
    def test_round_mode(self, value, expected):
        assert truncate_to_decimals(value, 2) == expected

    def test_floor_mode_never_rounds_up(self):
        assert truncate_to_decimals("19.999", 2, mode="floor") == "19.99"
        assert truncate_to_decimals("-0.011", 2, mode="floor") == "-0.02"

    def test_other_precisions(self):
        assert truncate_to_decimals("1.23456", 3) == "1.235"
        assert truncate_to_decimals("1.5", 0) == "2"

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", "NaN", "inf", True])
    def test_non_numeric_gives_empty_string(self, value):
        assert truncate_to_decimals(value) == ""

    def test_truncate_amount_rejects_non_numeric(self):
        with pytest.raises(ValueError):
            truncate_amount("abc")

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            truncate_to_decimals("1", 2, mode="ceil")

    def test_float_goes_through_its_string_form(self):
        assert to_decimal(10.005) == Decimal("10.005")


class TestLocalizedFormat:

    def test_german_grouping(self):
        assert localized_format("1234567.891") == "1.234.567,89"
        assert localized_format(0) == "0,00"

    def test_euro_suffix(self):
        assert format_euro(Decimal("1234.5")) == "1.234,50 €"

    def test_non_numeric(self):
        assert localized_format("n/a") == ""


class TestInclusiveTaxSplit:

    def test_nineteen_percent(self):
        split = inclusive_tax_split(Decimal("119.00"), 19)
        assert split.tax_amount == Decimal("19.00")
        assert split.net_amount == Decimal("100.00")

    @pytest.mark.parametrize("gross", ["0", "0.01", "0.05", "1.00", "9.99", "33.33", "1234.56", "99999.99"])
    @pytest.mark.parametrize("rate", [0, 7, 19])
    def test_parts_add_up_to_gross(self, gross, rate):
        split = inclusive_tax_split(gross, rate)
        assert split.net_amount + split.tax_amount == truncate_amount(gross)

    def test_non_numeric(self):
        with pytest.raises(ValueError):
            inclusive_tax_split("x", 19)


def test_percentage_fee():
    assert percentage_fee("100", "2.5", "0.25") == Decimal("2.75")
    assert percentage_fee("10.10", "5", "0") == Decimal("0.51")


# ===== FORMATTING =====

def test_format_date_german_uses_invoice_timezone():
    # 23:30 UTC on New Year's Eve is already January 1st in Berlin
    moment = datetime(2024, 12, 31, 23, 30, tzinfo=timezone.utc)
    assert format_date_german(moment, "Europe/Berlin") == "01.01.2025"
    assert format_date_german(moment, "UTC") == "31.12.2024"


def test_format_date_german_accepts_iso_strings():
    assert format_date_german("2025-03-01T10:00:00Z", "UTC") == "01.03.2025"


@pytest.mark.parametrize("tz_name", ["Mars/Olympus", "../etc/passwd"])
def test_unknown_timezone_is_a_validation_error(tz_name):
    with pytest.raises(ValidationError):
        format_date_german(datetime(2025, 1, 1, tzinfo=timezone.utc), tz_name)


def test_invoice_timezone_defaults_to_settings():
    assert invoice_timezone().key == settings.INVOICE_TIMEZONE


def test_format_giftcard_code():
    assert format_giftcard_code("ABCD1234EF") == "ABCD-1234-EF"
    assert format_giftcard_code("ABCD-1234-EF") == "ABCD-1234-EF"


def test_to_utc_treats_naive_values_as_utc():
    naive = datetime(2025, 1, 1, 12, 0)
    assert to_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_pagination_is_clamped():
    assert get_pagination(None, None) == (10, 0)
    assert get_pagination(3, 20) == (20, 40)
    assert get_pagination(1, 10_000) == (100, 0)


# ===== COLUMN TABLES =====

_metadata = MetaData()
_items = Table(
    "items", _metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String),
    Column("total", Numeric(10, 2)),
)


class ItemColumn(str, Enum):
    NAME = "name"
    TOTAL = "total"


ITEM_COLUMNS = ColumnTable(ItemColumn, {
    ItemColumn.NAME: ColumnSpec(_items.c.name),
    ItemColumn.TOTAL: ColumnSpec(_items.c.total, FilterKind.NUMBER),
})


def _where_sql(query) -> str:
    return str(query.whereclause.compile(compile_kwargs={"literal_binds": True})).lower()


class TestColumnTable:

    def test_every_column_needs_a_mapping(self):
        with pytest.raises(ValueError):
            ColumnTable(ItemColumn, {ItemColumn.NAME: ColumnSpec(_items.c.name)})

    def test_unknown_filter_column_is_rejected(self):
        with pytest.raises(UnknownColumnError):
            ITEM_COLUMNS.apply_filters(select(_items), column_filters=[ColumnFilter(id="price", value="1")])

    def test_unknown_sort_column_is_rejected(self):
        with pytest.raises(UnknownColumnError):
            ITEM_COLUMNS.order_by(select(_items), "price", SortOrder.ASC)

    def test_number_filter_needs_a_number(self):
        with pytest.raises(ValidationError):
            ITEM_COLUMNS.apply_filters(select(_items), column_filters=[ColumnFilter(id="total", value="abc")])

    def test_search_wins_over_column_filters(self):
        query = ITEM_COLUMNS.apply_filters(
            select(_items), search_value="lamp", column_filters=[ColumnFilter(id="total", value="5")]
        )
        sql = _where_sql(query)
        assert "lamp" in sql
        assert "total" not in sql

    def test_numeric_search_also_matches_number_columns(self):
        sql = _where_sql(ITEM_COLUMNS.apply_filters(select(_items), search_value="12.5"))
        assert "items.total =" in sql

    def test_text_search_skips_number_columns(self):
        sql = _where_sql(ITEM_COLUMNS.apply_filters(select(_items), search_value="lamp"))
        assert "total" not in sql

    def test_column_filters_are_combined_with_and(self):
        query = ITEM_COLUMNS.apply_filters(select(_items), column_filters=[
            ColumnFilter(id="name", value="lamp"),
            ColumnFilter(id="total", value="5"),
        ])
        assert " and " in _where_sql(query)

    def test_no_filters_leaves_query_alone(self):
        query = select(_items)
        assert ITEM_COLUMNS.apply_filters(query) is query

    def test_aggregated_tables_filter_with_having(self):
        grouped = ColumnTable(ItemColumn, ITEM_COLUMNS.specs, aggregated=True)
        query = grouped.apply_filters(select(_items.c.name).group_by(_items.c.name), search_value="lamp")
        assert "HAVING" in str(query)
