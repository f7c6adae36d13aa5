# tests/services/test_field_mapper.py
"""
Tests for FieldMapper and the value parsers

Coverage:
- Ordered fallbacks, nested paths, transformers, defaults
- Canonical ClientTether mappings
- Source-date parsing (never defaults to now)
- Money and probability parsing

Run with: pytest tests/services/test_field_mapper.py -v
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from portal_sync.services.field_mapper import (
    FieldMapper,
    LEAD_FIELDS,
    NOTE_FIELDS,
    OPPORTUNITY_FIELDS,
    earliest,
    format_money,
    opportunity_name,
    parse_money,
    parse_probability,
    parse_source_date,
)


# ============================================================================
# FIELD MAPPER
# ============================================================================

class TestFieldMapper:
    """Generic resolution rules"""

    def test_first_present_path_wins(self):
        mapper = FieldMapper({"stage": ["contact_sales_cycle", "stage"]})

        assert mapper.resolve({"contact_sales_cycle": "FDD Sent", "stage": "Old"}, "stage") == "FDD Sent"
        assert mapper.resolve({"stage": "Old"}, "stage") == "Old"

    def test_blank_strings_count_as_missing(self):
        mapper = FieldMapper({"stage": ["contact_sales_cycle", "stage"]})

        assert mapper.resolve({"contact_sales_cycle": "  ", "stage": "Qualified"}, "stage") == "Qualified"

    def test_nested_path(self):
        mapper = FieldMapper({"owner": "assigned_to.name"})

        assert mapper.resolve({"assigned_to": {"name": "Ann"}}, "owner") == "Ann"
        assert mapper.resolve({"assigned_to": "Ann"}, "owner") is None

    def test_transformers(self):
        mapper = FieldMapper({"source": "source|trim", "code": "code|str"})

        assert mapper.resolve({"source": "  WebSite "}, "source") == "WebSite"
        assert mapper.resolve({"code": 1}, "code") == "1"

    def test_default_when_nothing_matches(self):
        mapper = FieldMapper({"stage": ["stage"]}, defaults={"stage": "unknown"})

        assert mapper.resolve({}, "stage") == "unknown"

    def test_map_fields(self):
        mapper = FieldMapper({"a": "x", "b": "y"})

        assert mapper.map_fields({"x": 3}) == {"a": 3, "b": None}


class TestCanonicalMappings:
    """ClientTether field-name variants"""

    def test_lead_source_and_status_variants(self):
        assert LEAD_FIELDS.resolve({"clients_lead_source": "Web", "source": "x"}, "source") == "Web"
        assert LEAD_FIELDS.resolve({"lead_source": "Referral"}, "source") == "Referral"
        assert LEAD_FIELDS.resolve({}, "source") == "unknown"
        assert LEAD_FIELDS.resolve({"sales_cycle": "New"}, "status") == "New"
        assert LEAD_FIELDS.resolve({}, "status") == "unknown"

    def test_contact_type_is_stringified(self):
        assert LEAD_FIELDS.resolve({"contact_type": 1}, "contact_type") == "1"

    def test_opportunity_stage_prefers_sales_cycle(self):
        record = {"contact_sales_cycle": "Discovery Day", "stage": "Lead"}
        assert OPPORTUNITY_FIELDS.resolve(record, "stage") == "Discovery Day"
        assert OPPORTUNITY_FIELDS.resolve({}, "stage") == "unknown"

    def test_note_contact_id_fallback(self):
        assert NOTE_FIELDS.resolve({"client_id": 42}, "contact_id") == "42"

    def test_opportunity_name_fallbacks(self):
        assert opportunity_name({"title": "Jane"}) == "Jane"
        assert opportunity_name({"first_name": "Sam", "last_name": "Buyer"}) == "Sam Buyer"
        assert opportunity_name({}) == "Unknown"


# ============================================================================
# PARSERS
# ============================================================================

class TestParseSourceDate:

    def test_iso_with_zulu(self):
        assert parse_source_date("2024-06-01T10:00:00Z") == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)

    def test_clienttether_datetime_format(self):
        assert parse_source_date("2024-06-01 10:00:00") == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)

    def test_us_date_format(self):
        assert parse_source_date("06/01/2024") == datetime(2024, 6, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", "0000-00-00 00:00:00"])
    def test_unparseable_is_none(self, value):
        assert parse_source_date(value) is None

    def test_offset_converted_to_utc(self):
        assert parse_source_date("2024-06-01T10:00:00-04:00") == datetime(2024, 6, 1, 14, tzinfo=timezone.utc)

    def test_earliest_ignores_missing(self):
        a = datetime(2024, 1, 1, tzinfo=timezone.utc)
        b = datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert earliest([None, b, a, None]) == a
        assert earliest([None, None]) is None


class TestParseMoney:

    def test_prefers_deal_size(self):
        assert parse_money({"deal_size": "45000", "value": 1}) == Decimal("45000")

    def test_falls_back_to_value(self):
        assert parse_money({"value": 50000}) == Decimal("50000")
        assert parse_money({"deal_size": "", "value": 12.5}) == Decimal("12.5")

    def test_zero_deal_size_falls_back(self):
        assert parse_money({"deal_size": "0", "value": 300}) == Decimal("300")

    def test_currency_formatting_stripped(self):
        assert parse_money({"deal_size": "$1,250.50"}) == Decimal("1250.50")

    @pytest.mark.parametrize("record", [{}, {"value": None}, {"deal_size": "n/a"}, {"value": "NaN"}, {"value": True}])
    def test_missing_or_invalid_is_zero(self, record):
        assert parse_money(record) == Decimal("0")

    def test_format_money(self):
        assert format_money(Decimal("50000.00")) == "50000"
        assert format_money(Decimal("0")) == "0"
        assert format_money(Decimal("1250.5")) == "1250.5"
        assert format_money(Decimal("0.1") + Decimal("0.2")) == "0.3"


class TestParseProbability:

    @pytest.mark.parametrize("value,expected", [
        (60, 60), ("75", 75), ("50.9", 50), (None, 0), ("abc", 0), (150, 100), (-5, 0),
    ])
    def test_clamped_int(self, value, expected):
        assert parse_probability(value) == expected
