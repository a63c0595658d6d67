"""Unit tests for Tally value parsing helpers."""
from datetime import date

import pytest

from tally_migration.etl.values import (
    normalize_voucher_type,
    parse_amount,
    parse_bool,
    parse_date,
    parse_date_or_none,
    parse_int,
    parse_optional_amount,
    parse_percent,
    parse_rate,
    split_quantity,
)


class TestParseAmount:
    @pytest.mark.parametrize("raw,expected", [
        ("1,234.50 Cr", -1234.50),
        ("1,234.50 Dr", 1234.50),
        ("-500 Dr", 500.0),
        ("-250", -250.0),
        ("₹ 500", 500.0),
        ("Rs. 1,00,000.00", 100000.0),
        ("-$ 100 @ ₹ 83/$ = -₹ 8300", -8300.0),
        ("", 0.0),
        (None, 0.0),
        ("n/a", 0.0),
    ])
    def test_values(self, raw, expected):
        assert parse_amount(raw) == expected

    def test_cr_forces_negative(self):
        assert parse_amount("-75 Cr") == -75.0

    def test_dr_forces_positive(self):
        assert parse_amount("-75 Dr") == 75.0

    def test_optional_amount_blank_is_none(self):
        assert parse_optional_amount("  ") is None
        assert parse_optional_amount("12.5") == 12.5


class TestQuantitiesAndRates:
    def test_split_quantity(self):
        assert split_quantity("10 Nos") == (10.0, "Nos")

    def test_negative_quantity_is_magnitude(self):
        assert split_quantity("-3 PC") == (3.0, "PC")

    def test_signed_quantity_keeps_sign(self):
        assert split_quantity("-3 PC", signed=True) == (-3.0, "PC")

    def test_compound_quantity_keeps_primary_unit(self):
        assert split_quantity("10 Box = 120 Nos") == (10.0, "Box")

    def test_blank_quantity(self):
        assert split_quantity(None) == (0.0, None)

    def test_rate_with_unit(self):
        assert parse_rate("1066.96/Nos") == 1066.96

    def test_percent(self):
        assert parse_percent("18%") == 18.0
        assert parse_percent("") is None

    def test_int_from_credit_period(self):
        assert parse_int("30 Days") == 30
        assert parse_int("none") is None


class TestDates:
    def test_tally_compact_date(self):
        assert parse_date("20240115") == date(2024, 1, 15)

    def test_day_first_date(self):
        assert parse_date("05-04-2024") == date(2024, 4, 5)

    def test_iso_date(self):
        assert parse_date("2024-04-05") == date(2024, 4, 5)

    def test_unparseable_defaults_to_today(self):
        assert parse_date("not a date") == date.today()

    def test_or_none(self):
        assert parse_date_or_none("") is None
        assert parse_date_or_none("20241301") is None


class TestMisc:
    @pytest.mark.parametrize("raw", ["Yes", "yes", "TRUE", "1"])
    def test_truthy(self, raw):
        assert parse_bool(raw) is True

    @pytest.mark.parametrize("raw", ["No", "", None, "0"])
    def test_falsy(self, raw):
        assert parse_bool(raw) is False

    @pytest.mark.parametrize("raw,expected", [
        ("Credit Note", "credit_note"),
        ("Sales", "sales"),
        (" Stock Journal ", "stock_journal"),
        ("Rent Voucher", "rent_voucher"),
    ])
    def test_voucher_type(self, raw, expected):
        assert normalize_voucher_type(raw) == expected
