"""Tests for the shared money/date helpers in parse_utils."""

from datetime import date, datetime

import pytest

from iva_ledger.parse_utils import (
    VAT_RATE,
    approx_equal,
    parse_date,
    round2,
    to_number,
    vat,
)


# ---------------------------------------------------------------------------
# round2 / vat
# ---------------------------------------------------------------------------

def test_round2_half_up():
    assert round2(0.125) == 0.13


def test_round2_keeps_cents():
    assert round2(19.5) == 19.5


def test_round2_negative():
    assert round2(-1.0) == -1.0


def test_vat_rate():
    assert VAT_RATE == 0.13


def test_vat_on_150():
    assert vat(150) == 19.5


def test_vat_on_zero():
    assert vat(0) == 0.0


# ---------------------------------------------------------------------------
# to_number – tolerant coercion of user-edited text
# ---------------------------------------------------------------------------

def test_to_number_plain():
    assert to_number("113.00") == 113.0


def test_to_number_strips_currency_and_thousands():
    assert to_number("$1,234.50") == 1234.5


def test_to_number_negative():
    assert to_number("-5") == -5.0


def test_to_number_keeps_leading_number_only():
    assert to_number("12.3.4") == 12.3


def test_to_number_garbage_is_zero():
    assert to_number("abc") == 0.0


def test_to_number_empty_is_zero():
    assert to_number("") == 0.0


def test_to_number_none_is_zero():
    assert to_number(None) == 0.0


def test_to_number_bool_is_zero():
    assert to_number(True) == 0.0


def test_to_number_nan_is_zero():
    assert to_number(float("nan")) == 0.0


def test_to_number_passes_numbers_through():
    assert to_number(7) == 7.0
    assert to_number(2.5) == 2.5


# ---------------------------------------------------------------------------
# parse_date
# ---------------------------------------------------------------------------

def test_parse_date_iso():
    assert parse_date("2024-03-05") == date(2024, 3, 5)


def test_parse_date_dayfirst():
    d = parse_date("05/03/2024", dayfirst=True)
    assert d is not None
    assert d.day == 5
    assert d.month == 3
    assert d.year == 2024


def test_parse_date_defaults_to_day_first():
    assert parse_date("05/11/2023") == date(2023, 11, 5)
    assert parse_date("20-11-2023") == date(2023, 11, 20)


def test_parse_date_iso_is_not_swapped():
    assert parse_date("2024-11-05") == date(2024, 11, 5)
    assert parse_date("2024-03-05T08:15:00") == date(2024, 3, 5)


def test_parse_date_datetime_is_truncated():
    assert parse_date(datetime(2024, 1, 2, 10, 30)) == date(2024, 1, 2)


def test_parse_date_date_passthrough():
    assert parse_date(date(2023, 11, 20)) == date(2023, 11, 20)


def test_parse_date_invalid():
    assert parse_date("not a date") is None


def test_parse_date_none():
    assert parse_date(None) is None


def test_parse_date_blank():
    assert parse_date("   ") is None


# ---------------------------------------------------------------------------
# approx_equal
# ---------------------------------------------------------------------------

def test_approx_equal_within_a_cent():
    assert approx_equal(26.0, 26.005)


def test_approx_equal_outside_tolerance():
    assert not approx_equal(26.0, 26.5)


@pytest.mark.parametrize("left,right", [(None, 1.0), (1.0, None), (None, None)])
def test_approx_equal_none(left, right):
    assert approx_equal(left, right) is False
