"""
Tests for GST calculation and dispatch pricing.
"""
from decimal import Decimal

import pytest

from sitesupply_core.app.services.gst import (
    calculate_gst, price_with_gst, round_money, GST_TYPE_CGST_SGST, GST_TYPE_IGST
)


@pytest.mark.parametrize(
    "taxable, rate, supplier, client, expected",
    [
        # same state -> CGST + SGST
        ("10000", "18", "Maharashtra", "Maharashtra", (GST_TYPE_CGST_SGST, "900.00", "900.00", "0.00", "1800.00")),
        ("17500", "18", "Maharashtra", " maharashtra ", (GST_TYPE_CGST_SGST, "1575.00", "1575.00", "0.00", "3150.00")),
        ("999.99", "5", "Karnataka", "KARNATAKA", (GST_TYPE_CGST_SGST, "25.00", "25.00", "0.00", "50.00")),
        ("100.10", "28", "Goa", "Goa", (GST_TYPE_CGST_SGST, "14.01", "14.01", "0.00", "28.03")),
        # different states -> IGST
        ("10000", "18", "Maharashtra", "Karnataka", (GST_TYPE_IGST, "0.00", "0.00", "1800.00", "1800.00")),
        ("100.10", "28", "Goa", "Kerala", (GST_TYPE_IGST, "0.00", "0.00", "28.03", "28.03")),
        ("0", "18", "Goa", "Kerala", (GST_TYPE_IGST, "0.00", "0.00", "0.00", "0.00")),
        ("5000", "0", "Goa", "Goa", (GST_TYPE_CGST_SGST, "0.00", "0.00", "0.00", "0.00")),
    ],
)
def test_gst_table(taxable, rate, supplier, client, expected):
    result = calculate_gst(Decimal(taxable), Decimal(rate), supplier, client)
    gst_type, cgst, sgst, igst, total = expected
    assert result.gst_type == gst_type
    assert result.cgst_amount == Decimal(cgst)
    assert result.sgst_amount == Decimal(sgst)
    assert result.igst_amount == Decimal(igst)
    assert result.total_gst == Decimal(total)


def test_cross_state_scenario():
    result = calculate_gst(10000, 18, "Maharashtra", "Karnataka")
    assert result.igst_amount == Decimal("1800.00")
    assert result.cgst_amount == Decimal("0.00")
    assert result.sgst_amount == Decimal("0.00")


def test_same_state_halves_are_equal_and_total_within_one_paisa():
    # 100.10 * 28% = 28.028 -> halves 14.014 -> 14.01 each, total 28.03
    result = calculate_gst(Decimal("100.10"), 28, "Goa", "goa")
    assert result.cgst_amount == result.sgst_amount
    assert result.igst_amount == 0
    parts = result.cgst_amount + result.sgst_amount + result.igst_amount
    assert abs(result.total_gst - parts) <= Decimal("0.01")


def test_round_money_is_half_away_from_zero():
    assert round_money("2.345") == Decimal("2.35")
    assert round_money("2.344") == Decimal("2.34")
    assert round_money("-2.345") == Decimal("-2.35")


def test_as_dict_is_json_friendly():
    data = calculate_gst(1000, 18, "Goa", "Goa").as_dict()
    assert data == {
        "gst_type": GST_TYPE_CGST_SGST,
        "cgst_amount": 90.0,
        "sgst_amount": 90.0,
        "igst_amount": 0.0,
        "total_gst": 180.0,
    }


def test_price_with_gst_cement_scenario():
    base, gst, total = price_with_gst(Decimal("350"), Decimal("50"), Decimal("18"))
    assert base == Decimal("17500.00")
    assert gst == Decimal("3150.00")
    assert total == Decimal("20650.00")


@pytest.mark.parametrize("price, qty, rate", [
    ("0", "10", "18"),
    ("62", "1234.567", "18"),
    ("10.33", "3.333", "12"),
    ("3750", "0.125", "5"),
    ("0.01", "1", "28"),
])
def test_total_is_base_plus_gst_exactly(price, qty, rate):
    base, gst, total = price_with_gst(Decimal(price), Decimal(qty), Decimal(rate))
    assert total == base + gst
    assert base == round_money(Decimal(price) * Decimal(qty))
    assert base.as_tuple().exponent == -2
    assert gst.as_tuple().exponent == -2
