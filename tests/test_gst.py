from decimal import Decimal

import pytest

from ooh_billing.engine.gst import compute_tax, resolve_gst_mode, split_tax
from ooh_billing.models import GSTMode


@pytest.mark.parametrize("company, client, expected", [
    ("TS", "TS", GSTMode.DUAL_TAX),
    ("TS", " ts ", GSTMode.DUAL_TAX),
    ("TS", "KA", GSTMode.SINGLE_TAX),
    ("TS", "", GSTMode.DUAL_TAX),
    ("TS", None, GSTMode.DUAL_TAX),
    ("TS", "   ", GSTMode.DUAL_TAX),
])
def test_resolve_gst_mode(company, client, expected):
    assert resolve_gst_mode(company, client) == expected


@pytest.mark.parametrize("amount", ["10260.00", "10.01", "0.01", "999.99", "0.00"])
def test_dual_tax_halves_sum_to_total(amount):
    breakdown = split_tax(Decimal(amount), GSTMode.DUAL_TAX, Decimal("18"))
    assert breakdown.cgst + breakdown.sgst == Decimal(amount)
    assert abs(breakdown.cgst - breakdown.sgst) <= Decimal("0.01")
    assert breakdown.igst == 0


def test_odd_paisa_goes_to_first_component():
    breakdown = split_tax(Decimal("10.01"), GSTMode.DUAL_TAX, Decimal("18"))
    assert breakdown.sgst == Decimal("5.01")
    assert breakdown.cgst == Decimal("5.00")


def test_single_tax_is_all_igst():
    breakdown = split_tax(Decimal("540.00"), GSTMode.SINGLE_TAX, Decimal("18"))
    assert breakdown.igst == Decimal("540.00")
    assert breakdown.cgst == breakdown.sgst == 0
    assert breakdown.components == [("IGST", Decimal("18"), Decimal("540.00"))]


def test_compute_tax_rounds_half_up():
    # 1234.55 × 18% = 222.219
    breakdown = compute_tax(Decimal("1234.55"), Decimal("18"), "TS", "TS")
    assert breakdown.total == Decimal("222.22")
    assert breakdown.components[0] == ("CGST", Decimal("9"), breakdown.cgst)
