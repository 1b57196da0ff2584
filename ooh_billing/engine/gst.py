"""
OOH Billing — GST Mode Resolver
================================
Two mutually exclusive tax presentations:

  DUAL_TAX   (CGST + SGST)  company and client in the same jurisdiction
  SINGLE_TAX (IGST)         inter-state supply

A blank client jurisdiction resolves to DUAL_TAX. This is a conservative
default and will misclassify an inter-state client whose state code was
never recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from ..models import GSTMode
from .money import ZERO, money, percent_of

logger = logging.getLogger("ooh.billing.gst")

TWO = Decimal(2)


@dataclass(frozen=True)
class TaxBreakdown:
    mode: GSTMode
    rate: Decimal
    total: Decimal
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO

    @property
    def components(self) -> List[Tuple[str, Decimal, Decimal]]:
        """(label, rate, amount) rows for invoice presentation."""
        if self.mode == GSTMode.SINGLE_TAX:
            return [("IGST", self.rate, self.igst)]
        half = self.rate / TWO
        return [("CGST", half, self.cgst), ("SGST", half, self.sgst)]


def _normalise(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def resolve_gst_mode(company_code: Optional[str], client_code: Optional[str]) -> GSTMode:
    company = _normalise(company_code)
    client = _normalise(client_code)
    if not client:
        logger.debug("Client jurisdiction blank, defaulting to %s", GSTMode.DUAL_TAX.value)
        return GSTMode.DUAL_TAX
    if company == client:
        return GSTMode.DUAL_TAX
    return GSTMode.SINGLE_TAX


def split_tax(tax_amount: Decimal, mode: GSTMode, rate: Decimal) -> TaxBreakdown:
    """
    Split a tax total into its presentation components.
    Each half is round(total / 2, 2); the rounding residue goes to the
    first component, so cgst + sgst == total exactly.
    """
    total = money(tax_amount)
    if mode == GSTMode.SINGLE_TAX:
        return TaxBreakdown(mode=mode, rate=rate, total=total, igst=total)

    second = money(total / TWO)
    first = total - second
    return TaxBreakdown(mode=mode, rate=rate, total=total, cgst=first, sgst=second)


def compute_tax(
    taxable: Decimal,
    rate: Decimal,
    company_code: Optional[str],
    client_code: Optional[str],
) -> TaxBreakdown:
    mode = resolve_gst_mode(company_code, client_code)
    return split_tax(percent_of(taxable, rate), mode, rate)
