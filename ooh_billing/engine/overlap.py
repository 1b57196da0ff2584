"""
OOH Billing — Asset Overlap Biller
===================================
Per-asset monthly billing: for a chosen month, each asset is billed only for
the days its booking overlaps that month.

  bill_start = max(booking start, month start)
  bill_end   = min(booking end, month end)

Assets with no overlap are excluded, never billed for negative days. Rent is
priced with the same slice math as the campaign aggregator, so a per-asset
invoice and a period invoice agree on what a month of an asset costs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from ..models import BillingMode, ChargeType
from .money import ZERO
from .periods import clip_window, inclusive_days, month_bounds_for_key
from .pricing import AssetPricing, UnavailableCharge, price_slice, try_one_time_charge


@dataclass(frozen=True)
class AssetMonthCharge:
    campaign_asset_id: Optional[int]
    asset_code: Optional[str]
    label: str
    month_key: str
    bill_start: date
    bill_end: date
    billable_days: int
    billing_mode: BillingMode
    monthly_rate: Decimal
    daily_rate: Decimal
    rent: Decimal
    printing: Decimal = ZERO
    mounting: Decimal = ZERO
    already_invoiced: bool = False
    unavailable: Tuple[UnavailableCharge, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.rent + self.printing + self.mounting

    @property
    def rate_type(self) -> str:
        return "daily" if self.billing_mode == BillingMode.DAILY else "monthly"


@dataclass
class MonthBillingPreview:
    month_key: str
    month_start: date
    month_end: date
    charges: List[AssetMonthCharge] = field(default_factory=list)
    excluded_asset_ids: List[Optional[int]] = field(default_factory=list)

    @property
    def billable(self) -> List[AssetMonthCharge]:
        return [c for c in self.charges if not c.already_invoiced]

    @property
    def already_invoiced(self) -> List[AssetMonthCharge]:
        return [c for c in self.charges if c.already_invoiced]

    @property
    def unavailable(self) -> List[UnavailableCharge]:
        return [u for c in self.charges for u in c.unavailable]

    @property
    def rent_total(self) -> Decimal:
        return sum((c.rent for c in self.billable), ZERO)

    @property
    def one_time_total(self) -> Decimal:
        return sum((c.printing + c.mounting for c in self.billable), ZERO)

    @property
    def subtotal(self) -> Decimal:
        return self.rent_total + self.one_time_total


def _one_time(
    asset: AssetPricing, charge: ChargeType, requested: bool, already_billed: bool, rebill: bool,
) -> Tuple[Decimal, Optional[UnavailableCharge]]:
    if not requested or (already_billed and not rebill):
        return ZERO, None
    return try_one_time_charge(asset, charge)


def bill_asset_for_month(
    asset: AssetPricing,
    month_key: str,
    include_printing: bool = False,
    include_mounting: bool = False,
    rebill_one_time: bool = False,
) -> Optional[AssetMonthCharge]:
    """Charge for one asset in one month, or None when its booking misses the month."""
    if not asset.has_window:
        return None
    month_start, month_end = month_bounds_for_key(month_key)
    window = clip_window(asset.bill_start, asset.bill_end, month_start, month_end)
    if window is None:
        return None
    bill_start, bill_end = window

    printing, p_missing = _one_time(
        asset, ChargeType.PRINTING, include_printing, asset.printing_billed, rebill_one_time,
    )
    mounting, m_missing = _one_time(
        asset, ChargeType.MOUNTING, include_mounting, asset.mounting_billed, rebill_one_time,
    )

    return AssetMonthCharge(
        campaign_asset_id=asset.campaign_asset_id,
        asset_code=asset.asset_code,
        label=asset.label,
        month_key=month_key,
        bill_start=bill_start,
        bill_end=bill_end,
        billable_days=inclusive_days(bill_start, bill_end),
        billing_mode=asset.billing_mode,
        monthly_rate=asset.monthly_rate,
        daily_rate=asset.daily_rate,
        rent=price_slice(asset, bill_start, bill_end),
        printing=printing,
        mounting=mounting,
        already_invoiced=month_key in asset.invoice_generated_months,
        unavailable=tuple(u for u in (p_missing, m_missing) if u is not None),
    )


def bill_assets_for_month(
    assets: Sequence[AssetPricing],
    month_key: str,
    include_printing: bool = False,
    include_mounting: bool = False,
    rebill_one_time: bool = False,
) -> MonthBillingPreview:
    month_start, month_end = month_bounds_for_key(month_key)
    preview = MonthBillingPreview(month_key=month_key, month_start=month_start, month_end=month_end)
    for asset in assets:
        charge = bill_asset_for_month(
            asset, month_key, include_printing, include_mounting, rebill_one_time,
        )
        if charge is None:
            preview.excluded_asset_ids.append(asset.campaign_asset_id)
        else:
            preview.charges.append(charge)
    return preview
