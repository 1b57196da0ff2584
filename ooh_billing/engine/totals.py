"""
OOH Billing — Campaign Totals & Period Amounts
===============================================
The single source of truth for campaign money. Previews, exports and the
invoice generator all read amounts from a CampaignTotalsResult; nothing
recomputes rent on its own.

  gross    = Σ rent + Σ printing + Σ mounting   (assets inside the campaign only)
  discount = clamp(override or stored discount, 0, gross)
  taxable  = gross − discount
  tax      = round(taxable × rate / 100, 2)
  total    = taxable + tax

Period amounts split display cost and discount across billing periods by
weight (factor / Σ factors). The last period absorbs the rounding remainder,
so per-period base rents always sum to display cost exactly.

Usage:
    terms = CampaignTerms.from_record(campaign)
    assets = pricing_for_campaign(campaign)
    totals = compute_campaign_totals(terms, assets)
    amount = calculate_period_amount_from_totals(totals.periods[0], totals, include_printing=True)
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Collection, List, Optional, Sequence, Tuple

from ..config import settings
from ..models import BillingCycle, ChargeType
from .money import ZERO, money, optional_decimal, percent_of, to_decimal
from .periods import BillingPeriod, calculate_billing_periods, inclusive_days
from .pricing import AssetPricing, UnavailableCharge, rent_for_window, try_one_time_charge


# ─────────────────────────────────────────────
# Inputs
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class CampaignTerms:
    """Campaign-level inputs to the aggregator, resolved from the campaign + client rows."""
    campaign_id: Optional[int]
    campaign_name: str
    start_date: date
    end_date: date
    gst_rate: Decimal
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    manual_discount: Decimal = ZERO
    discount_reason: Optional[str] = None
    client_state_code: Optional[str] = None

    @classmethod
    def from_record(cls, campaign: Any, client: Any = None) -> "CampaignTerms":
        client = client if client is not None else getattr(campaign, "client", None)
        rate = optional_decimal(getattr(campaign, "gst_percent", None))
        if rate is None:
            rate = Decimal(str(settings.DEFAULT_GST_PERCENT))
        # Non-GST clients are invoiced zero-rated
        if client is not None and getattr(client, "is_gst_applicable", True) is False:
            rate = ZERO

        return cls(
            campaign_id=getattr(campaign, "id", None),
            campaign_name=getattr(campaign, "campaign_name", "") or "",
            start_date=campaign.start_date,
            end_date=campaign.end_date,
            gst_rate=rate,
            billing_cycle=BillingCycle(getattr(campaign, "billing_cycle", None) or BillingCycle.MONTHLY),
            manual_discount=to_decimal(getattr(campaign, "manual_discount_amount", None)),
            discount_reason=getattr(campaign, "manual_discount_reason", None),
            client_state_code=getattr(client, "state_code", None) if client is not None else None,
        )


def pricing_for_campaign(campaign: Any) -> Tuple[AssetPricing, ...]:
    return tuple(
        AssetPricing.from_record(a, campaign.start_date, campaign.end_date)
        for a in (getattr(campaign, "assets", None) or [])
    )


# ─────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class AssetRentLine:
    """Per-asset breakdown row."""
    campaign_asset_id: Optional[int]
    asset_code: Optional[str]
    label: str
    bill_start: Optional[date]
    bill_end: Optional[date]
    billable_days: int
    monthly_rate: Decimal
    rent: Decimal
    printing: Decimal
    mounting: Decimal

    @property
    def total(self) -> Decimal:
        return self.rent + self.printing + self.mounting


@dataclass(frozen=True)
class CampaignTotalsResult:
    display_cost: Decimal
    printing_cost: Decimal
    mounting_cost: Decimal
    one_time_charges: Decimal
    gross_amount: Decimal
    discount: Decimal
    taxable_amount: Decimal
    gst_rate: Decimal
    gst_amount: Decimal
    grand_total: Decimal
    duration_days: int
    asset_count: int
    periods: Tuple[BillingPeriod, ...]
    total_months: int
    monthly_display_rent: Decimal
    lines: Tuple[AssetRentLine, ...]
    unavailable: Tuple[UnavailableCharge, ...] = ()

    @property
    def factor_sum(self) -> Decimal:
        return sum((p.pro_rata_factor for p in self.periods), ZERO)


@dataclass(frozen=True)
class PeriodAmount:
    period: BillingPeriod
    base_rent: Decimal
    printing: Decimal
    mounting: Decimal
    subtotal: Decimal
    discount: Decimal
    taxable_amount: Decimal
    gst_rate: Decimal
    gst_amount: Decimal
    total: Decimal


# ─────────────────────────────────────────────
# Aggregator
# ─────────────────────────────────────────────

def clamp_discount(requested: Decimal, gross: Decimal) -> Decimal:
    return money(min(max(requested, ZERO), max(gross, ZERO)))


def compute_campaign_totals(
    terms: CampaignTerms,
    assets: Sequence[AssetPricing],
    discount_override: Optional[Decimal] = None,
    today: Optional[date] = None,
) -> CampaignTotalsResult:
    periods = calculate_billing_periods(
        terms.start_date, terms.end_date, terms.billing_cycle, today=today,
    )

    lines: List[AssetRentLine] = []
    unavailable: List[UnavailableCharge] = []
    display = printing = mounting = ZERO

    for asset in assets:
        rent = rent_for_window(asset, terms.start_date, terms.end_date)
        # An asset booked entirely outside the campaign is never invoiced
        if asset.has_window:
            p_amount, p_missing = try_one_time_charge(asset, ChargeType.PRINTING)
            m_amount, m_missing = try_one_time_charge(asset, ChargeType.MOUNTING)
            unavailable.extend(u for u in (p_missing, m_missing) if u is not None)
        else:
            p_amount = m_amount = ZERO

        display += rent
        printing += p_amount
        mounting += m_amount
        lines.append(AssetRentLine(
            campaign_asset_id=asset.campaign_asset_id,
            asset_code=asset.asset_code,
            label=asset.label,
            bill_start=asset.bill_start,
            bill_end=asset.bill_end,
            billable_days=inclusive_days(asset.bill_start, asset.bill_end) if asset.has_window else 0,
            monthly_rate=asset.monthly_rate,
            rent=rent,
            printing=p_amount,
            mounting=m_amount,
        ))

    one_time = printing + mounting
    gross = display + one_time
    requested = terms.manual_discount if discount_override is None else to_decimal(discount_override)
    discount = clamp_discount(requested, gross)
    taxable = gross - discount
    tax = percent_of(taxable, terms.gst_rate)

    factor_sum = sum((p.pro_rata_factor for p in periods), ZERO)
    monthly_rent = money(display / factor_sum) if factor_sum > 0 else ZERO

    return CampaignTotalsResult(
        display_cost=display,
        printing_cost=printing,
        mounting_cost=mounting,
        one_time_charges=one_time,
        gross_amount=gross,
        discount=discount,
        taxable_amount=taxable,
        gst_rate=terms.gst_rate,
        gst_amount=tax,
        grand_total=taxable + tax,
        duration_days=inclusive_days(terms.start_date, terms.end_date),
        asset_count=len(assets),
        periods=periods,
        total_months=len(periods),
        monthly_display_rent=monthly_rent,
        lines=tuple(lines),
        unavailable=tuple(unavailable),
    )


@functools.lru_cache(maxsize=256)
def _cached_totals(
    terms: CampaignTerms,
    assets: Tuple[AssetPricing, ...],
    discount_override: Optional[Decimal],
    today: date,
) -> CampaignTotalsResult:
    return compute_campaign_totals(terms, assets, discount_override, today)


def cached_campaign_totals(
    terms: CampaignTerms,
    assets: Sequence[AssetPricing],
    discount_override: Optional[Decimal] = None,
    today: Optional[date] = None,
) -> CampaignTotalsResult:
    """Memoised entry for previews. Keyed on today's date so current-month flags stay fresh."""
    return _cached_totals(terms, tuple(assets), discount_override, today or date.today())


# ─────────────────────────────────────────────
# Period amounts
# ─────────────────────────────────────────────

def allocate(amount: Decimal, weights: Sequence[Decimal]) -> List[Decimal]:
    """
    Split amount by weight, rounding each share to 2 dp. The last share is
    the remainder, so the shares sum to amount exactly.
    """
    if not weights:
        return []
    total_weight = sum(weights, ZERO)
    if total_weight <= 0:
        return [ZERO] * (len(weights) - 1) + [amount]
    shares = [money(amount * w / total_weight) for w in weights[:-1]]
    shares.append(amount - sum(shares, ZERO))
    return shares


def _period_index(period: BillingPeriod, periods: Sequence[BillingPeriod]) -> int:
    for i, p in enumerate(periods):
        if p.period_start == period.period_start and p.period_end == period.period_end:
            return i
    raise ValueError(f"Period {period.month_key} is not part of these totals")


def calculate_period_amount_from_totals(
    period: BillingPeriod,
    totals: CampaignTotalsResult,
    include_printing: bool = False,
    include_mounting: bool = False,
    printing_asset_ids: Optional[Collection[int]] = None,
    mounting_asset_ids: Optional[Collection[int]] = None,
) -> PeriodAmount:
    """
    Amounts for one billing period. One-time charges are added only when
    flagged; the *_asset_ids arguments narrow each charge to the assets
    not yet billed for it. Deciding which period carries them is the caller's job.
    """
    weights = [p.pro_rata_factor for p in totals.periods]
    index = _period_index(period, totals.periods)
    base_rent = allocate(totals.display_cost, weights)[index]

    def one_time(attr: str, asset_ids: Optional[Collection[int]]) -> Decimal:
        return sum(
            (getattr(line, attr) for line in totals.lines
             if asset_ids is None or line.campaign_asset_id in asset_ids),
            ZERO,
        )

    printing = one_time("printing", printing_asset_ids) if include_printing else ZERO
    mounting = one_time("mounting", mounting_asset_ids) if include_mounting else ZERO
    subtotal = base_rent + printing + mounting

    discount = min(allocate(totals.discount, weights)[index], subtotal)
    taxable = subtotal - discount
    tax = percent_of(taxable, totals.gst_rate)
    return PeriodAmount(
        period=period,
        base_rent=base_rent,
        printing=printing,
        mounting=mounting,
        subtotal=subtotal,
        discount=discount,
        taxable_amount=taxable,
        gst_rate=totals.gst_rate,
        gst_amount=tax,
        total=max(ZERO, taxable + tax),
    )
