"""
OOH Billing — Asset Pricing
============================
Resolves a booked asset's rates, window and ledger flags once, at the data
boundary, into an immutable AssetPricing record. Every calculator downstream
(aggregator, period amounts, overlap biller) reads money inputs from here
and never from the raw row.

Rate resolution:
  monthly = negotiated rate, else card rate, else 0
  daily   = explicit daily rate, else monthly / 30

An explicit zero is a value, not a gap: a negotiated rate of 0 does not fall
through to the card rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, FrozenSet, List, Optional, Tuple

from ..errors import ComputationUnavailable, ValidationError
from ..models import BillingMode, ChargeType, MountingMode
from .money import ZERO, money, optional_decimal, to_decimal
from .periods import (
    REFERENCE_DAYS, billable_fraction, clip_window, inclusive_days, split_by_month,
)


@dataclass(frozen=True)
class UnavailableCharge:
    """A one-time charge that could not be priced for one asset."""
    campaign_asset_id: Optional[int]
    asset_code: Optional[str]
    charge: ChargeType
    reason: str


@dataclass(frozen=True)
class AssetPricing:
    campaign_asset_id: Optional[int]
    asset_id: str
    asset_code: Optional[str]
    media_type: Optional[str]
    location: Optional[str]
    area: Optional[str]
    city: Optional[str]

    # Booking window clamped to the campaign; None when the two are disjoint
    bill_start: Optional[date]
    bill_end: Optional[date]

    monthly_rate: Decimal
    daily_rate: Decimal
    billing_mode: BillingMode

    printing_charges: Optional[Decimal]
    mounting_charges: Optional[Decimal]
    mounting_mode: MountingMode
    mounting_rate: Optional[Decimal]
    total_sqft: Optional[Decimal]

    # Ledger snapshot
    invoice_generated_months: FrozenSet[str] = frozenset()
    printing_billed: bool = False
    mounting_billed: bool = False

    @classmethod
    def from_record(cls, asset: Any, campaign_start: date, campaign_end: date) -> "AssetPricing":
        """Build from a CampaignAsset row (or any object with the same attributes)."""
        booking_start = getattr(asset, "booking_start_date", None) or campaign_start
        booking_end = getattr(asset, "booking_end_date", None) or campaign_end
        window = clip_window(booking_start, booking_end, campaign_start, campaign_end)

        negotiated = optional_decimal(getattr(asset, "negotiated_rate", None))
        card = optional_decimal(getattr(asset, "card_rate", None))
        if negotiated is not None:
            monthly = negotiated
        elif card is not None:
            monthly = card
        else:
            monthly = ZERO

        explicit_daily = optional_decimal(getattr(asset, "daily_rate", None))
        daily = explicit_daily if explicit_daily is not None else monthly / REFERENCE_DAYS

        return cls(
            campaign_asset_id=getattr(asset, "id", None),
            asset_id=str(getattr(asset, "asset_id", "") or ""),
            asset_code=getattr(asset, "asset_code", None),
            media_type=getattr(asset, "media_type", None),
            location=getattr(asset, "location", None),
            area=getattr(asset, "area", None),
            city=getattr(asset, "city", None),
            bill_start=window[0] if window else None,
            bill_end=window[1] if window else None,
            monthly_rate=monthly,
            daily_rate=daily,
            billing_mode=BillingMode(getattr(asset, "billing_mode", None) or BillingMode.PRORATA_30),
            printing_charges=optional_decimal(getattr(asset, "printing_charges", None)),
            mounting_charges=optional_decimal(getattr(asset, "mounting_charges", None)),
            mounting_mode=MountingMode(getattr(asset, "mounting_mode", None) or MountingMode.FIXED),
            mounting_rate=optional_decimal(getattr(asset, "mounting_rate", None)),
            total_sqft=optional_decimal(getattr(asset, "total_sqft", None)),
            invoice_generated_months=frozenset(getattr(asset, "invoice_generated_months", None) or ()),
            printing_billed=bool(getattr(asset, "printing_billed", False)),
            mounting_billed=bool(getattr(asset, "mounting_billed", False)),
        )

    @property
    def has_window(self) -> bool:
        return self.bill_start is not None

    @property
    def label(self) -> str:
        code = self.asset_code or self.asset_id
        where = ", ".join(p for p in (self.location, self.area, self.city) if p)
        return f"{code} - {where}" if where else code


# ─────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────

def validate_asset_record(asset: Any) -> List[str]:
    """Problems with one asset row. Empty list means valid."""
    problems = []
    code = getattr(asset, "asset_code", None) or getattr(asset, "asset_id", "?")
    for field_name in (
        "card_rate", "negotiated_rate", "daily_rate",
        "printing_charges", "mounting_charges", "mounting_rate", "total_sqft",
    ):
        value = optional_decimal(getattr(asset, field_name, None))
        if value is not None and value < 0:
            problems.append(f"Asset {code}: {field_name} must not be negative ({value})")

    start = getattr(asset, "booking_start_date", None)
    end = getattr(asset, "booking_end_date", None)
    if start and end and start > end:
        problems.append(f"Asset {code}: booking start {start} is after end {end}")
    return problems


def validate_campaign_record(campaign: Any) -> List[str]:
    problems = []
    start = getattr(campaign, "start_date", None)
    end = getattr(campaign, "end_date", None)
    if start is None or end is None:
        problems.append("Campaign start and end dates are required")
    elif start > end:
        problems.append(f"Campaign start {start} is after end {end}")

    rate = optional_decimal(getattr(campaign, "gst_percent", None))
    if rate is not None and not (ZERO <= rate <= Decimal(100)):
        problems.append(f"GST rate {rate} outside 0-100")

    discount = to_decimal(getattr(campaign, "manual_discount_amount", None))
    if discount < 0:
        problems.append(f"Manual discount must not be negative ({discount})")

    for asset in getattr(campaign, "assets", None) or []:
        problems.extend(validate_asset_record(asset))
    return problems


# ─────────────────────────────────────────────
# Charges
# ─────────────────────────────────────────────

def one_time_charge(pricing: AssetPricing, charge: ChargeType | str) -> Decimal:
    """
    Printing is taken verbatim. Mounting uses the stored charge when present;
    otherwise a fixed rate, or rate × area for per-area mounting.
    Raises ComputationUnavailable when a per-area rate has no area to apply to.
    """
    charge = ChargeType(charge)
    if charge == ChargeType.PRINTING:
        return money(pricing.printing_charges or ZERO)

    if pricing.mounting_charges is not None:
        return money(pricing.mounting_charges)
    if pricing.mounting_rate is None:
        return ZERO
    if pricing.mounting_mode == MountingMode.FIXED:
        return money(pricing.mounting_rate)
    if pricing.total_sqft is None or pricing.total_sqft <= 0:
        raise ComputationUnavailable(
            ChargeType.MOUNTING.value,
            f"asset {pricing.asset_code or pricing.asset_id} has no recorded area",
        )
    return money(pricing.mounting_rate * pricing.total_sqft)


def try_one_time_charge(
    pricing: AssetPricing, charge: ChargeType,
) -> Tuple[Decimal, Optional[UnavailableCharge]]:
    try:
        return one_time_charge(pricing, charge), None
    except ComputationUnavailable as exc:
        return ZERO, UnavailableCharge(
            campaign_asset_id=pricing.campaign_asset_id,
            asset_code=pricing.asset_code,
            charge=charge,
            reason=exc.reason,
        )


# ─────────────────────────────────────────────
# Rent
# ─────────────────────────────────────────────

def price_slice(pricing: AssetPricing, start: date, end: date) -> Decimal:
    """Rent for a slice that lies inside one calendar month."""
    if pricing.billing_mode == BillingMode.DAILY:
        return money(pricing.daily_rate * inclusive_days(start, end))
    if pricing.billing_mode == BillingMode.FULL_MONTH:
        return money(pricing.monthly_rate)
    return money(pricing.monthly_rate * billable_fraction(start, end))


def rent_for_window(pricing: AssetPricing, start: date, end: date) -> Decimal:
    """Rent for the asset's window ∩ [start, end], priced month by month."""
    if not pricing.has_window:
        return ZERO
    window = clip_window(pricing.bill_start, pricing.bill_end, start, end)
    if window is None:
        return ZERO
    return sum(
        (price_slice(pricing, s, e) for s, e in split_by_month(*window)),
        ZERO,
    )


def assert_valid(problems: List[str], context: str) -> None:
    if problems:
        raise ValidationError(f"{context}: {problems[0]}", problems)
