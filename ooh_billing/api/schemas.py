"""
OOH Billing API — Request / Response Schemas

Money is serialised as Decimal (JSON string) so no amount passes through a float.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


# ── Requests ─────────────────────────────────────────────────────────────

class OverrideRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class GenerateRequest(BaseModel):
    invoice_date: Optional[date] = None
    include_printing: Optional[bool] = None
    include_mounting: Optional[bool] = None
    discount_override: Optional[Decimal] = None
    rebill_one_time: bool = False
    notes: Optional[str] = None
    created_by: Optional[str] = None
    override: Optional[OverrideRequest] = None


class AssetMonthRequest(GenerateRequest):
    asset_ids: Optional[List[int]] = None


# ── Totals preview ───────────────────────────────────────────────────────

class BillingPeriodResponse(BaseModel):
    month_key: str
    label: str
    period_start: date
    period_end: date
    days_in_period: int
    pro_rata_factor: Decimal
    is_first_month: bool
    is_last_month: bool
    is_current_month: bool

    model_config = {"from_attributes": True}


class AssetLineResponse(BaseModel):
    campaign_asset_id: Optional[int] = None
    asset_code: Optional[str] = None
    label: str
    bill_start: Optional[date] = None
    bill_end: Optional[date] = None
    billable_days: int
    monthly_rate: Decimal
    rent: Decimal
    printing: Decimal
    mounting: Decimal

    model_config = {"from_attributes": True}


class UnavailableChargeResponse(BaseModel):
    campaign_asset_id: Optional[int] = None
    asset_code: Optional[str] = None
    charge: str
    reason: str

    model_config = {"from_attributes": True}


class CampaignTotalsResponse(BaseModel):
    campaign_id: int
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
    total_months: int
    monthly_display_rent: Decimal
    periods: List[BillingPeriodResponse] = []
    lines: List[AssetLineResponse] = []
    unavailable: List[UnavailableChargeResponse] = []


# ── Overlap preview ──────────────────────────────────────────────────────

class AssetMonthChargeResponse(BaseModel):
    campaign_asset_id: Optional[int] = None
    asset_code: Optional[str] = None
    label: str
    bill_start: date
    bill_end: date
    billable_days: int
    billing_mode: str
    monthly_rate: Decimal
    daily_rate: Decimal
    rent: Decimal
    printing: Decimal
    mounting: Decimal
    already_invoiced: bool

    model_config = {"from_attributes": True}


class MonthPreviewResponse(BaseModel):
    month_key: str
    month_start: date
    month_end: date
    subtotal: Decimal
    charges: List[AssetMonthChargeResponse] = []
    excluded_asset_ids: List[Optional[int]] = []
    unavailable: List[UnavailableChargeResponse] = []


# ── Generation ───────────────────────────────────────────────────────────

class GenerationResponse(BaseModel):
    invoice_id: str
    campaign_id: int
    billing_month: str
    is_monthly_split: bool
    period_start: date
    period_end: date
    sub_total: Decimal
    gst_mode: str
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    needs_review: bool
    state: str
    unavailable: List[UnavailableChargeResponse] = []
    ledger_failures: List[str] = []


class BatchResponse(BaseModel):
    success: bool
    invoices_created: int
    error: Optional[str] = None
    invoice_ids: List[str] = []
    skipped_months: List[str] = []


class ExistingInvoiceResponse(BaseModel):
    exists: bool
    invoice_id: Optional[str] = None
    status: Optional[str] = None
    total: Optional[Decimal] = None
