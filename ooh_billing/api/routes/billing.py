"""
Campaign billing endpoints.

GET  /campaigns/{id}/totals                     totals preview (no writes)
GET  /campaigns/{id}/periods                    billing periods
GET  /campaigns/{id}/months                     months selectable for per-asset invoicing
GET  /campaigns/{id}/months/{month}/preview     per-asset overlap preview
GET  /campaigns/{id}/invoices/existing          existing invoice for a month
POST /campaigns/{id}/invoices/single            one invoice for the whole campaign
POST /campaigns/{id}/invoices/periods/{month}   one monthly period invoice
POST /campaigns/{id}/invoices/assets/{month}    per-asset overlap invoice
POST /campaigns/{id}/invoices/batch             every outstanding period
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ...errors import NotFoundError
from ...generator import (
    GenerationOptions, GenerationResult, InvoiceGenerator, InvoiceOverride,
)
from ...models import find_existing_invoice, get_campaign
from ..deps import get_db, get_generator
from ..schemas import (
    AssetLineResponse, AssetMonthChargeResponse, AssetMonthRequest, BatchResponse,
    BillingPeriodResponse, CampaignTotalsResponse, ExistingInvoiceResponse,
    GenerateRequest, GenerationResponse, MonthPreviewResponse, UnavailableChargeResponse,
)

router = APIRouter()


def _options(body: Optional[GenerateRequest]) -> GenerationOptions:
    if body is None:
        return GenerationOptions()
    override = None
    if body.override is not None:
        override = InvoiceOverride(actor=body.override.actor, reason=body.override.reason)
    return GenerationOptions(
        invoice_date=body.invoice_date,
        include_printing=body.include_printing,
        include_mounting=body.include_mounting,
        discount_override=body.discount_override,
        rebill_one_time=body.rebill_one_time,
        notes=body.notes,
        created_by=body.created_by,
        override=override,
    )


def _unavailable(items) -> List[UnavailableChargeResponse]:
    return [
        UnavailableChargeResponse(
            campaign_asset_id=u.campaign_asset_id,
            asset_code=u.asset_code,
            charge=u.charge.value,
            reason=u.reason,
        )
        for u in items
    ]


def _generation_response(result: GenerationResult) -> GenerationResponse:
    draft = result.draft
    return GenerationResponse(
        invoice_id=result.invoice_id,
        campaign_id=draft.campaign_id,
        billing_month=draft.billing_month,
        is_monthly_split=draft.is_monthly_split,
        period_start=draft.period_start,
        period_end=draft.period_end,
        sub_total=draft.sub_total,
        gst_mode=draft.tax.mode.value,
        cgst_amount=draft.tax.cgst,
        sgst_amount=draft.tax.sgst,
        igst_amount=draft.tax.igst,
        gst_amount=draft.tax.total,
        total_amount=draft.total,
        needs_review=draft.needs_review,
        state=result.run.state.value,
        unavailable=_unavailable(result.unavailable),
        ledger_failures=result.ledger_warning.failures if result.ledger_warning else [],
    )


# ── Previews ─────────────────────────────────────────────────────────────

@router.get("/campaigns/{campaign_id}/totals", response_model=CampaignTotalsResponse)
async def campaign_totals(
    campaign_id: int,
    discount_override: Optional[Decimal] = Query(None, ge=0),
    generator: InvoiceGenerator = Depends(get_generator),
):
    """Totals, periods and per-asset breakdown. Same numbers the generator persists."""
    totals = await generator.preview(campaign_id, discount_override)
    return CampaignTotalsResponse(
        campaign_id=campaign_id,
        display_cost=totals.display_cost,
        printing_cost=totals.printing_cost,
        mounting_cost=totals.mounting_cost,
        one_time_charges=totals.one_time_charges,
        gross_amount=totals.gross_amount,
        discount=totals.discount,
        taxable_amount=totals.taxable_amount,
        gst_rate=totals.gst_rate,
        gst_amount=totals.gst_amount,
        grand_total=totals.grand_total,
        duration_days=totals.duration_days,
        asset_count=totals.asset_count,
        total_months=totals.total_months,
        monthly_display_rent=totals.monthly_display_rent,
        periods=[BillingPeriodResponse.model_validate(p) for p in totals.periods],
        lines=[AssetLineResponse.model_validate(line) for line in totals.lines],
        unavailable=_unavailable(totals.unavailable),
    )


@router.get("/campaigns/{campaign_id}/periods", response_model=List[BillingPeriodResponse])
async def campaign_periods(
    campaign_id: int,
    generator: InvoiceGenerator = Depends(get_generator),
):
    totals = await generator.preview(campaign_id)
    return [BillingPeriodResponse.model_validate(p) for p in totals.periods]


@router.get("/campaigns/{campaign_id}/months", response_model=List[str])
async def campaign_months(
    campaign_id: int,
    generator: InvoiceGenerator = Depends(get_generator),
):
    return await generator.list_months(campaign_id)


@router.get("/campaigns/{campaign_id}/months/{month_key}/preview", response_model=MonthPreviewResponse)
async def month_preview(
    campaign_id: int,
    month_key: str,
    asset_ids: Optional[List[int]] = Query(None),
    include_printing: bool = False,
    include_mounting: bool = False,
    generator: InvoiceGenerator = Depends(get_generator),
):
    preview = await generator.preview_month(
        campaign_id, month_key, asset_ids, include_printing, include_mounting,
    )
    return MonthPreviewResponse(
        month_key=preview.month_key,
        month_start=preview.month_start,
        month_end=preview.month_end,
        subtotal=preview.subtotal,
        charges=[
            AssetMonthChargeResponse(
                campaign_asset_id=c.campaign_asset_id,
                asset_code=c.asset_code,
                label=c.label,
                bill_start=c.bill_start,
                bill_end=c.bill_end,
                billable_days=c.billable_days,
                billing_mode=c.billing_mode.value,
                monthly_rate=c.monthly_rate,
                daily_rate=c.daily_rate,
                rent=c.rent,
                printing=c.printing,
                mounting=c.mounting,
                already_invoiced=c.already_invoiced,
            )
            for c in preview.charges
        ],
        excluded_asset_ids=preview.excluded_asset_ids,
        unavailable=_unavailable(preview.unavailable),
    )


@router.get("/campaigns/{campaign_id}/invoices/existing", response_model=ExistingInvoiceResponse)
async def existing_invoice(
    campaign_id: int,
    month: str = Query(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
    monthly_split: bool = True,
    db: AsyncSession = Depends(get_db),
):
    campaign = await get_campaign(db, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    found = await find_existing_invoice(db, campaign.company_id, campaign_id, month, monthly_split)
    if found is None:
        return ExistingInvoiceResponse(exists=False)
    return ExistingInvoiceResponse(
        exists=True, invoice_id=found.id, status=found.status.value, total=found.total,
    )


# ── Generation ───────────────────────────────────────────────────────────

@router.post("/campaigns/{campaign_id}/invoices/single", response_model=GenerationResponse, status_code=201)
async def generate_single(
    campaign_id: int,
    body: Optional[GenerateRequest] = None,
    generator: InvoiceGenerator = Depends(get_generator),
):
    result = await generator.generate_single(campaign_id, _options(body))
    return _generation_response(result)


@router.post(
    "/campaigns/{campaign_id}/invoices/periods/{month_key}",
    response_model=GenerationResponse, status_code=201,
)
async def generate_period(
    campaign_id: int,
    month_key: str,
    body: Optional[GenerateRequest] = None,
    generator: InvoiceGenerator = Depends(get_generator),
):
    result = await generator.generate_period(campaign_id, month_key, _options(body))
    return _generation_response(result)


@router.post(
    "/campaigns/{campaign_id}/invoices/assets/{month_key}",
    response_model=GenerationResponse, status_code=201,
)
async def generate_asset_month(
    campaign_id: int,
    month_key: str,
    body: Optional[AssetMonthRequest] = None,
    generator: InvoiceGenerator = Depends(get_generator),
):
    asset_ids = body.asset_ids if body is not None else None
    result = await generator.generate_asset_month(campaign_id, month_key, asset_ids, _options(body))
    return _generation_response(result)


@router.post("/campaigns/{campaign_id}/invoices/batch", response_model=BatchResponse)
async def generate_batch(
    campaign_id: int,
    body: Optional[GenerateRequest] = None,
    generator: InvoiceGenerator = Depends(get_generator),
):
    """Generate every billing period without an invoice. Returns {success, invoices_created, error}."""
    batch = await generator.generate_batch(campaign_id, _options(body))
    return BatchResponse(
        success=batch.success,
        invoices_created=batch.invoices_created,
        error=batch.error,
        invoice_ids=[r.invoice_id for r in batch.results],
        skipped_months=batch.skipped_months,
    )
