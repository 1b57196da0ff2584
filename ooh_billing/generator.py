"""
OOH Billing — Invoice Generation Orchestrator
==============================================
Turns a campaign into persisted invoices through one of three flows:

  single        one invoice for the whole campaign
  period        one invoice per billing period (monthly split)
  asset month   one invoice for the assets overlapping a chosen month

Every request is tracked by a GenerationRun:

  REQUESTED → VALIDATING → CONFLICT_CHECK → ASSEMBLING → PERSISTING
            → LEDGER_UPDATING → DONE

  VALIDATING / CONFLICT_CHECK ──▶ REJECTED   (nothing written)
  PERSISTING                  ──▶ FAILED     (nothing written)

Money always comes from the campaign totals (engine.totals) or the overlap
biller (engine.overlap); this module only arranges it into line items.
Duplicate protection is the partial unique index on invoices; the
pre-check here gives a friendlier error and is not relied upon.

Usage:
    generator = InvoiceGenerator(session_factory)
    result = await generator.generate_period(campaign_id=12, month_key="2024-02")
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from .config import settings
from .engine.gst import TaxBreakdown, compute_tax, resolve_gst_mode, split_tax
from .engine.money import ZERO, to_decimal
from .engine.overlap import AssetMonthCharge, MonthBillingPreview, bill_assets_for_month
from .engine.periods import (
    BillingPeriod, available_months, due_date_for, month_key as to_month_key,
    months_between, parse_month_key,
)
from .engine.pricing import AssetPricing, UnavailableCharge, assert_valid, validate_campaign_record
from .engine.totals import (
    CampaignTerms, CampaignTotalsResult, PeriodAmount, cached_campaign_totals,
    calculate_period_amount_from_totals, compute_campaign_totals, pricing_for_campaign,
)
from .errors import (
    BillingError, ConflictError, InvalidTransition, NotFoundError,
    PartialLedgerFailure, ValidationError,
)
from .ledger import BillingLedger, LedgerUpdate, has_invoiced_month
from .models import (
    Campaign, ChargeType, Invoice, InvoiceItem, InvoiceStatus, LineItemKind,
    find_existing_invoice, get_campaign, issue_invoice_id, next_override_seq,
)
from .notifications import LoggingNotifier, Notifier

logger = logging.getLogger("ooh.billing.generator")

PERSIST_ATTEMPTS = 2


# ─────────────────────────────────────────────
# Run state machine
# ─────────────────────────────────────────────

class GenerationState(str, Enum):
    REQUESTED = "REQUESTED"
    VALIDATING = "VALIDATING"
    CONFLICT_CHECK = "CONFLICT_CHECK"
    ASSEMBLING = "ASSEMBLING"
    PERSISTING = "PERSISTING"
    LEDGER_UPDATING = "LEDGER_UPDATING"
    DONE = "DONE"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: Dict[GenerationState, Tuple[GenerationState, ...]] = {
    GenerationState.REQUESTED: (GenerationState.VALIDATING,),
    GenerationState.VALIDATING: (GenerationState.CONFLICT_CHECK, GenerationState.REJECTED),
    GenerationState.CONFLICT_CHECK: (GenerationState.ASSEMBLING, GenerationState.REJECTED),
    GenerationState.ASSEMBLING: (GenerationState.PERSISTING,),
    GenerationState.PERSISTING: (GenerationState.LEDGER_UPDATING, GenerationState.FAILED),
    GenerationState.LEDGER_UPDATING: (GenerationState.DONE,),
    GenerationState.DONE: (),
    GenerationState.REJECTED: (),
    GenerationState.FAILED: (),
}


class GenerationFlow(str, Enum):
    SINGLE = "single"
    PERIOD = "period"
    ASSET_MONTH = "asset_month"


@dataclass
class GenerationRun:
    flow: GenerationFlow
    campaign_id: int
    month_key: Optional[str] = None
    state: GenerationState = GenerationState.REQUESTED
    history: List[Tuple[GenerationState, datetime]] = field(default_factory=list)
    error: Optional[str] = None

    def advance(self, to: GenerationState) -> None:
        if to not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.flow.value} run: {self.state.value} → {to.value} not allowed")
        self.history.append((self.state, datetime.now(timezone.utc)))
        self.state = to

    def reject(self, exc: Exception) -> None:
        self.error = str(exc)
        self.advance(GenerationState.REJECTED)

    def fail(self, exc: Exception) -> None:
        self.error = str(exc)
        self.advance(GenerationState.FAILED)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]


# ─────────────────────────────────────────────
# Requests & results
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class InvoiceOverride:
    """Lets generation proceed past a conflict. The invoice is flagged for review."""
    actor: str
    reason: str


@dataclass
class GenerationOptions:
    invoice_date: Optional[date] = None
    # None → one-time charges go on the first period only
    include_printing: Optional[bool] = None
    include_mounting: Optional[bool] = None
    discount_override: Optional[Decimal] = None
    rebill_one_time: bool = False
    notes: Optional[str] = None
    created_by: Optional[str] = None
    override: Optional[InvoiceOverride] = None


@dataclass
class LineItemDraft:
    kind: LineItemKind
    description: str
    amount: Decimal
    rate: Decimal
    quantity: Decimal = Decimal("1")
    rate_type: Optional[str] = None
    campaign_asset_id: Optional[int] = None
    asset_code: Optional[str] = None
    bill_start: Optional[date] = None
    bill_end: Optional[date] = None
    billable_days: Optional[int] = None


@dataclass
class InvoiceDraft:
    company_id: str
    campaign_id: int
    client_id: int
    billing_month: str
    is_monthly_split: bool
    period_start: date
    period_end: date
    invoice_date: date
    due_date: date
    items: List[LineItemDraft]
    tax: TaxBreakdown
    notes: Optional[str] = None
    created_by: Optional[str] = None
    needs_review: bool = False
    ledger_updates: List[LedgerUpdate] = field(default_factory=list)

    @property
    def sub_total(self) -> Decimal:
        return sum((i.amount for i in self.items), ZERO)

    @property
    def total(self) -> Decimal:
        return self.sub_total + self.tax.total


@dataclass
class GenerationResult:
    invoice_id: str
    run: GenerationRun
    draft: InvoiceDraft
    unavailable: List[UnavailableCharge] = field(default_factory=list)
    ledger_warning: Optional[PartialLedgerFailure] = None

    @property
    def total(self) -> Decimal:
        return self.draft.total


@dataclass
class BatchResult:
    success: bool
    invoices_created: int = 0
    error: Optional[str] = None
    results: List[GenerationResult] = field(default_factory=list)
    skipped_months: List[str] = field(default_factory=list)


@dataclass
class _Loaded:
    """Snapshot of one campaign taken in VALIDATING."""
    campaign: Campaign
    terms: CampaignTerms
    assets: Tuple[AssetPricing, ...]
    totals: CampaignTotalsResult


# ─────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────

class InvoiceGenerator:

    def __init__(
        self,
        session_factory,
        ledger: Optional[BillingLedger] = None,
        notifier: Optional[Notifier] = None,
        company_state_code: Optional[str] = None,
        payment_terms_days: Optional[int] = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._session_factory = session_factory
        self.ledger = ledger or BillingLedger(session_factory)
        self.notifier = notifier or LoggingNotifier()
        self.company_state_code = company_state_code or settings.COMPANY_STATE_CODE
        self.payment_terms_days = (
            payment_terms_days if payment_terms_days is not None else settings.PAYMENT_TERMS_DAYS
        )
        self._clock = clock

    # ── Previews (no writes) ─────────────────────────────────────────────

    async def preview(
        self, campaign_id: int, discount_override: Optional[Decimal] = None,
    ) -> CampaignTotalsResult:
        async with self._session_factory() as session:
            campaign = await self._get_campaign(session, campaign_id)
            terms = CampaignTerms.from_record(campaign)
            assets = pricing_for_campaign(campaign)
        return cached_campaign_totals(terms, assets, discount_override, self._clock())

    async def preview_month(
        self,
        campaign_id: int,
        month_key: str,
        asset_ids: Optional[Sequence[int]] = None,
        include_printing: bool = False,
        include_mounting: bool = False,
    ) -> MonthBillingPreview:
        parse_month_key(month_key)
        async with self._session_factory() as session:
            campaign = await self._get_campaign(session, campaign_id)
            assets = _select_assets(pricing_for_campaign(campaign), asset_ids)
        return bill_assets_for_month(assets, month_key, include_printing, include_mounting)

    async def list_months(self, campaign_id: int) -> List[str]:
        async with self._session_factory() as session:
            campaign = await self._get_campaign(session, campaign_id)
        return available_months(campaign.start_date, campaign.end_date)

    # ── Flows ────────────────────────────────────────────────────────────

    async def generate_single(
        self, campaign_id: int, options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """One invoice covering the whole campaign."""
        options = options or GenerationOptions()
        run = GenerationRun(GenerationFlow.SINGLE, campaign_id)

        async with self._session_factory() as session:
            run.advance(GenerationState.VALIDATING)
            loaded = await self._validate(session, run, campaign_id, options)
            run.month_key = to_month_key(loaded.terms.start_date)

            run.advance(GenerationState.CONFLICT_CHECK)
            in_scope = [a for a in loaded.assets if a.has_window]
            ledger_hits = [
                a.campaign_asset_id for a in in_scope
                if set(a.invoice_generated_months) & set(months_between(a.bill_start, a.bill_end))
            ]
            needs_review = await self._check_conflicts(
                session, run, loaded.campaign, run.month_key, False, ledger_hits, options,
            )

        run.advance(GenerationState.ASSEMBLING)
        totals = loaded.totals
        items: List[LineItemDraft] = []
        updates: List[LedgerUpdate] = []
        by_asset = {a.campaign_asset_id: a for a in in_scope}
        for line in totals.lines:
            if line.campaign_asset_id not in by_asset:
                continue
            asset = by_asset[line.campaign_asset_id]
            items.append(LineItemDraft(
                kind=LineItemKind.RENT,
                description=f"Display rent: {line.label} ({line.bill_start:%d %b %Y} - {line.bill_end:%d %b %Y})",
                amount=line.rent,
                rate=line.monthly_rate,
                quantity=Decimal(line.billable_days),
                rate_type=asset.billing_mode.value,
                campaign_asset_id=line.campaign_asset_id,
                asset_code=line.asset_code,
                bill_start=line.bill_start,
                bill_end=line.bill_end,
                billable_days=line.billable_days,
            ))
            charges = []
            for charge, amount in ((ChargeType.PRINTING, line.printing), (ChargeType.MOUNTING, line.mounting)):
                if amount > 0:
                    items.append(_one_time_item(charge, amount, line.label, line.campaign_asset_id, line.asset_code))
                    charges.append(charge)
            updates.append(LedgerUpdate(
                campaign_asset_id=line.campaign_asset_id,
                month_keys=tuple(months_between(line.bill_start, line.bill_end)),
                charges=tuple(charges),
            ))
        if totals.discount > 0:
            items.append(_discount_item(totals.discount, loaded.terms.discount_reason))

        draft = self._draft(
            loaded, options, items, updates,
            billing_month=run.month_key,
            is_monthly_split=False,
            period_start=loaded.terms.start_date,
            period_end=loaded.terms.end_date,
            needs_review=needs_review,
            tax_amount=totals.gst_amount,
        )
        return await self._persist_and_record(run, draft, list(totals.unavailable))

    async def generate_period(
        self,
        campaign_id: int,
        month_key: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """One invoice for one billing period of a monthly-split campaign."""
        options = options or GenerationOptions()
        run = GenerationRun(GenerationFlow.PERIOD, campaign_id, month_key)

        async with self._session_factory() as session:
            run.advance(GenerationState.VALIDATING)
            loaded = await self._validate(session, run, campaign_id, options)
            period = _find_period(loaded.totals.periods, month_key)
            if period is None:
                exc = ValidationError(f"Campaign {campaign_id} has no billing period {month_key}")
                run.reject(exc)
                raise exc

            run.advance(GenerationState.CONFLICT_CHECK)
            in_scope = [a for a in loaded.assets if _overlaps(a, period.period_start, period.period_end)]
            asset_months = {
                a.campaign_asset_id: _months_in_period(a, period) for a in in_scope
            }
            ledger_hits = [
                a.campaign_asset_id for a in in_scope
                if any(has_invoiced_month(a, m) for m in asset_months[a.campaign_asset_id])
            ]
            needs_review = await self._check_conflicts(
                session, run, loaded.campaign, month_key, True, ledger_hits, options,
            )

        run.advance(GenerationState.ASSEMBLING)
        printing_ids = _one_time_asset_ids(
            in_scope, period, options.include_printing, "printing_billed", options.rebill_one_time,
        )
        mounting_ids = _one_time_asset_ids(
            in_scope, period, options.include_mounting, "mounting_billed", options.rebill_one_time,
        )

        amount = calculate_period_amount_from_totals(
            period, loaded.totals, bool(printing_ids), bool(mounting_ids),
            printing_asset_ids=printing_ids, mounting_asset_ids=mounting_ids,
        )
        items, charged = _period_items(period, amount, loaded, printing_ids, mounting_ids)
        updates = [
            LedgerUpdate(
                campaign_asset_id=a.campaign_asset_id,
                month_keys=asset_months[a.campaign_asset_id],
                charges=tuple(charged.get(a.campaign_asset_id, ())),
            )
            for a in in_scope
        ]
        draft = self._draft(
            loaded, options, items, updates,
            billing_month=month_key,
            is_monthly_split=True,
            period_start=period.period_start,
            period_end=period.period_end,
            needs_review=needs_review,
            tax_amount=amount.gst_amount,
        )
        return await self._persist_and_record(run, draft, list(loaded.totals.unavailable))

    async def generate_asset_month(
        self,
        campaign_id: int,
        month_key: str,
        asset_ids: Optional[Sequence[int]] = None,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """One invoice for the selected assets' overlap with a month. Carries no discount."""
        options = options or GenerationOptions()
        run = GenerationRun(GenerationFlow.ASSET_MONTH, campaign_id, month_key)

        async with self._session_factory() as session:
            run.advance(GenerationState.VALIDATING)
            loaded = await self._validate(session, run, campaign_id, options)
            try:
                if month_key not in available_months(loaded.terms.start_date, loaded.terms.end_date):
                    raise ValidationError(f"{month_key} is outside campaign {campaign_id}")
                assets = _select_assets(loaded.assets, asset_ids)
                rebill = options.rebill_one_time
                preview = bill_assets_for_month(
                    assets, month_key,
                    bool(options.include_printing), bool(options.include_mounting), rebill,
                )
                if not preview.charges:
                    raise ValidationError(f"No selected asset is booked during {month_key}")
            except ValidationError as exc:
                run.reject(exc)
                raise

            run.advance(GenerationState.CONFLICT_CHECK)
            ledger_hits = [c.campaign_asset_id for c in preview.already_invoiced]
            needs_review = await self._check_conflicts(
                session, run, loaded.campaign, month_key, True, ledger_hits, options,
            )

        run.advance(GenerationState.ASSEMBLING)
        charges = preview.charges if needs_review else preview.billable
        items: List[LineItemDraft] = []
        updates: List[LedgerUpdate] = []
        for c in charges:
            items.append(_overlap_rent_item(c))
            billed = []
            for charge, amount in ((ChargeType.PRINTING, c.printing), (ChargeType.MOUNTING, c.mounting)):
                if amount > 0:
                    items.append(_one_time_item(charge, amount, c.label, c.campaign_asset_id, c.asset_code))
                    billed.append(charge)
            updates.append(LedgerUpdate(c.campaign_asset_id, (month_key,), tuple(billed)))

        draft = self._draft(
            loaded, options, items, updates,
            billing_month=month_key,
            is_monthly_split=True,
            period_start=min(c.bill_start for c in charges),
            period_end=max(c.bill_end for c in charges),
            needs_review=needs_review,
        )
        return await self._persist_and_record(run, draft, preview.unavailable)

    async def generate_batch(
        self, campaign_id: int, options: Optional[GenerationOptions] = None,
    ) -> BatchResult:
        """
        Generate every billing period that has no invoice yet. Periods that
        already have one are skipped; any other error stops the batch.
        """
        options = options or GenerationOptions()
        try:
            totals = await self.preview(campaign_id)
        except BillingError as exc:
            return BatchResult(success=False, error=str(exc))

        batch = BatchResult(success=True)
        for period in totals.periods:
            try:
                result = await self.generate_period(campaign_id, period.month_key, options)
            except ConflictError as exc:
                logger.info("Batch: campaign %s %s skipped (%s)", campaign_id, period.month_key, exc)
                batch.skipped_months.append(period.month_key)
                continue
            except BillingError as exc:
                logger.error("Batch: campaign %s stopped at %s: %s", campaign_id, period.month_key, exc)
                batch.success = False
                batch.error = str(exc)
                break
            batch.results.append(result)
            batch.invoices_created += 1

        logger.info(
            "Batch: campaign %s: %d created, %d skipped",
            campaign_id, batch.invoices_created, len(batch.skipped_months),
        )
        return batch

    # ── Steps ────────────────────────────────────────────────────────────

    async def _get_campaign(self, session, campaign_id: int) -> Campaign:
        campaign = await get_campaign(session, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    async def _validate(
        self, session, run: GenerationRun, campaign_id: int, options: GenerationOptions,
    ) -> _Loaded:
        try:
            campaign = await self._get_campaign(session, campaign_id)
            if campaign.client is None:
                raise ValidationError(f"Campaign {campaign_id} has no client")
            assert_valid(validate_campaign_record(campaign), f"Campaign {campaign_id}")
            if options.rebill_one_time and options.override is None:
                raise ValidationError("Re-billing one-time charges requires an override")

            terms = CampaignTerms.from_record(campaign)
            assets = pricing_for_campaign(campaign)
            gross = compute_campaign_totals(terms, assets, today=self._clock()).gross_amount
            override = options.discount_override
            if override is not None:
                override = to_decimal(override)
                if override < 0 or override > gross:
                    raise ValidationError(f"Discount {override} outside 0-{gross}")
            totals = compute_campaign_totals(terms, assets, override, today=self._clock())
        except (NotFoundError, ValidationError) as exc:
            run.reject(exc)
            raise
        return _Loaded(campaign=campaign, terms=terms, assets=assets, totals=totals)

    async def _check_conflicts(
        self,
        session,
        run: GenerationRun,
        campaign: Campaign,
        month_key: str,
        is_monthly_split: bool,
        ledger_hits: List[Optional[int]],
        options: GenerationOptions,
    ) -> bool:
        """Returns True when generation proceeds under an override."""
        existing = await find_existing_invoice(
            session, campaign.company_id, campaign.id, month_key, is_monthly_split,
        )
        if existing is None and not ledger_hits:
            return False

        if existing is not None:
            message = f"Invoice {existing.id} ({existing.status.value}) already covers {month_key}"
        else:
            message = f"{len(ledger_hits)} asset(s) already invoiced for {month_key}"

        if options.override is None:
            exc = ConflictError(
                message,
                existing_invoice_id=existing.id if existing else None,
                asset_ids=[a for a in ledger_hits if a is not None],
            )
            run.reject(exc)
            raise exc

        logger.warning(
            "Override: %s for campaign %s: %s; generating anyway by %s (%s)",
            run.flow.value, campaign.id, message, options.override.actor, options.override.reason,
        )
        return True

    def _draft(
        self,
        loaded: _Loaded,
        options: GenerationOptions,
        items: List[LineItemDraft],
        updates: List[LedgerUpdate],
        *,
        billing_month: str,
        is_monthly_split: bool,
        period_start: date,
        period_end: date,
        needs_review: bool,
        tax_amount: Optional[Decimal] = None,
    ) -> InvoiceDraft:
        sub_total = sum((i.amount for i in items), ZERO)
        if tax_amount is None:
            tax = compute_tax(
                sub_total, loaded.terms.gst_rate, self.company_state_code, loaded.terms.client_state_code,
            )
        else:
            # Tax already computed on this exact base by the totals aggregator
            mode = resolve_gst_mode(self.company_state_code, loaded.terms.client_state_code)
            tax = split_tax(tax_amount, mode, loaded.terms.gst_rate)
        invoice_date = options.invoice_date or self._clock()
        notes = options.notes
        if needs_review and options.override is not None:
            override_note = f"Override by {options.override.actor}: {options.override.reason}"
            notes = f"{notes}\n{override_note}" if notes else override_note
        return InvoiceDraft(
            company_id=loaded.campaign.company_id,
            campaign_id=loaded.campaign.id,
            client_id=loaded.campaign.client_id,
            billing_month=billing_month,
            is_monthly_split=is_monthly_split,
            period_start=period_start,
            period_end=period_end,
            invoice_date=invoice_date,
            due_date=due_date_for(invoice_date, self.payment_terms_days),
            items=items,
            tax=tax,
            notes=notes,
            created_by=options.created_by,
            needs_review=needs_review,
            ledger_updates=updates,
        )

    async def _persist(self, draft: InvoiceDraft) -> str:
        """
        Invoice ID, invoice and items in one transaction. A unique violation
        caused by another invoice for the same month becomes ConflictError;
        a lost race on a fresh counter row is retried once.
        """
        for attempt in range(PERSIST_ATTEMPTS):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        seq = 0
                        if draft.needs_review:
                            seq = await next_override_seq(
                                session, draft.campaign_id, draft.billing_month, draft.is_monthly_split,
                            )
                        invoice_id = await issue_invoice_id(session, draft.tax.rate, draft.invoice_date)
                        invoice = _invoice_row(invoice_id, draft, seq)
                        invoice.items = _item_rows(invoice_id, draft)
                        session.add(invoice)
                    return invoice_id
                except IntegrityError as exc:
                    existing = await find_existing_invoice(
                        session, draft.company_id, draft.campaign_id,
                        draft.billing_month, draft.is_monthly_split,
                    )
                    if existing is not None and not draft.needs_review:
                        raise ConflictError(
                            f"Invoice {existing.id} already covers {draft.billing_month}",
                            existing_invoice_id=existing.id,
                        ) from exc
                    if attempt == PERSIST_ATTEMPTS - 1:
                        raise
                    logger.info("Persist retry for campaign %s %s: %s",
                                draft.campaign_id, draft.billing_month, exc.orig)

    async def _persist_and_record(
        self,
        run: GenerationRun,
        draft: InvoiceDraft,
        unavailable: List[UnavailableCharge],
    ) -> GenerationResult:
        run.advance(GenerationState.PERSISTING)
        try:
            # Shielded: a cancelled caller must not leave a half-written invoice
            invoice_id = await asyncio.shield(self._persist(draft))
        except Exception as exc:
            run.fail(exc)
            raise

        logger.info(
            "Invoice %s: campaign %s %s (%s) total=%s",
            invoice_id, draft.campaign_id, draft.billing_month, run.flow.value, draft.total,
        )

        run.advance(GenerationState.LEDGER_UPDATING)
        warning = None
        failures = await self.ledger.apply(draft.ledger_updates)
        if failures:
            warning = PartialLedgerFailure(invoice_id, failures)
            logger.warning("%s: %s", warning, "; ".join(failures))
            self.notifier.notify("ledger.partial_failure", {
                "invoice_id": invoice_id, "failures": failures,
            })
        run.advance(GenerationState.DONE)

        payload = {
            "invoice_id": invoice_id,
            "campaign_id": draft.campaign_id,
            "month": draft.billing_month,
            "total": str(draft.total),
        }
        self.notifier.notify("invoice.generated", payload)
        if draft.needs_review:
            self.notifier.notify("invoice.needs_review", payload)

        return GenerationResult(
            invoice_id=invoice_id,
            run=run,
            draft=draft,
            unavailable=list(unavailable),
            ledger_warning=warning,
        )


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────

def _select_assets(
    assets: Sequence[AssetPricing], asset_ids: Optional[Sequence[int]],
) -> Tuple[AssetPricing, ...]:
    if asset_ids is None:
        return tuple(assets)
    wanted = set(asset_ids)
    return tuple(a for a in assets if a.campaign_asset_id in wanted)


def _find_period(periods: Sequence[BillingPeriod], month_key: str) -> Optional[BillingPeriod]:
    for p in periods:
        if p.month_key == month_key:
            return p
    return None


def _overlaps(asset: AssetPricing, start: date, end: date) -> bool:
    return asset.has_window and asset.bill_start <= end and asset.bill_end >= start


def _months_in_period(asset: AssetPricing, period: BillingPeriod) -> Tuple[str, ...]:
    """Month keys of the asset window inside the period. One key unless the cycle is single."""
    start = max(asset.bill_start, period.period_start)
    end = min(asset.bill_end, period.period_end)
    return tuple(months_between(start, end))


def _one_time_item(
    charge: ChargeType, amount: Decimal, label: str,
    campaign_asset_id: Optional[int], asset_code: Optional[str],
) -> LineItemDraft:
    return LineItemDraft(
        kind=LineItemKind(charge.value),
        description=f"{charge.value.capitalize()} charges: {label}",
        amount=amount,
        rate=amount,
        rate_type="one_time",
        campaign_asset_id=campaign_asset_id,
        asset_code=asset_code,
    )


def _discount_item(amount: Decimal, reason: Optional[str]) -> LineItemDraft:
    description = "Discount" + (f": {reason}" if reason else "")
    return LineItemDraft(
        kind=LineItemKind.DISCOUNT,
        description=description,
        amount=-amount,
        rate=-amount,
        rate_type="discount",
    )


def _overlap_rent_item(c: AssetMonthCharge) -> LineItemDraft:
    daily = c.rate_type == "daily"
    return LineItemDraft(
        kind=LineItemKind.RENT,
        description=f"Display rent: {c.label} ({c.bill_start:%d %b} - {c.bill_end:%d %b %Y}, {c.billable_days} days)",
        amount=c.rent,
        rate=c.daily_rate if daily else c.monthly_rate,
        quantity=Decimal(c.billable_days),
        rate_type=c.billing_mode.value,
        campaign_asset_id=c.campaign_asset_id,
        asset_code=c.asset_code,
        bill_start=c.bill_start,
        bill_end=c.bill_end,
        billable_days=c.billable_days,
    )


def _one_time_asset_ids(
    in_scope: Sequence[AssetPricing],
    period: BillingPeriod,
    include: Optional[bool],
    billed_attr: str,
    rebill: bool,
) -> set:
    """
    Assets whose one-time charge goes on this period's invoice. By default
    each asset is charged on the period its booking starts in; an explicit
    flag applies to every asset the period covers. Billed assets are skipped
    unless re-billing.
    """
    ids = set()
    for a in in_scope:
        wanted = a.bill_start >= period.period_start if include is None else include
        if wanted and (rebill or not getattr(a, billed_attr)):
            ids.add(a.campaign_asset_id)
    return ids


def _period_items(
    period: BillingPeriod,
    amount: PeriodAmount,
    loaded: _Loaded,
    printing_ids: set,
    mounting_ids: set,
) -> Tuple[List[LineItemDraft], Dict[Optional[int], List[ChargeType]]]:
    items = [LineItemDraft(
        kind=LineItemKind.RENT,
        description=(
            f"Display rent: {loaded.terms.campaign_name} - {period.label} "
            f"({period.period_start:%d %b} - {period.period_end:%d %b %Y})"
        ),
        amount=amount.base_rent,
        rate=loaded.totals.monthly_display_rent,
        quantity=period.pro_rata_factor.quantize(Decimal("0.0001")),
        rate_type="monthly_prorata",
        bill_start=period.period_start,
        bill_end=period.period_end,
        billable_days=period.days_in_period,
    )]

    charged: Dict[Optional[int], List[ChargeType]] = {}
    for line in loaded.totals.lines:
        for charge, ids, value in (
            (ChargeType.PRINTING, printing_ids, line.printing),
            (ChargeType.MOUNTING, mounting_ids, line.mounting),
        ):
            if line.campaign_asset_id in ids and value > 0:
                items.append(_one_time_item(charge, value, line.label, line.campaign_asset_id, line.asset_code))
                charged.setdefault(line.campaign_asset_id, []).append(charge)

    if amount.discount > 0:
        items.append(_discount_item(amount.discount, loaded.terms.discount_reason))
    return items, charged


def _invoice_row(invoice_id: str, draft: InvoiceDraft, override_seq: int) -> Invoice:
    total = draft.total
    return Invoice(
        id=invoice_id,
        company_id=draft.company_id,
        campaign_id=draft.campaign_id,
        client_id=draft.client_id,
        billing_month=draft.billing_month,
        is_monthly_split=draft.is_monthly_split,
        override_seq=override_seq,
        needs_review=draft.needs_review,
        invoice_date=draft.invoice_date,
        due_date=draft.due_date,
        period_start=draft.period_start,
        period_end=draft.period_end,
        sub_total=draft.sub_total,
        gst_mode=draft.tax.mode,
        gst_percent=draft.tax.rate,
        cgst_amount=draft.tax.cgst,
        sgst_amount=draft.tax.sgst,
        igst_amount=draft.tax.igst,
        gst_amount=draft.tax.total,
        total_amount=total,
        balance_due=total,
        status=InvoiceStatus.DRAFT,
        notes=draft.notes,
        created_by=draft.created_by,
    )


def _item_rows(invoice_id: str, draft: InvoiceDraft) -> List[InvoiceItem]:
    return [
        InvoiceItem(
            invoice_id=invoice_id,
            sort_order=i,
            kind=item.kind,
            description=item.description,
            campaign_asset_id=item.campaign_asset_id,
            asset_code=item.asset_code,
            bill_start_date=item.bill_start,
            bill_end_date=item.bill_end,
            billable_days=item.billable_days,
            quantity=item.quantity,
            rate=item.rate,
            rate_type=item.rate_type,
            amount=item.amount,
            hsn_sac=settings.HSN_SAC_CODE,
        )
        for i, item in enumerate(draft.items, start=1)
    ]
