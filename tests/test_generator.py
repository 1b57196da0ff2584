import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import AssetSeed, seed_campaign
from ooh_billing.errors import (
    ConflictError, InvalidTransition, NotFoundError, PartialLedgerFailure, ValidationError,
)
from ooh_billing.generator import (
    GenerationFlow, GenerationOptions, GenerationRun, GenerationState, InvoiceGenerator,
    InvoiceOverride,
)
from ooh_billing.ledger import BillingLedger, LedgerOverride
from ooh_billing.models import (
    CampaignAsset, GSTMode, Invoice, InvoiceStatus, LineItemKind,
)

TODAY = date(2024, 2, 1)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, payload):
        self.events.append((event, payload))


class BrokenLedger(BillingLedger):
    async def apply(self, updates):
        return [f"asset {u.campaign_asset_id}: connection reset" for u in updates]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def generator(session_factory, notifier):
    return InvoiceGenerator(
        session_factory, notifier=notifier, company_state_code="TS", clock=lambda: TODAY,
    )


async def count_invoices(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Invoice))).scalar()


async def load_asset(session_factory, asset_id):
    async with session_factory() as session:
        return await session.get(CampaignAsset, asset_id)


async def test_reference_scenario_end_to_end(session_factory, generator):
    seeded = await seed_campaign(session_factory)

    totals = await generator.preview(seeded.campaign_id)
    assert totals.display_cost == Decimal("57000.00")
    assert totals.total_months == 3
    assert totals.grand_total == Decimal("67260.00")

    result = await generator.generate_period(seeded.campaign_id, "2024-01")

    assert result.invoice_id == "INV/2023-24/0001"
    assert result.run.state == GenerationState.DONE
    assert result.draft.sub_total == Decimal("17000.00")
    assert result.draft.tax.mode == GSTMode.DUAL_TAX
    assert result.draft.tax.cgst == result.draft.tax.sgst == Decimal("1530.00")
    assert result.total == Decimal("20060.00")

    async with session_factory() as session:
        invoice = await session.get(Invoice, result.invoice_id)
        assert invoice.is_monthly_split is True
        assert invoice.billing_month == "2024-01"
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.due_date == date(2024, 3, 2)
        assert invoice.total_amount == Decimal("20060.00")
        assert [i.kind for i in invoice.items] == [LineItemKind.RENT]
        assert invoice.items[0].hsn_sac == "998361"

    row = await load_asset(session_factory, seeded.asset_ids[0])
    assert row.invoice_generated_months == ["2024-01"]


async def test_repeat_generation_conflicts(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    first = await generator.generate_period(seeded.campaign_id, "2024-02")

    with pytest.raises(ConflictError) as excinfo:
        await generator.generate_period(seeded.campaign_id, "2024-02")

    assert excinfo.value.existing_invoice_id == first.invoice_id
    assert await count_invoices(session_factory) == 1


async def test_override_generates_flagged_invoice(session_factory, generator, notifier, caplog):
    seeded = await seed_campaign(session_factory)
    await generator.generate_period(seeded.campaign_id, "2024-02")

    override = InvoiceOverride(actor="finance.lead", reason="client asked for reissue")
    with caplog.at_level("WARNING", logger="ooh.billing.generator"):
        result = await generator.generate_period(
            seeded.campaign_id, "2024-02", GenerationOptions(override=override),
        )

    assert result.draft.needs_review is True
    assert "finance.lead" in caplog.text
    assert any(event == "invoice.needs_review" for event, _ in notifier.events)
    async with session_factory() as session:
        invoice = await session.get(Invoice, result.invoice_id)
        assert invoice.override_seq == 1
        assert invoice.needs_review is True


async def test_batch_generates_every_period_once(session_factory, generator):
    seeded = await seed_campaign(
        session_factory, assets=[AssetSeed("HYD-001", printing_charges=Decimal("3000"))],
    )

    batch = await generator.generate_batch(seeded.campaign_id)

    assert batch.success is True
    assert batch.invoices_created == 3
    assert batch.error is None
    rents = [
        sum(i.amount for i in r.draft.items if i.kind == LineItemKind.RENT)
        for r in batch.results
    ]
    assert sum(rents) == Decimal("57000.00")
    printing = [
        sum(i.amount for i in r.draft.items if i.kind == LineItemKind.PRINTING)
        for r in batch.results
    ]
    assert printing == [Decimal("3000.00"), 0, 0]

    row = await load_asset(session_factory, seeded.asset_ids[0])
    assert row.invoice_generated_months == ["2024-01", "2024-02", "2024-03"]
    assert row.printing_billed is True

    again = await generator.generate_batch(seeded.campaign_id)
    assert again.success is True
    assert again.invoices_created == 0
    assert again.skipped_months == ["2024-01", "2024-02", "2024-03"]


async def test_batch_on_missing_campaign_reports_error(generator):
    batch = await generator.generate_batch(424242)
    assert batch.success is False
    assert batch.invoices_created == 0
    assert "424242" in batch.error


async def test_discount_apportioned_across_periods(session_factory, generator):
    seeded = await seed_campaign(session_factory, discount=Decimal("5700"))
    batch = await generator.generate_batch(seeded.campaign_id)

    discounts = [
        -sum(i.amount for i in r.draft.items if i.kind == LineItemKind.DISCOUNT)
        for r in batch.results
    ]
    assert discounts == [Decimal("1700.00"), Decimal("3000.00"), Decimal("1000.00")]


async def test_single_invoice_marks_every_month(session_factory, generator):
    seeded = await seed_campaign(
        session_factory,
        assets=[AssetSeed("HYD-001", mounting_charges=Decimal("1500"))],
        discount=Decimal("2000"),
    )

    result = await generator.generate_single(seeded.campaign_id)

    assert result.draft.is_monthly_split is False
    assert result.draft.billing_month == "2024-01"
    assert result.draft.sub_total == Decimal("56500.00")
    assert result.total == Decimal("66670.00")
    kinds = [i.kind for i in result.draft.items]
    assert kinds == [LineItemKind.RENT, LineItemKind.MOUNTING, LineItemKind.DISCOUNT]

    row = await load_asset(session_factory, seeded.asset_ids[0])
    assert row.invoice_generated_months == ["2024-01", "2024-02", "2024-03"]
    assert row.mounting_billed is True

    with pytest.raises(ConflictError) as excinfo:
        await generator.generate_period(seeded.campaign_id, "2024-02")
    assert excinfo.value.asset_ids == seeded.asset_ids


async def test_asset_month_bills_only_overlapping_assets(session_factory, generator):
    seeded = await seed_campaign(
        session_factory,
        start=date(2024, 1, 1), end=date(2024, 4, 30),
        assets=[
            AssetSeed("HYD-001", booking_start_date=date(2024, 1, 10), booking_end_date=date(2024, 2, 14)),
            AssetSeed("HYD-002", booking_start_date=date(2024, 3, 1), booking_end_date=date(2024, 4, 30)),
        ],
    )

    result = await generator.generate_asset_month(seeded.campaign_id, "2024-02")

    rent_items = [i for i in result.draft.items if i.kind == LineItemKind.RENT]
    assert [i.campaign_asset_id for i in rent_items] == [seeded.asset_ids[0]]
    assert rent_items[0].billable_days == 14
    assert result.draft.sub_total == Decimal("14000.00")
    assert result.draft.period_start == date(2024, 2, 1)
    assert result.draft.period_end == date(2024, 2, 14)

    first = await load_asset(session_factory, seeded.asset_ids[0])
    second = await load_asset(session_factory, seeded.asset_ids[1])
    assert first.invoice_generated_months == ["2024-02"]
    assert second.invoice_generated_months == []


async def test_one_time_charge_lands_on_period_the_booking_starts_in(session_factory, generator):
    seeded = await seed_campaign(
        session_factory,
        assets=[
            AssetSeed("HYD-001"),
            AssetSeed("HYD-002", booking_start_date=date(2024, 2, 1), printing_charges=Decimal("500")),
        ],
    )
    late = seeded.asset_ids[1]

    january = await generator.generate_period(seeded.campaign_id, "2024-01")
    assert [i for i in january.draft.items if i.kind == LineItemKind.PRINTING] == []
    assert (await load_asset(session_factory, late)).printing_billed is False

    february = await generator.generate_period(seeded.campaign_id, "2024-02")
    printing = [i for i in february.draft.items if i.kind == LineItemKind.PRINTING]
    assert [(i.campaign_asset_id, i.amount) for i in printing] == [(late, Decimal("500.00"))]
    assert (await load_asset(session_factory, late)).printing_billed is True

    march = await generator.generate_asset_month(
        seeded.campaign_id, "2024-03", [late],
        GenerationOptions(include_printing=True),
    )
    assert [i for i in march.draft.items if i.kind == LineItemKind.PRINTING] == []


async def test_period_rent_item_shows_real_days_in_month(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    result = await generator.generate_period(seeded.campaign_id, "2024-02")

    rent = [i for i in result.draft.items if i.kind == LineItemKind.RENT]
    assert rent[0].billable_days == 29
    assert rent[0].quantity == 1


async def test_single_invoice_total_matches_preview(session_factory, generator):
    seeded = await seed_campaign(
        session_factory,
        assets=[
            AssetSeed("HYD-001", mounting_charges=Decimal("1500")),
            AssetSeed(
                "HYD-002", printing_charges=Decimal("500"),
                booking_start_date=date(2024, 6, 1), booking_end_date=date(2024, 6, 30),
            ),
        ],
        discount=Decimal("2000"),
    )

    totals = await generator.preview(seeded.campaign_id)
    result = await generator.generate_single(seeded.campaign_id)

    assert totals.printing_cost == 0
    assert result.draft.sub_total == totals.taxable_amount
    assert result.draft.tax.total == totals.gst_amount
    assert result.total == totals.grand_total == Decimal("66670.00")


async def test_asset_month_and_period_share_the_month_slot(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    await generator.generate_asset_month(seeded.campaign_id, "2024-02")

    with pytest.raises(ConflictError):
        await generator.generate_period(seeded.campaign_id, "2024-02")


async def test_asset_month_outside_campaign_rejected(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    with pytest.raises(ValidationError):
        await generator.generate_asset_month(seeded.campaign_id, "2024-07")


async def test_inter_state_client_gets_igst(session_factory, generator):
    seeded = await seed_campaign(session_factory, client_state="KA")
    result = await generator.generate_period(seeded.campaign_id, "2024-02")

    assert result.draft.tax.mode == GSTMode.SINGLE_TAX
    assert result.draft.tax.igst == Decimal("5400.00")
    assert result.draft.tax.cgst == 0


async def test_non_gst_client_uses_zero_rated_series(session_factory, generator):
    seeded = await seed_campaign(session_factory, is_gst_applicable=False)
    result = await generator.generate_period(seeded.campaign_id, "2024-02")

    assert result.invoice_id == "INV-Z/2023-24/0001"
    assert result.draft.tax.total == 0
    assert result.total == Decimal("30000.00")


async def test_invoice_numbers_are_sequential(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    ids = [
        (await generator.generate_period(seeded.campaign_id, month)).invoice_id
        for month in ("2024-01", "2024-02")
    ]
    assert ids == ["INV/2023-24/0001", "INV/2023-24/0002"]


async def test_discount_override_above_gross_writes_nothing(session_factory, generator):
    seeded = await seed_campaign(session_factory)

    with pytest.raises(ValidationError):
        await generator.generate_period(
            seeded.campaign_id, "2024-01", GenerationOptions(discount_override=Decimal("60000")),
        )
    with pytest.raises(ValidationError):
        await generator.generate_single(
            seeded.campaign_id, GenerationOptions(discount_override=Decimal("-1")),
        )

    assert await count_invoices(session_factory) == 0


async def test_negative_rate_rejected(session_factory, generator):
    seeded = await seed_campaign(session_factory, assets=[AssetSeed("HYD-001", negotiated_rate=Decimal("-5"))])
    with pytest.raises(ValidationError) as excinfo:
        await generator.generate_single(seeded.campaign_id)
    assert "negotiated_rate" in excinfo.value.problems[0]


async def test_unknown_period_rejected(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    with pytest.raises(ValidationError):
        await generator.generate_period(seeded.campaign_id, "2024-05")


async def test_missing_campaign(generator):
    with pytest.raises(NotFoundError):
        await generator.generate_period(31337, "2024-01")


async def test_concurrent_generation_only_one_wins(session_factory, generator):
    seeded = await seed_campaign(session_factory)

    outcomes = await asyncio.gather(
        generator.generate_period(seeded.campaign_id, "2024-01"),
        generator.generate_period(seeded.campaign_id, "2024-01"),
        return_exceptions=True,
    )

    conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
    successes = [o for o in outcomes if not isinstance(o, BaseException)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert await count_invoices(session_factory) == 1


async def test_ledger_failure_is_a_warning_not_a_rollback(session_factory, notifier):
    generator = InvoiceGenerator(
        session_factory, ledger=BrokenLedger(session_factory), notifier=notifier,
        company_state_code="TS", clock=lambda: TODAY,
    )
    seeded = await seed_campaign(session_factory)

    result = await generator.generate_period(seeded.campaign_id, "2024-01")

    assert isinstance(result.ledger_warning, PartialLedgerFailure)
    assert result.ledger_warning.invoice_id == result.invoice_id
    assert result.run.state == GenerationState.DONE
    assert await count_invoices(session_factory) == 1
    assert any(event == "ledger.partial_failure" for event, _ in notifier.events)


async def test_cancelled_invoice_frees_the_month(session_factory, generator):
    seeded = await seed_campaign(session_factory)
    first = await generator.generate_period(seeded.campaign_id, "2024-01")

    async with session_factory() as session:
        async with session.begin():
            invoice = await session.get(Invoice, first.invoice_id)
            invoice.status = InvoiceStatus.CANCELLED
    await generator.ledger.revoke_month(
        seeded.asset_ids[0], "2024-01", LedgerOverride("finance.lead", "cancelled"),
    )

    second = await generator.generate_period(seeded.campaign_id, "2024-01")
    assert second.invoice_id != first.invoice_id
    assert second.draft.needs_review is False


def test_run_rejects_illegal_transitions():
    run = GenerationRun(GenerationFlow.PERIOD, campaign_id=1, month_key="2024-01")
    run.advance(GenerationState.VALIDATING)
    with pytest.raises(InvalidTransition):
        run.advance(GenerationState.PERSISTING)

    run.reject(ValidationError("bad dates"))
    assert run.state == GenerationState.REJECTED
    assert run.is_terminal
    with pytest.raises(InvalidTransition):
        run.advance(GenerationState.VALIDATING)


def test_persisting_can_only_fail_or_move_to_ledger():
    run = GenerationRun(GenerationFlow.SINGLE, campaign_id=1)
    for state in (
        GenerationState.VALIDATING, GenerationState.CONFLICT_CHECK,
        GenerationState.ASSEMBLING, GenerationState.PERSISTING,
    ):
        run.advance(state)
    with pytest.raises(InvalidTransition):
        run.advance(GenerationState.REJECTED)
    run.fail(RuntimeError("disk full"))
    assert run.state == GenerationState.FAILED
