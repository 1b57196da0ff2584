"""
OOH Billing — Data Model
=========================
SQLAlchemy ORM models for campaign billing and invoicing.

Tables:
  clients, campaigns, campaign_assets, invoices, invoice_items,
  invoice_counters

The billing ledger (invoiced months, one-time charge flags) lives on
campaign_assets. The "one non-cancelled invoice per (campaign, month,
split type)" rule is a partial unique index on invoices, not an
application-level check.

Designed for PostgreSQL; the schema also builds on SQLite for tests.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List

from sqlalchemy import (
    JSON, BigInteger, Boolean, CheckConstraint, Date, DateTime, Enum,
    ForeignKey, Index, Integer, Numeric, String, Text, func, select, text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import expression

from .config import settings


# ─────────────────────────────────────────────
# Base
# ─────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# SQLite only aliases ROWID for plain INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONList = JSON().with_variant(JSONB, "postgresql")


def _enum_values(enum_cls) -> list[str]:
    return [m.value for m in enum_cls]


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    SINGLE = "single"


class BillingMode(str, enum.Enum):
    PRORATA_30 = "PRORATA_30"   # monthly rate × (days / 30)
    FULL_MONTH = "FULL_MONTH"   # every touched month billed whole
    DAILY = "DAILY"             # days × daily rate


class MountingMode(str, enum.Enum):
    PER_AREA = "per-area"
    FIXED = "fixed"


class ChargeType(str, enum.Enum):
    PRINTING = "printing"
    MOUNTING = "mounting"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"
    PARTIALLY_PAID = "PartiallyPaid"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


class GSTMode(str, enum.Enum):
    DUAL_TAX = "CGST_SGST"
    SINGLE_TAX = "IGST"


class LineItemKind(str, enum.Enum):
    RENT = "rent"
    PRINTING = "printing"
    MOUNTING = "mounting"
    DISCOUNT = "discount"


# ─────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────

class Client(Base):
    """An advertiser buying campaigns."""
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    state_code: Mapped[str | None] = mapped_column(
        String(8), nullable=True, comment="GST jurisdiction, compared with the company's",
    )
    is_gst_applicable: Mapped[bool] = mapped_column(Boolean, server_default=expression.true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    campaigns: Mapped[List[Campaign]] = relationship(back_populates="client")

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r}>"


class Campaign(Base):
    """A booked campaign: a date window, a client and a set of assets."""
    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(256), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    gst_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        Enum(BillingCycle, values_callable=_enum_values), default=BillingCycle.MONTHLY,
    )
    manual_discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    manual_discount_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    # Relationships
    client: Mapped[Client] = relationship(back_populates="campaigns", lazy="selectin")
    assets: Mapped[List[CampaignAsset]] = relationship(
        back_populates="campaign", lazy="selectin", order_by="CampaignAsset.id",
    )
    invoices: Mapped[List[Invoice]] = relationship(back_populates="campaign")

    __table_args__ = (
        Index("ix_campaigns_company_client", "company_id", "client_id"),
    )

    def __repr__(self) -> str:
        return f"<Campaign id={self.id} name={self.campaign_name!r}>"


class CampaignAsset(Base):
    """
    One inventory asset booked on a campaign, with its locked pricing and
    its billing ledger (invoiced months + one-time charge flags).
    """
    __tablename__ = "campaign_assets"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("campaigns.id"), nullable=False)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False, comment="Inventory asset reference")
    asset_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location: Mapped[str | None] = mapped_column(String(256), nullable=True)
    area: Mapped[str | None] = mapped_column(String(128), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)

    booking_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    booking_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    card_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    negotiated_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    daily_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    billing_mode: Mapped[BillingMode] = mapped_column(
        Enum(BillingMode, values_callable=_enum_values), default=BillingMode.PRORATA_30,
    )

    printing_charges: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    mounting_charges: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    mounting_mode: Mapped[MountingMode] = mapped_column(
        Enum(MountingMode, values_callable=_enum_values), default=MountingMode.FIXED,
    )
    mounting_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 4), nullable=True, comment="Per sq.ft rate when mounting_mode = per-area",
    )
    total_sqft: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # Billing ledger
    invoice_generated_months: Mapped[list] = mapped_column(
        JSONList, default=list, comment="Month keys (YYYY-MM) already invoiced",
    )
    printing_billed: Mapped[bool] = mapped_column(Boolean, default=False)
    mounting_billed: Mapped[bool] = mapped_column(Boolean, default=False)

    campaign: Mapped[Campaign] = relationship(back_populates="assets")

    __table_args__ = (
        Index("ix_campaign_assets_campaign", "campaign_id"),
    )

    def __repr__(self) -> str:
        return f"<CampaignAsset id={self.id} asset={self.asset_id!r}>"


class Invoice(Base):
    """Generated invoice: whole campaign, one monthly period, or one month of asset overlaps."""
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, comment="Format: INV/2024-25/0001")
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("campaigns.id"), nullable=False)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)

    billing_month: Mapped[str] = mapped_column(String(7), nullable=False)
    is_monthly_split: Mapped[bool] = mapped_column(Boolean, nullable=False)
    override_seq: Mapped[int] = mapped_column(
        Integer, default=0, comment="0 normally; >0 when generated under a logged override",
    )
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    sub_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gst_mode: Mapped[GSTMode] = mapped_column(Enum(GSTMode, values_callable=_enum_values))
    gst_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    cgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    sgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    igst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, values_callable=_enum_values), default=InvoiceStatus.DRAFT,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    campaign: Mapped[Campaign] = relationship(back_populates="invoices")
    items: Mapped[List[InvoiceItem]] = relationship(
        back_populates="invoice", lazy="selectin", order_by="InvoiceItem.sort_order",
    )

    __table_args__ = (
        Index(
            "uq_invoices_campaign_month_split",
            "campaign_id", "billing_month", "is_monthly_split", "override_seq",
            unique=True,
            postgresql_where=text("status <> 'Cancelled'"),
            sqlite_where=text("status <> 'Cancelled'"),
        ),
        Index("ix_invoices_company_campaign", "company_id", "campaign_id"),
        CheckConstraint("period_end >= period_start", name="ck_invoices_period"),
    )


class InvoiceItem(Base):
    """One line on an invoice. Written with its parent and never edited alone."""
    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    kind: Mapped[LineItemKind] = mapped_column(Enum(LineItemKind, values_callable=_enum_values))
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    campaign_asset_id: Mapped[int | None] = mapped_column(
        ForeignKey("campaign_assets.id"), nullable=True,
    )
    asset_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bill_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    bill_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    billable_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("1"))
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    rate_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="Negative for discount lines",
    )
    hsn_sac: Mapped[str] = mapped_column(String(16), default=settings.HSN_SAC_CODE)

    invoice: Mapped[Invoice] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_invoice_items_invoice", "invoice_id"),
    )


class InvoiceCounter(Base):
    """Sequence per (prefix, financial year) backing invoice ID issuance."""
    __tablename__ = "invoice_counters"

    prefix: Mapped[str] = mapped_column(String(16), primary_key=True)
    fiscal_year: Mapped[str] = mapped_column(String(9), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0)


# ─────────────────────────────────────────────
# Helper functions (service layer)
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class ExistingInvoice:
    id: str
    status: InvoiceStatus
    total: Decimal


async def get_campaign(session: AsyncSession, campaign_id: int) -> Campaign | None:
    """Campaign with its client and assets eagerly loaded."""
    return await session.get(Campaign, campaign_id)


async def find_existing_invoice(
    session: AsyncSession,
    company_id: str,
    campaign_id: int,
    month: str,
    is_monthly_split: bool = True,
) -> ExistingInvoice | None:
    """Non-cancelled invoice already covering (campaign, month, split type)."""
    q = (
        select(Invoice.id, Invoice.status, Invoice.total_amount)
        .where(
            Invoice.company_id == company_id,
            Invoice.campaign_id == campaign_id,
            Invoice.billing_month == month,
            Invoice.is_monthly_split == is_monthly_split,
            Invoice.status != InvoiceStatus.CANCELLED,
        )
        .order_by(Invoice.override_seq)
        .limit(1)
    )
    row = (await session.execute(q)).first()
    if row is None:
        return None
    return ExistingInvoice(id=row.id, status=row.status, total=row.total_amount)


async def next_override_seq(
    session: AsyncSession, campaign_id: int, month: str, is_monthly_split: bool,
) -> int:
    q = (
        select(func.max(Invoice.override_seq))
        .where(
            Invoice.campaign_id == campaign_id,
            Invoice.billing_month == month,
            Invoice.is_monthly_split == is_monthly_split,
            Invoice.status != InvoiceStatus.CANCELLED,
        )
    )
    current = (await session.execute(q)).scalar()
    return 0 if current is None else current + 1


def fiscal_year(d: date) -> str:
    """April–March financial year label, e.g. 2024-25."""
    start_year = d.year if d.month >= 4 else d.year - 1
    return f"{start_year}-{(start_year + 1) % 100:02d}"


async def issue_invoice_id(
    session: AsyncSession, gst_rate: Decimal, issue_date: date,
) -> str:
    """
    Next invoice number: {PREFIX}/{FY}/{SEQ}
    Example: INV/2024-25/0007, or INV-Z/2024-25/0003 for zero-rated invoices.
    Must run inside the transaction that persists the invoice.
    """
    prefix = settings.INVOICE_PREFIX if gst_rate > 0 else settings.INVOICE_PREFIX_ZERO_RATED
    fy = fiscal_year(issue_date)

    counter = await session.get(InvoiceCounter, (prefix, fy), with_for_update=True)
    if counter is None:
        counter = InvoiceCounter(prefix=prefix, fiscal_year=fy, last_value=0)
        session.add(counter)
    counter.last_value += 1
    return f"{prefix}/{fy}/{counter.last_value:04d}"
