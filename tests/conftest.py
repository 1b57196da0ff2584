from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from ooh_billing.models import (
    Base, BillingCycle, BillingMode, Campaign, CampaignAsset, Client, MountingMode,
)

COMPANY = "acme-outdoor"


@pytest.fixture
async def session_factory(tmp_path):
    # File-backed so concurrent sessions see each other's commits
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@dataclass
class AssetSeed:
    asset_code: str
    negotiated_rate: Optional[Decimal] = Decimal("30000")
    card_rate: Optional[Decimal] = None
    daily_rate: Optional[Decimal] = None
    billing_mode: BillingMode = BillingMode.PRORATA_30
    booking_start_date: Optional[date] = None
    booking_end_date: Optional[date] = None
    printing_charges: Optional[Decimal] = None
    mounting_charges: Optional[Decimal] = None
    mounting_mode: MountingMode = MountingMode.FIXED
    mounting_rate: Optional[Decimal] = None
    total_sqft: Optional[Decimal] = None


@dataclass
class Seeded:
    campaign_id: int
    client_id: int
    asset_ids: List[int] = field(default_factory=list)


async def seed_campaign(
    session_factory,
    start: date = date(2024, 1, 15),
    end: date = date(2024, 3, 10),
    assets: Optional[List[AssetSeed]] = None,
    client_state: Optional[str] = "TS",
    gst_percent: Optional[Decimal] = Decimal("18"),
    discount: Decimal = Decimal("0"),
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    is_gst_applicable: bool = True,
) -> Seeded:
    if assets is None:
        assets = [AssetSeed("HYD-BB-001")]
    async with session_factory() as session:
        client = Client(
            company_id=COMPANY, name="Sunrise Foods", state_code=client_state,
            is_gst_applicable=is_gst_applicable,
        )
        campaign = Campaign(
            company_id=COMPANY,
            client=client,
            campaign_name="Summer Launch",
            start_date=start,
            end_date=end,
            gst_percent=gst_percent,
            billing_cycle=billing_cycle,
            manual_discount_amount=discount,
        )
        rows = [
            CampaignAsset(
                campaign=campaign,
                asset_id=f"asset-{seed.asset_code}",
                asset_code=seed.asset_code,
                media_type="Bus Shelter",
                location="Banjara Hills Rd 12",
                city="Hyderabad",
                negotiated_rate=seed.negotiated_rate,
                card_rate=seed.card_rate,
                daily_rate=seed.daily_rate,
                billing_mode=seed.billing_mode,
                booking_start_date=seed.booking_start_date,
                booking_end_date=seed.booking_end_date,
                printing_charges=seed.printing_charges,
                mounting_charges=seed.mounting_charges,
                mounting_mode=seed.mounting_mode,
                mounting_rate=seed.mounting_rate,
                total_sqft=seed.total_sqft,
                invoice_generated_months=[],
            )
            for seed in assets
        ]
        session.add_all([client, campaign, *rows])
        await session.commit()
        return Seeded(
            campaign_id=campaign.id,
            client_id=client.id,
            asset_ids=[r.id for r in rows],
        )
