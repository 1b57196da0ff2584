"""
OOH Billing — Billing Ledger

Per-asset record of what has already been billed:
  - invoice_generated_months   month keys (YYYY-MM) already invoiced
  - printing_billed            one-time printing charge billed
  - mounting_billed            one-time mounting charge billed

Entries only grow. Removing a month or clearing a charge flag is an
administrative action that needs a LedgerOverride and is logged.

Reads are pure functions over a CampaignAsset (or AssetPricing) so previews
can use them without a session. Writes go through BillingLedger, one short
transaction per asset.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from .errors import LedgerOverrideRequired, NotFoundError
from .models import CampaignAsset, ChargeType

logger = logging.getLogger("ooh.billing.ledger")


@dataclass(frozen=True)
class LedgerOverride:
    actor: str
    reason: str


@dataclass(frozen=True)
class LedgerUpdate:
    """Entries to add for one campaign asset after an invoice is persisted."""
    campaign_asset_id: int
    month_keys: tuple = ()
    charges: tuple = ()


# ── Reads ────────────────────────────────────────────────────────────────

def has_invoiced_month(asset: Any, month_key: str) -> bool:
    return month_key in (getattr(asset, "invoice_generated_months", None) or ())


def is_charge_billed(asset: Any, charge: ChargeType | str) -> bool:
    charge = ChargeType(charge)
    return bool(getattr(asset, f"{charge.value}_billed", False))


def merge_month(months: Optional[Iterable[str]], month_key: str) -> list[str]:
    """Set union, returned sorted so the stored list is stable."""
    return sorted(set(months or ()) | {month_key})


# ── Writes ───────────────────────────────────────────────────────────────

class BillingLedger:
    """Async writer for the ledger columns on campaign_assets."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def _load(self, session, campaign_asset_id: int) -> CampaignAsset:
        asset = await session.get(CampaignAsset, campaign_asset_id, with_for_update=True)
        if asset is None:
            raise NotFoundError(f"Campaign asset {campaign_asset_id} not found")
        return asset

    async def mark_invoiced(self, campaign_asset_id: int, month_key: str) -> bool:
        """Add a month. Returns False when it was already recorded."""
        async with self._session_factory() as session:
            async with session.begin():
                asset = await self._load(session, campaign_asset_id)
                if has_invoiced_month(asset, month_key):
                    return False
                # Reassign so the JSON column is flagged dirty
                asset.invoice_generated_months = merge_month(asset.invoice_generated_months, month_key)
        logger.debug("Asset %s: month %s marked invoiced", campaign_asset_id, month_key)
        return True

    async def mark_charge_billed(self, campaign_asset_id: int, charge: ChargeType | str) -> bool:
        charge = ChargeType(charge)
        async with self._session_factory() as session:
            async with session.begin():
                asset = await self._load(session, campaign_asset_id)
                if is_charge_billed(asset, charge):
                    return False
                setattr(asset, f"{charge.value}_billed", True)
        logger.debug("Asset %s: %s marked billed", campaign_asset_id, charge.value)
        return True

    async def revoke_month(
        self, campaign_asset_id: int, month_key: str, override: Optional[LedgerOverride] = None,
    ) -> bool:
        if override is None:
            raise LedgerOverrideRequired(
                f"Removing month {month_key} from asset {campaign_asset_id} requires an override"
            )
        async with self._session_factory() as session:
            async with session.begin():
                asset = await self._load(session, campaign_asset_id)
                if not has_invoiced_month(asset, month_key):
                    return False
                asset.invoice_generated_months = sorted(
                    m for m in asset.invoice_generated_months if m != month_key
                )
        logger.warning(
            "Ledger override: month %s revoked on asset %s by %s (%s)",
            month_key, campaign_asset_id, override.actor, override.reason,
        )
        return True

    async def reset_charge(
        self,
        campaign_asset_id: int,
        charge: ChargeType | str,
        override: Optional[LedgerOverride] = None,
    ) -> bool:
        charge = ChargeType(charge)
        if override is None:
            raise LedgerOverrideRequired(
                f"Clearing {charge.value} on asset {campaign_asset_id} requires an override"
            )
        async with self._session_factory() as session:
            async with session.begin():
                asset = await self._load(session, campaign_asset_id)
                if not is_charge_billed(asset, charge):
                    return False
                setattr(asset, f"{charge.value}_billed", False)
        logger.warning(
            "Ledger override: %s reset on asset %s by %s (%s)",
            charge.value, campaign_asset_id, override.actor, override.reason,
        )
        return True

    async def _apply_one(self, update: LedgerUpdate) -> None:
        for month_key in update.month_keys:
            await self.mark_invoiced(update.campaign_asset_id, month_key)
        for charge in update.charges:
            await self.mark_charge_billed(update.campaign_asset_id, charge)

    async def apply(self, updates: Sequence[LedgerUpdate]) -> list[str]:
        """
        Apply every update concurrently. Order between assets is not
        guaranteed. Returns one message per failed asset; never raises.
        """
        results = await asyncio.gather(
            *(self._apply_one(u) for u in updates), return_exceptions=True,
        )
        failures = []
        for update, result in zip(updates, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Ledger update failed for asset %s: %s", update.campaign_asset_id, result,
                )
                failures.append(f"asset {update.campaign_asset_id}: {result}")
        return failures
