"""
OOH Billing — Error taxonomy

  ValidationError          bad dates, negative rates, discount outside [0, gross]
                           → blocks before any write
  ConflictError            an invoice already exists for (campaign, month, split)
                           or the ledger already covers the request
                           → blocks unless an explicit, logged override is given
  ComputationUnavailable   one charge cannot be computed (e.g. missing area)
                           → that line degrades to "unavailable", batch continues
  PartialLedgerFailure     invoice persisted but ledger update failed
                           → warning for operator follow-up, no rollback
"""

from __future__ import annotations

from typing import Optional, Sequence


class BillingError(Exception):
    """Base class for every error raised by the billing engine."""


class NotFoundError(BillingError):
    pass


class ValidationError(BillingError):
    def __init__(self, message: str, problems: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [message])


class ConflictError(BillingError):
    def __init__(
        self,
        message: str,
        existing_invoice_id: Optional[str] = None,
        asset_ids: Sequence[int] = (),
    ):
        super().__init__(message)
        self.existing_invoice_id = existing_invoice_id
        self.asset_ids = list(asset_ids)


class ComputationUnavailable(BillingError):
    """A single charge line could not be priced."""

    def __init__(self, charge: str, reason: str):
        super().__init__(f"{charge} unavailable: {reason}")
        self.charge = charge
        self.reason = reason


class PartialLedgerFailure(BillingError):
    """The invoice exists but some ledger entries were not written."""

    def __init__(self, invoice_id: str, failures: Sequence[str]):
        super().__init__(
            f"Invoice {invoice_id} persisted but {len(failures)} ledger update(s) failed"
        )
        self.invoice_id = invoice_id
        self.failures = list(failures)


class LedgerOverrideRequired(BillingError):
    """Non-monotonic ledger mutation attempted without an administrative override."""


class InvalidTransition(BillingError):
    """A generation run was moved to a state its current state cannot reach."""
