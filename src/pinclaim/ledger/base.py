"""
Base Ledger Gateway Interface.

All ledger adapters implement this interface; the claim service never
talks to a ledger SDK directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from pinclaim.core.types import HoldReceipt, TxConfirmation


class LedgerGateway(ABC):
    """
    Abstract escrow primitive of a ledger.

    A conditional hold locks `amount` from the source account. Before
    `expires_at` only the release path can spend it; from `expires_at`
    onwards only the refund path can. Implementations must let the ledger
    itself enforce that deadline wherever the ledger supports it.

    Failures are reported as:
    - LedgerSubmissionError: transient, safe to retry after reconciling
    - LedgerRejectedError: permanent (funds, accounts, asset)
    - AlreadyReleasedError / ExpiredError: release/refund no longer possible
    """

    name: str = "ledger"

    @abstractmethod
    async def create_conditional_hold(
        self,
        source_account: str,
        amount: Decimal,
        asset_code: str,
        expires_at: datetime,
        reference: str,
        claimant: str | None = None,
    ) -> HoldReceipt:
        """
        Lock funds in escrow.

        Args:
            source_account: Account funding the hold
            amount: Amount to lock
            asset_code: Asset code
            expires_at: Release deadline, enforced by the ledger predicate
            reference: Caller's idempotency reference (the claim ID),
                recorded on the ledger so find_hold can locate the hold
            claimant: Account allowed to release; None means the gateway's
                own escrow account

        Returns:
            HoldReceipt with the escrow reference and transaction hash
        """
        ...

    @abstractmethod
    async def find_hold(self, source_account: str, reference: str) -> HoldReceipt | None:
        """Look up an open hold created with `reference`, or None."""
        ...

    @abstractmethod
    async def release(self, escrow_reference: str, to_account: str) -> TxConfirmation:
        """Pay the held funds to `to_account` (only before expiry)."""
        ...

    @abstractmethod
    async def refund(self, escrow_reference: str, to_account: str) -> TxConfirmation:
        """Return the held funds to the sender (only from expiry onwards)."""
        ...

    async def health_check(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"
