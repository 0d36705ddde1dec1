"""
In-Memory Ledger Gateway.

A simulated ledger with account balances and time-bound holds. It applies
the same predicates a real ledger would (release only before expiry, refund
only from expiry onwards, each hold spent once), which makes it suitable for
development and tests. Balances are lost when the process ends.
"""

from __future__ import annotations

import asyncio
import hashlib
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    ExpiredError,
    LedgerRejectedError,
    RefundNotAllowedError,
)
from pinclaim.core.logging import get_logger
from pinclaim.core.types import HoldReceipt, TxConfirmation, utcnow
from pinclaim.ledger.base import LedgerGateway


@dataclass
class _Hold:
    escrow_reference: str
    source_account: str
    amount: Decimal
    asset_code: str
    claimant: str | None
    expires_at: datetime
    reference: str
    tx_hash: str
    spent: bool = False


class InMemoryLedgerGateway(LedgerGateway):
    """Simulated escrow ledger."""

    name = "memory"

    def __init__(
        self,
        balances: dict[str, Decimal] | None = None,
        asset_code: str = "NATIVE",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            balances: Initial balances of `asset_code` per account
            asset_code: The single asset this ledger holds
            clock: Ledger time source; injectable for tests
        """
        self.asset_code = asset_code
        self._balances: dict[str, Decimal] = {
            account: Decimal(str(amount)) for account, amount in (balances or {}).items()
        }
        self._holds: dict[str, _Hold] = {}
        self._clock = clock or utcnow
        self._lock = asyncio.Lock()
        self._logger = get_logger("ledger.memory")

    @staticmethod
    def _tx_hash() -> str:
        return secrets.token_hex(32)

    def fund(self, account: str, amount: Decimal | str) -> Decimal:
        """Credit an account (creating it if needed). Returns the new balance."""
        self._balances[account] = self._balances.get(account, Decimal("0")) + Decimal(str(amount))
        return self._balances[account]

    def balance(self, account: str) -> Decimal:
        return self._balances.get(account, Decimal("0"))

    def holds(self) -> list[str]:
        """Escrow references of unspent holds."""
        return [ref for ref, hold in self._holds.items() if not hold.spent]

    async def create_conditional_hold(
        self,
        source_account: str,
        amount: Decimal,
        asset_code: str,
        expires_at: datetime,
        reference: str,
        claimant: str | None = None,
    ) -> HoldReceipt:
        async with self._lock:
            if asset_code != self.asset_code:
                raise LedgerRejectedError(
                    f"Unsupported asset: {asset_code}", gateway=self.name
                )
            if source_account not in self._balances:
                raise LedgerRejectedError(
                    f"Source account does not exist: {source_account}", gateway=self.name
                )
            if amount <= 0:
                raise LedgerRejectedError("Amount must be positive", gateway=self.name)
            if expires_at <= self._clock():
                raise LedgerRejectedError("Hold would already be expired", gateway=self.name)
            available = self._balances[source_account]
            if available < amount:
                raise LedgerRejectedError(
                    "Insufficient funds",
                    gateway=self.name,
                    details={"available": str(available), "required": str(amount)},
                )

            self._balances[source_account] = available - amount
            escrow_reference = "00000000" + hashlib.sha256(
                f"{source_account}:{reference}:{secrets.token_hex(8)}".encode()
            ).hexdigest()
            hold = _Hold(
                escrow_reference=escrow_reference,
                source_account=source_account,
                amount=amount,
                asset_code=asset_code,
                claimant=claimant,
                expires_at=expires_at,
                reference=reference,
                tx_hash=self._tx_hash(),
            )
            self._holds[escrow_reference] = hold
            self._logger.debug(f"Hold {escrow_reference[:16]}... created for {reference}")
            return HoldReceipt(escrow_reference=escrow_reference, tx_hash=hold.tx_hash)

    async def find_hold(self, source_account: str, reference: str) -> HoldReceipt | None:
        async with self._lock:
            for hold in self._holds.values():
                if (
                    not hold.spent
                    and hold.source_account == source_account
                    and hold.reference == reference
                ):
                    return HoldReceipt(escrow_reference=hold.escrow_reference, tx_hash=hold.tx_hash)
            return None

    def _open_hold(self, escrow_reference: str) -> _Hold:
        hold = self._holds.get(escrow_reference)
        if hold is None or hold.spent:
            raise AlreadyReleasedError(
                "Escrow hold does not exist or was already spent",
                escrow_reference=escrow_reference,
                gateway=self.name,
            )
        return hold

    async def release(self, escrow_reference: str, to_account: str) -> TxConfirmation:
        async with self._lock:
            hold = self._open_hold(escrow_reference)
            if self._clock() >= hold.expires_at:
                raise ExpiredError(
                    "Escrow hold has expired",
                    escrow_reference=escrow_reference,
                    gateway=self.name,
                )
            hold.spent = True
            self.fund(to_account, hold.amount)
            return TxConfirmation(
                tx_hash=self._tx_hash(),
                escrow_reference=escrow_reference,
                account=to_account,
                amount=hold.amount,
                asset_code=hold.asset_code,
            )

    async def refund(self, escrow_reference: str, to_account: str) -> TxConfirmation:
        async with self._lock:
            hold = self._open_hold(escrow_reference)
            if self._clock() < hold.expires_at:
                raise RefundNotAllowedError(
                    "Escrow hold has not expired yet",
                    gateway=self.name,
                    details={"expires_at": hold.expires_at.isoformat()},
                )
            if to_account != hold.source_account:
                raise LedgerRejectedError(
                    "Refunds can only go to the account that funded the hold",
                    gateway=self.name,
                )
            hold.spent = True
            self.fund(to_account, hold.amount)
            return TxConfirmation(
                tx_hash=self._tx_hash(),
                escrow_reference=escrow_reference,
                account=to_account,
                amount=hold.amount,
                asset_code=hold.asset_code,
            )
