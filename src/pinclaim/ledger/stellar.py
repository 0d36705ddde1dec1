"""
Stellar Ledger Gateway.

Escrow holds are Stellar claimable balances with two claimants:

- the service's escrow account, predicate `before_absolute_time(expires_at)`
- the sender, predicate `not(before_absolute_time(expires_at))`

so Stellar itself enforces the deadline: before expiry only the escrow
account can claim (and forward to the redeemer), afterwards only the sender
can take the funds back. The claim ID is written to the creating
transaction's text memo (`claim:<id>`) for reconciliation.

The SDK is synchronous; calls run in worker threads.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from stellar_sdk import Asset, Claimant, ClaimPredicate, Keypair, Server, TransactionBuilder
from stellar_sdk.exceptions import (
    BadRequestError,
    BaseHorizonError,
    NotFoundError,
)
from stellar_sdk.exceptions import ConnectionError as StellarConnectionError

from pinclaim.core.config import Config
from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    ConfigurationError,
    ExpiredError,
    LedgerError,
    LedgerRejectedError,
    LedgerSubmissionError,
    RefundNotAllowedError,
)
from pinclaim.core.logging import get_logger
from pinclaim.core.types import HoldReceipt, TxConfirmation, format_amount
from pinclaim.ledger.base import LedgerGateway

NATIVE_ASSET_CODE = "NATIVE"
MEMO_PREFIX = "claim:"
STELLAR_DECIMALS = 7
PAGE_LIMIT = 200  # Horizon maximum

# Transaction-level result codes worth resubmitting
_RETRYABLE_TX_CODES = {"tx_bad_seq", "tx_too_late", "tx_insufficient_fee", "tx_internal_error"}


def _result_codes(exc: BaseHorizonError) -> tuple[str | None, list[str]]:
    extras = getattr(exc, "extras", None) or {}
    codes = extras.get("result_codes") or {}
    return codes.get("transaction"), list(codes.get("operations") or [])


class StellarLedgerGateway(LedgerGateway):
    """
    Ledger gateway backed by Horizon.

    Args:
        escrow_secret: Secret seed of the service's escrow account
        horizon_url: Horizon server URL
        network_passphrase: Network passphrase
        signer: Returns the keypair for a sender account; needed to fund
            holds and to refund them. Key custody lives outside this package.
        server: Pre-built Server (tests inject a mock)
        base_fee: Fee per operation in stroops
        tx_timeout: Transaction validity window in seconds
    """

    name = "stellar"

    def __init__(
        self,
        escrow_secret: str,
        horizon_url: str = "https://horizon-testnet.stellar.org",
        network_passphrase: str = "Test SDF Network ; September 2015",
        signer: Callable[[str], Keypair] | None = None,
        server: Server | None = None,
        base_fee: int = 100,
        tx_timeout: int = 30,
    ) -> None:
        if not escrow_secret:
            raise ConfigurationError("escrow_secret is required for the Stellar gateway")
        self._escrow = Keypair.from_secret(escrow_secret)
        self._server = server or Server(horizon_url=horizon_url)
        self._network_passphrase = network_passphrase
        self._signer = signer
        self._base_fee = base_fee
        self._tx_timeout = tx_timeout
        self._logger = get_logger("ledger.stellar")

    @classmethod
    def from_config(
        cls,
        config: Config,
        signer: Callable[[str], Keypair] | None = None,
        server: Server | None = None,
    ) -> StellarLedgerGateway:
        """
        Gateway for the configured escrow account and network.

        Raises:
            ConfigurationError: If no escrow secret is configured
        """
        return cls(
            config.escrow_secret or "",
            horizon_url=config.horizon_url,
            network_passphrase=config.network_passphrase,
            signer=signer,
            server=server,
        )

    @property
    def escrow_account(self) -> str:
        return self._escrow.public_key

    @staticmethod
    def memo_for(reference: str) -> str:
        return f"{MEMO_PREFIX}{reference}"

    def _keypair_for(self, account_id: str) -> Keypair:
        if account_id == self._escrow.public_key:
            return self._escrow
        if self._signer is None:
            raise ConfigurationError(
                f"No signer configured for account {account_id}",
                details={"account": account_id},
            )
        return self._signer(account_id)

    @staticmethod
    def _asset(asset_code: str) -> Asset:
        if asset_code != NATIVE_ASSET_CODE:
            raise LedgerRejectedError(f"Unsupported asset: {asset_code}", gateway="stellar")
        return Asset.native()

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking SDK call, translating transport failures."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except StellarConnectionError as e:
            raise LedgerSubmissionError(f"Horizon unreachable: {e}", gateway=self.name) from e
        except NotFoundError:
            raise
        except BadRequestError:
            raise
        except BaseHorizonError as e:
            status = getattr(e, "status", None)
            if status is not None and (status == 429 or status >= 500):
                raise LedgerSubmissionError(
                    f"Horizon error {status}", gateway=self.name, details={"status": status}
                ) from e
            raise LedgerRejectedError(
                f"Horizon error {status}: {e}", gateway=self.name, details={"status": status}
            ) from e

    def _classify_rejection(
        self,
        exc: BadRequestError,
        action: str,
        escrow_reference: str | None = None,
    ) -> LedgerError:
        tx_code, op_codes = _result_codes(exc)
        details = {"transaction": tx_code, "operations": op_codes, "action": action}

        if tx_code in _RETRYABLE_TX_CODES:
            return LedgerSubmissionError(f"{action} not applied ({tx_code})", gateway=self.name, details=details)
        if "op_does_not_exist" in op_codes:
            return AlreadyReleasedError(
                "Claimable balance no longer exists",
                escrow_reference=escrow_reference,
                gateway=self.name,
                details=details,
            )
        if "op_cannot_claim" in op_codes:
            if action == "refund":
                return RefundNotAllowedError(
                    "Claimable balance cannot be refunded yet", gateway=self.name, details=details
                )
            return ExpiredError(
                "Claimable balance can no longer be released",
                escrow_reference=escrow_reference,
                gateway=self.name,
                details=details,
            )
        return LedgerRejectedError(f"{action} rejected: {tx_code} {op_codes}", gateway=self.name, details=details)

    async def _submit(self, envelope: Any, action: str, escrow_reference: str | None = None) -> dict[str, Any]:
        try:
            return await self._call(self._server.submit_transaction, envelope)
        except BadRequestError as e:
            raise self._classify_rejection(e, action, escrow_reference) from e
        except NotFoundError as e:
            raise LedgerRejectedError(f"{action}: resource not found", gateway=self.name) from e

    async def _load_account(self, account_id: str) -> Any:
        try:
            return await self._call(self._server.load_account, account_id)
        except NotFoundError as e:
            raise LedgerRejectedError(
                f"Account does not exist: {account_id}", gateway=self.name
            ) from e
        except BadRequestError as e:
            raise LedgerRejectedError(f"Invalid account: {account_id}", gateway=self.name) from e

    def _builder(self, source: Any) -> TransactionBuilder:
        return TransactionBuilder(
            source_account=source,
            network_passphrase=self._network_passphrase,
            base_fee=self._base_fee,
        )

    async def create_conditional_hold(
        self,
        source_account: str,
        amount: Decimal,
        asset_code: str,
        expires_at: datetime,
        reference: str,
        claimant: str | None = None,
    ) -> HoldReceipt:
        asset = self._asset(asset_code)
        keypair = self._keypair_for(source_account)
        source = await self._load_account(source_account)

        deadline = ClaimPredicate.predicate_before_absolute_time(int(expires_at.timestamp()))
        claimants = [
            Claimant(destination=claimant or self._escrow.public_key, predicate=deadline),
            Claimant(destination=source_account, predicate=ClaimPredicate.predicate_not(deadline)),
        ]
        envelope = (
            self._builder(source)
            .append_create_claimable_balance_op(
                asset=asset,
                amount=format_amount(amount, STELLAR_DECIMALS),
                claimants=claimants,
            )
            .add_text_memo(self.memo_for(reference))
            .set_timeout(self._tx_timeout)
            .build()
        )
        envelope.sign(keypair)
        balance_id = envelope.transaction.get_claimable_balance_id(0)

        response = await self._submit(envelope, "create")
        self._logger.info(f"Claimable balance {balance_id[:16]}... created for claim {reference}")
        return HoldReceipt(escrow_reference=balance_id, tx_hash=response.get("hash"))

    async def _sponsored_balances(self, source_account: str) -> AsyncIterator[dict[str, Any]]:
        """Every claimable balance sponsored by `source_account`, page by page."""
        cursor: str | None = None
        while True:
            builder = self._server.claimable_balances().for_sponsor(source_account).limit(PAGE_LIMIT)
            if cursor is not None:
                builder = builder.cursor(cursor)
            page = await self._call(builder.call)
            records = page.get("_embedded", {}).get("records", [])
            for record in records:
                yield record
            if len(records) < PAGE_LIMIT:
                return
            cursor = records[-1]["paging_token"]

    async def find_hold(self, source_account: str, reference: str) -> HoldReceipt | None:
        memo = self.memo_for(reference)
        try:
            async for record in self._sponsored_balances(source_account):
                balance_id = record["id"]
                try:
                    txs = await self._call(
                        self._server.transactions().for_claimable_balance(balance_id).limit(1).call
                    )
                except NotFoundError:
                    # Claimed between the listing and this lookup
                    continue
                for tx in txs.get("_embedded", {}).get("records", []):
                    if tx.get("memo") == memo:
                        return HoldReceipt(escrow_reference=balance_id, tx_hash=tx.get("hash"))
        except NotFoundError:
            return None
        except BadRequestError as e:
            raise LedgerRejectedError(f"Cannot list holds for {source_account}", gateway=self.name) from e
        return None

    async def _get_balance(self, escrow_reference: str) -> dict[str, Any]:
        try:
            return await self._call(
                self._server.claimable_balances().claimable_balance(escrow_reference).call
            )
        except NotFoundError as e:
            raise AlreadyReleasedError(
                "Claimable balance no longer exists",
                escrow_reference=escrow_reference,
                gateway=self.name,
            ) from e
        except BadRequestError as e:
            raise LedgerRejectedError(
                f"Invalid claimable balance id: {escrow_reference}", gateway=self.name
            ) from e

    async def release(self, escrow_reference: str, to_account: str) -> TxConfirmation:
        balance = await self._get_balance(escrow_reference)
        amount = Decimal(balance["amount"])
        escrow = await self._load_account(self._escrow.public_key)

        envelope = (
            self._builder(escrow)
            .append_claim_claimable_balance_op(balance_id=escrow_reference)
            .append_payment_op(
                destination=to_account,
                asset=Asset.native(),
                amount=format_amount(amount, STELLAR_DECIMALS),
            )
            .set_timeout(self._tx_timeout)
            .build()
        )
        envelope.sign(self._escrow)
        response = await self._submit(envelope, "release", escrow_reference)
        return TxConfirmation(
            tx_hash=response.get("hash", ""),
            escrow_reference=escrow_reference,
            account=to_account,
            amount=amount,
            asset_code=NATIVE_ASSET_CODE,
        )

    async def refund(self, escrow_reference: str, to_account: str) -> TxConfirmation:
        balance = await self._get_balance(escrow_reference)
        keypair = self._keypair_for(to_account)
        source = await self._load_account(to_account)

        envelope = (
            self._builder(source)
            .append_claim_claimable_balance_op(balance_id=escrow_reference)
            .set_timeout(self._tx_timeout)
            .build()
        )
        envelope.sign(keypair)
        response = await self._submit(envelope, "refund", escrow_reference)
        return TxConfirmation(
            tx_hash=response.get("hash", ""),
            escrow_reference=escrow_reference,
            account=to_account,
            amount=Decimal(balance["amount"]),
            asset_code=NATIVE_ASSET_CODE,
        )

    async def health_check(self) -> bool:
        try:
            await self._call(self._server.root().call)
            return True
        except (LedgerError, BaseHorizonError):
            return False
