"""
Claim Service.

Orchestrates the claimable-payment protocol: a sender locks funds in a
ledger escrow, the recipient gets a PIN out of band, and the funds are
released to whichever account presents the PIN before the deadline.
Unclaimed escrows go back to the sender.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, TypeVar

from tenacity import AsyncRetrying

from pinclaim.core.config import Config
from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    ConfigurationError,
    DeliveryError,
    ExpiredError,
    InvalidStateError,
    LedgerError,
    LedgerSubmissionError,
    PinClaimError,
    RefundNotAllowedError,
    ValidationError,
)
from pinclaim.core.logging import configure_logging, get_logger
from pinclaim.core.types import (
    REFUNDED_MESSAGE,
    AmountType,
    ClaimHandle,
    ClaimStatus,
    DeliveryReceipt,
    EscrowClaim,
    HoldReceipt,
    RedeemErrorKind,
    RedeemResult,
    SweepReport,
    TxConfirmation,
    VerifyResult,
    to_decimal,
)
from pinclaim.ledger.base import LedgerGateway
from pinclaim.notify.base import NotificationGateway, claim_link, claim_message, status_message
from pinclaim.pin.store import SecretStore, is_valid_pin_format
from pinclaim.registry.lock import ClaimLockService
from pinclaim.registry.registry import EscrowRegistry
from pinclaim.resilience.retry import ledger_retrying
from pinclaim.storage import StorageBackend, get_storage

T = TypeVar("T")


class ClaimService:
    """
    Create, redeem and expire PIN-protected escrow claims.

    Example:
        >>> service = ClaimService.from_config(config, ledger, notifier)
        >>> handle = await service.create_claim(
        ...     sender_account="GA...", amount="50", asset_code="NATIVE",
        ...     notify_address="+15551234567",
        ... )
        >>> result = await service.redeem_claim(handle.claim_id, "1234", "GB...")
    """

    def __init__(
        self,
        registry: EscrowRegistry,
        secret_store: SecretStore,
        ledger: LedgerGateway,
        notifier: NotificationGateway,
        config: Config | None = None,
        lock_service: ClaimLockService | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or Config()
        self._registry = registry
        self._secrets = secret_store
        self._ledger = ledger
        self._notifier = notifier
        self._locks = lock_service or ClaimLockService.from_config(registry.storage, self._config)
        self._clock = clock or registry.now
        self._logger = get_logger("service")

    @classmethod
    def from_config(
        cls,
        config: Config,
        ledger: LedgerGateway,
        notifier: NotificationGateway,
        storage: StorageBackend | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ClaimService:
        """Configure logging, then wire registry, secret store and lock service from configuration."""
        configure_logging(config.log_level, json_format=config.env == "production")

        if storage is None:
            kwargs: dict[str, Any] = {}
            if config.storage_backend == "redis" and config.redis_url:
                kwargs["redis_url"] = config.redis_url
            try:
                storage = get_storage(config.storage_backend, **kwargs)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e

        registry = EscrowRegistry(storage, clock=clock)
        secret_store = SecretStore(
            registry,
            max_attempts=config.pin_max_attempts,
            iterations=config.pin_hash_iterations,
        )
        return cls(
            registry,
            secret_store,
            ledger,
            notifier,
            config=config,
            lock_service=ClaimLockService.from_config(storage, config),
            clock=clock,
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def registry(self) -> EscrowRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Gateway plumbing
    # ------------------------------------------------------------------

    def _retrying(self) -> AsyncRetrying:
        return ledger_retrying(
            max_attempts=self._config.ledger_max_attempts,
            min_wait=self._config.ledger_backoff_min,
            max_wait=self._config.ledger_backoff_max,
        )

    async def _ledger_call(self, func: Callable[..., Awaitable[T]], *args: Any) -> T:
        """One ledger call bounded by request_timeout. A timeout is a submission error."""
        try:
            return await asyncio.wait_for(func(*args), timeout=self._config.request_timeout)
        except asyncio.TimeoutError as e:
            raise LedgerSubmissionError(
                f"Ledger call timed out after {self._config.request_timeout}s",
                gateway=self._ledger.name,
            ) from e

    async def _send(self, address: str, message: str) -> DeliveryReceipt:
        try:
            return await asyncio.wait_for(
                self._notifier.send(address, message), timeout=self._config.request_timeout
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(
                "Notification timed out",
                address=address,
                retryable=True,
                gateway=self._notifier.name,
            ) from e

    async def _send_status(self, claim: EscrowClaim, kind: str, status: str) -> None:
        """Best-effort status SMS; failures are logged only."""
        if not claim.notify_address:
            return
        message = status_message(kind, status, claim.amount, claim.asset_code, self._config.app_name)
        try:
            await self._send(claim.notify_address, message)
        except DeliveryError as e:
            self._logger.warning(f"{kind} {status} notice for claim {claim.claim_id} not delivered: {e}")

    async def _create_hold(self, claim: EscrowClaim) -> HoldReceipt:
        """
        Submit the escrow hold with bounded retries.

        Every resubmission first asks the ledger whether an earlier,
        unconfirmed attempt already created the hold.
        """
        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    existing = await self._ledger_call(
                        self._ledger.find_hold, claim.sender_account, claim.claim_id
                    )
                    if existing is not None:
                        self._logger.info(
                            f"Claim {claim.claim_id}: found hold from an unconfirmed attempt"
                        )
                        return existing
                return await self._ledger_call(
                    self._ledger.create_conditional_hold,
                    claim.sender_account,
                    claim.amount,
                    claim.asset_code,
                    claim.expires_at,
                    claim.claim_id,
                )

    async def _settle(
        self,
        func: Callable[[str, str], Awaitable[TxConfirmation]],
        escrow_reference: str,
        account: str,
    ) -> TxConfirmation | None:
        """
        Release or refund with bounded retries.

        Returns None when a resubmission finds the hold already spent: the
        earlier attempt was applied even though its confirmation was lost.
        """
        resubmitted = False
        try:
            async for attempt in self._retrying():
                with attempt:
                    resubmitted = attempt.retry_state.attempt_number > 1
                    return await self._ledger_call(func, escrow_reference, account)
        except AlreadyReleasedError:
            if not resubmitted:
                raise
            self._logger.warning(
                f"Hold {escrow_reference[:16]}... spent after an unconfirmed attempt; assuming it applied"
            )
            return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_amount(self, amount: AmountType) -> Decimal:
        try:
            value = to_decimal(amount)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e), details={"amount": repr(amount)}) from e
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be positive", details={"amount": str(amount)})
        exponent = value.as_tuple().exponent
        if isinstance(exponent, int) and -exponent > self._config.amount_decimals:
            raise ValidationError(
                f"Amount has more than {self._config.amount_decimals} decimal places",
                details={"amount": str(amount)},
            )
        return value

    def _validate_asset(self, asset_code: str) -> str:
        if asset_code not in self._config.supported_assets:
            raise ValidationError(
                f"Unsupported asset: {asset_code}",
                details={"supported": list(self._config.supported_assets)},
            )
        return asset_code

    def _validate_ttl(self, ttl_seconds: int | None) -> int:
        if ttl_seconds is None:
            return self._config.default_ttl_seconds
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
            raise ValidationError("TTL must be a whole number of seconds")
        if not self._config.min_ttl_seconds <= ttl_seconds <= self._config.max_ttl_seconds:
            raise ValidationError(
                f"TTL must be between {self._config.min_ttl_seconds} and "
                f"{self._config.max_ttl_seconds} seconds",
                details={"ttl_seconds": ttl_seconds},
            )
        return ttl_seconds

    @staticmethod
    def _require_account(account: str | None, field_name: str) -> str:
        if not account or not account.strip():
            raise ValidationError(f"{field_name} is required")
        return account.strip()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_claim(
        self,
        sender_account: str,
        amount: AmountType,
        asset_code: str,
        notify_address: str,
        ttl_seconds: int | None = None,
        sender_name: str | None = None,
    ) -> ClaimHandle:
        """
        Escrow funds and send the PIN to the recipient.

        Args:
            sender_account: Account funding the escrow
            amount: Amount to escrow (Decimal, int or str)
            asset_code: Asset code; must be supported
            notify_address: Recipient phone number
            ttl_seconds: Claim lifetime, defaults to config.default_ttl_seconds
            sender_name: Shown in the claim SMS

        Returns:
            ClaimHandle carrying the PIN (the only copy) and any warnings

        Raises:
            ValidationError: Bad input; nothing was created
            LedgerRejectedError: Ledger refused the escrow; claim is FAILED
            LedgerSubmissionError: Escrow not confirmed after retries; claim
                stays PENDING until reconciled
        """
        sender = self._require_account(sender_account, "sender_account")
        value = self._validate_amount(amount)
        asset = self._validate_asset(asset_code)
        ttl = self._validate_ttl(ttl_seconds)
        address = self._notifier.normalize_address(notify_address)

        pin = self._secrets.generate_pin()
        pin_hash = await self._secrets.hash_pin_async(pin)
        claim = await self._registry.create(
            sender, value, asset, pin_hash, ttl, notify_address=address
        )

        try:
            receipt = await self._create_hold(claim)
        except LedgerError as e:
            if e.retryable:
                self._logger.error(
                    f"Escrow for claim {claim.claim_id} not confirmed, left pending: {e}"
                )
            else:
                self._logger.error(f"Escrow for claim {claim.claim_id} rejected: {e}")
                await self._registry.mark_failed(claim.claim_id, str(e))
            raise
        except ConfigurationError as e:
            await self._registry.mark_failed(claim.claim_id, str(e))
            raise

        claim = await self._registry.mark_active(claim.claim_id, receipt.escrow_reference, receipt.tx_hash)
        handle = ClaimHandle(
            claim_id=claim.claim_id,
            escrow_reference=receipt.escrow_reference,
            expires_at=claim.expires_at,
            pin=pin,
            amount=value,
            asset_code=asset,
            tx_hash=receipt.tx_hash,
        )

        message = claim_message(
            value,
            asset,
            pin,
            claim_link(self._config.claim_base_url, claim.claim_id),
            self._config.app_name,
            sender_name=sender_name,
        )
        try:
            handle.notification = await self._send(address, message)
        except DeliveryError as e:
            # The escrow stays valid; the sender can resend
            self._logger.warning(f"Claim {claim.claim_id} created but not delivered: {e}")
            handle.warnings.append(f"Notification failed: {e.message}")

        return handle

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def _status_rejection(self, claim: EscrowClaim, now: datetime) -> RedeemResult | None:
        if claim.status == ClaimStatus.CLAIMED:
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.ALREADY_CLAIMED)
        if claim.status == ClaimStatus.RELEASING:
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.IN_PROGRESS)
        if claim.status == ClaimStatus.REFUNDED:
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.EXPIRED, REFUNDED_MESSAGE)
        if claim.status == ClaimStatus.EXPIRED:
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.EXPIRED)
        if claim.status != ClaimStatus.ACTIVE:
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.NOT_ACTIVE)
        if claim.is_past_expiry(now):
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.EXPIRED)
        if claim.locked:
            return RedeemResult.failure(claim.claim_id, RedeemErrorKind.LOCKED, remaining_attempts=0)
        return None

    def _hold_claim(
        self, claim_id: str, retry_count: int | None = None
    ) -> AbstractAsyncContextManager[str | None]:
        return self._locks.hold(
            claim_id,
            ttl=self._config.lock_ttl,
            retry_count=self._config.lock_retry_count if retry_count is None else retry_count,
            retry_delay=self._config.lock_retry_delay,
        )

    async def redeem_claim(
        self,
        claim_id: str,
        supplied_pin: str,
        claimant_account: str,
    ) -> RedeemResult:
        """
        Release the escrow to `claimant_account` if `supplied_pin` is right.

        Business outcomes (wrong PIN, lockout, expiry, already claimed) come
        back as a failed RedeemResult. Only malformed input and ledger
        infrastructure failures raise.

        PIN verification and release run under the claim lock, one attempt
        at a time per claim, so parallel guesses cannot outrun the lockout.
        """
        if not is_valid_pin_format(supplied_pin):
            raise ValidationError("PIN must be exactly four digits")
        claimant = self._require_account(claimant_account, "claimant_account")

        claim = await self._registry.find(claim_id)
        if claim is None:
            return RedeemResult.failure(claim_id, RedeemErrorKind.NOT_FOUND)

        # A release in flight finishes under the lock; wait for its outcome
        if claim.status != ClaimStatus.RELEASING:
            rejection = self._status_rejection(claim, self._clock())
            if rejection is not None:
                return rejection

        async with self._hold_claim(claim_id) as token:
            if token is None:
                return RedeemResult.failure(claim_id, RedeemErrorKind.IN_PROGRESS)
            return await self._redeem_locked(claim_id, supplied_pin, claimant)

    async def _redeem_locked(self, claim_id: str, supplied_pin: str, claimant: str) -> RedeemResult:
        # Re-read under the lock: a concurrent redemption may have won
        claim = await self._registry.get(claim_id)
        rejection = self._status_rejection(claim, self._clock())
        if rejection is not None:
            return rejection

        outcome = await self._secrets.verify_pin(claim, supplied_pin)
        if outcome.result == VerifyResult.LOCKED:
            return RedeemResult.failure(claim_id, RedeemErrorKind.LOCKED, remaining_attempts=0)
        if outcome.result == VerifyResult.INVALID:
            return RedeemResult.failure(
                claim_id,
                RedeemErrorKind.WRONG_PIN,
                remaining_attempts=outcome.remaining_attempts,
            )

        try:
            claim = await self._registry.mark_releasing(claim_id, claimant)
        except InvalidStateError:
            current = await self._registry.get(claim_id)
            return self._status_rejection(current, self._clock()) or RedeemResult.failure(
                claim_id, RedeemErrorKind.IN_PROGRESS
            )

        try:
            confirmation = await self._settle(
                self._ledger.release, claim.escrow_reference, claimant  # type: ignore[arg-type]
            )
        except AlreadyReleasedError:
            self._logger.error(f"Escrow for active claim {claim_id} is already spent on the ledger")
            await self._registry.abandon_release(claim_id)
            return RedeemResult.failure(claim_id, RedeemErrorKind.ALREADY_CLAIMED)
        except ExpiredError:
            self._logger.info(f"Ledger refused release of claim {claim_id}: hold expired")
            await self._registry.abandon_release(claim_id)
            return RedeemResult.failure(claim_id, RedeemErrorKind.EXPIRED)
        except LedgerSubmissionError:
            # Outcome unknown; the sweep settles it against the ledger
            self._logger.error(f"Release of claim {claim_id} not confirmed, left releasing")
            raise
        except (LedgerError, ConfigurationError):
            await self._registry.abandon_release(claim_id)
            raise

        tx_hash = confirmation.tx_hash if confirmation else None
        try:
            claim = await self._registry.mark_claimed(claim_id, claimant, tx_hash)
        except InvalidStateError as e:
            self._logger.error(
                f"Claim {claim_id} released to {claimant} (tx {tx_hash}) but registry is "
                f"{e.current_status}"
            )
            return RedeemResult.failure(claim_id, RedeemErrorKind.ALREADY_CLAIMED)

        self._logger.info(f"Claim {claim_id} redeemed by {claimant}")
        await self._send_status(claim, "claim", "success")
        return RedeemResult(
            success=True,
            claim_id=claim_id,
            amount=claim.amount,
            asset_code=claim.asset_code,
            claimed_at=claim.claimed_at,
            claimant_account=claimant,
            tx_hash=tx_hash,
        )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def expire_sweep(self, now: datetime | None = None) -> SweepReport:
        """
        Refund every ACTIVE claim past its deadline and reconcile stale
        PENDING and RELEASING ones. A failure on one claim never stops the
        others.
        """
        now = now or self._clock()
        report = SweepReport()

        release_cutoff = now - timedelta(seconds=self._config.lock_ttl)
        for claim in await self._registry.list_stale_releasing(release_cutoff):
            report.examined += 1
            try:
                await self._recover_release(claim.claim_id, report)
            except Exception as e:
                self._logger.error(f"Recovering claim {claim.claim_id} failed: {e}", exc_info=True)
                report.errors[claim.claim_id] = str(e)

        for claim in await self._registry.list_expired(now):
            report.examined += 1
            try:
                await self._sweep_one(claim.claim_id, report)
            except Exception as e:
                self._logger.error(f"Sweep of claim {claim.claim_id} failed: {e}", exc_info=True)
                report.errors[claim.claim_id] = str(e)

        cutoff = now - timedelta(seconds=self._config.pending_grace_seconds)
        for claim in await self._registry.list_stale_pending(cutoff):
            report.examined += 1
            try:
                updated = await self.reconcile_pending(claim.claim_id, now=now)
            except Exception as e:
                self._logger.error(f"Reconciling claim {claim.claim_id} failed: {e}", exc_info=True)
                report.errors[claim.claim_id] = str(e)
                continue
            if updated.status != ClaimStatus.PENDING:
                report.reconciled.append(claim.claim_id)

        if report.examined:
            self._logger.info(
                f"Sweep: {len(report.refunded)} refunded, {len(report.expired)} expired, "
                f"{len(report.deferred)} deferred, {len(report.reconciled)} reconciled, "
                f"{len(report.errors)} errors"
            )
        return report

    async def _find_hold(self, claim: EscrowClaim) -> HoldReceipt | None:
        receipt: HoldReceipt | None = None
        async for attempt in self._retrying():
            with attempt:
                receipt = await self._ledger_call(
                    self._ledger.find_hold, claim.sender_account, claim.claim_id
                )
        return receipt

    async def _recover_release(self, claim_id: str, report: SweepReport) -> None:
        """
        Settle a release whose redemption never confirmed it.

        The open hold is still on the ledger: the release did not apply and
        the claim becomes redeemable again. No open hold: the release
        applied, so the claim is CLAIMED by the reserved claimant.
        """
        async with self._hold_claim(claim_id, retry_count=0) as token:
            if token is None:
                report.deferred.append(claim_id)
                return
            claim = await self._registry.get(claim_id)
            if claim.status != ClaimStatus.RELEASING:
                return

            if await self._find_hold(claim) is not None:
                self._logger.warning(f"Release of claim {claim_id} never applied, reopening")
                await self._registry.abandon_release(claim_id)
            else:
                self._logger.warning(
                    f"Release of claim {claim_id} applied without confirmation, marking claimed"
                )
                claim = await self._registry.mark_claimed(
                    claim_id, claim.claimant_account or "", None
                )
                await self._send_status(claim, "claim", "success")
            report.reconciled.append(claim_id)

    async def _sweep_one(self, claim_id: str, report: SweepReport) -> None:
        async with self._hold_claim(claim_id, retry_count=0) as token:
            if token is None:
                # A redemption is in flight; the next sweep picks it up
                report.deferred.append(claim_id)
                return
            claim = await self._registry.get(claim_id)
            if claim.status != ClaimStatus.ACTIVE:
                return

            try:
                confirmation = await self._settle(
                    self._ledger.refund, claim.escrow_reference, claim.sender_account  # type: ignore[arg-type]
                )
            except RefundNotAllowedError:
                self._logger.info(f"Ledger does not allow refund of claim {claim_id} yet")
                report.deferred.append(claim_id)
                return
            except LedgerSubmissionError as e:
                self._logger.warning(f"Refund of claim {claim_id} not confirmed, retrying next sweep: {e}")
                report.errors[claim_id] = str(e)
                return
            except LedgerError as e:
                self._logger.error(f"Refund of claim {claim_id} impossible, marking expired: {e}")
                await self._registry.mark_expired(claim_id)
                report.expired.append(claim_id)
                return

            claim = await self._registry.mark_refunded(
                claim_id, confirmation.tx_hash if confirmation else None
            )
            report.refunded.append(claim_id)
            await self._send_status(claim, "refund", "success")

    async def reconcile_pending(self, claim_id: str, now: datetime | None = None) -> EscrowClaim:
        """
        Settle a PENDING claim by asking the ledger.

        A hold found on the ledger activates the claim. With no hold and the
        claim older than pending_grace_seconds, the claim fails.
        """
        claim = await self._registry.get(claim_id)
        if claim.status != ClaimStatus.PENDING:
            return claim

        receipt = await self._find_hold(claim)
        if receipt is not None:
            self._logger.info(f"Claim {claim_id}: hold found on the ledger, activating")
            return await self._registry.mark_active(claim_id, receipt.escrow_reference, receipt.tx_hash)

        now = now or self._clock()
        if now - claim.created_at >= timedelta(seconds=self._config.pending_grace_seconds):
            return await self._registry.mark_failed(claim_id, "No escrow hold found on the ledger")
        return claim

    # ------------------------------------------------------------------
    # Supplementary operations
    # ------------------------------------------------------------------

    async def get_claim(self, claim_id: str) -> EscrowClaim:
        return await self._registry.get(claim_id)

    async def refund_claim(self, claim_id: str, sender_account: str) -> EscrowClaim:
        """
        Sender-initiated reclaim of an expired, unclaimed escrow.

        Raises:
            ClaimNotFoundError: Unknown claim
            ValidationError: Caller is not the sender
            InvalidStateError: Claim is not active or expired
            RefundNotAllowedError: Claim has not expired yet
        """
        sender = self._require_account(sender_account, "sender_account")
        claim = await self._registry.get(claim_id)
        if claim.sender_account != sender:
            raise ValidationError("Only the sender can reclaim this payment")

        async with self._hold_claim(claim_id) as token:
            if token is None:
                raise InvalidStateError(claim_id, "busy", "unlocked")
            claim = await self._registry.get(claim_id)
            if claim.status not in (ClaimStatus.ACTIVE, ClaimStatus.EXPIRED):
                raise InvalidStateError(claim_id, claim.status.value, "active or expired")
            if not claim.is_past_expiry(self._clock()):
                raise RefundNotAllowedError(
                    "Claim has not expired yet",
                    gateway=self._ledger.name,
                    details={"expires_at": claim.expires_at.isoformat()},
                )

            try:
                confirmation = await self._settle(
                    self._ledger.refund, claim.escrow_reference, sender  # type: ignore[arg-type]
                )
            except AlreadyReleasedError:
                await self._registry.mark_expired(claim_id)
                raise

            claim = await self._registry.mark_refunded(
                claim_id, confirmation.tx_hash if confirmation else None
            )
            self._logger.info(f"Claim {claim_id} reclaimed by sender")
            return claim

    async def resend_notification(
        self,
        claim_id: str,
        pin: str,
        notify_address: str | None = None,
    ) -> DeliveryReceipt:
        """
        Send the claim SMS again. The caller proves knowledge of the PIN,
        since only its hash is stored; a wrong PIN counts towards the lockout.

        Raises:
            ValidationError: Malformed or incorrect PIN, or bad address
            InvalidStateError: Claim is not active, or busy
            DeliveryError: Provider refused the message
        """
        if not is_valid_pin_format(pin):
            raise ValidationError("PIN must be exactly four digits")

        async with self._hold_claim(claim_id) as token:
            if token is None:
                raise InvalidStateError(claim_id, "busy", "unlocked")
            claim = await self._registry.get(claim_id)
            if claim.status != ClaimStatus.ACTIVE:
                raise InvalidStateError(claim_id, claim.status.value, ClaimStatus.ACTIVE.value)

            outcome = await self._secrets.verify_pin(claim, pin)
        if outcome.result == VerifyResult.LOCKED:
            raise ValidationError("Claim is locked after too many incorrect PIN attempts")
        if outcome.result == VerifyResult.INVALID:
            raise ValidationError(
                "Incorrect PIN",
                details={"remaining_attempts": outcome.remaining_attempts},
            )

        if notify_address:
            address = self._notifier.normalize_address(notify_address)
        elif claim.notify_address:
            address = claim.notify_address
        else:
            raise ValidationError("No notification address for this claim")

        message = claim_message(
            claim.amount,
            claim.asset_code,
            pin,
            claim_link(self._config.claim_base_url, claim_id),
            self._config.app_name,
        )
        receipt = await self._send(address, message)
        self._logger.info(f"Claim {claim_id} notification resent to {address}")
        return receipt

    async def reset_attempts(self, claim_id: str) -> EscrowClaim:
        """Administrative unlock after a lockout."""
        return await self._secrets.reset_attempts(claim_id)

    async def health_check(self) -> dict[str, bool]:
        storage_ok = await self._registry.storage.health_check()
        try:
            ledger_ok = await asyncio.wait_for(
                self._ledger.health_check(), timeout=self._config.request_timeout
            )
        except (asyncio.TimeoutError, PinClaimError) as e:
            self._logger.warning(f"Ledger health check failed: {e}")
            ledger_ok = False
        return {"storage": storage_ok, "ledger": ledger_ok}
