"""Scenario tests for ClaimService."""

import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    ClaimNotFoundError,
    DeliveryError,
    ExpiredError,
    InvalidStateError,
    LedgerRejectedError,
    LedgerSubmissionError,
    RefundNotAllowedError,
    ValidationError,
)
from pinclaim.core.logging import JsonFormatter
from pinclaim.core.types import REFUNDED_MESSAGE, ClaimStatus, RedeemErrorKind
from pinclaim.ledger.memory import InMemoryLedgerGateway
from pinclaim.pin.store import SecretStore, is_valid_pin_format
from pinclaim.service import ClaimService
from pinclaim.storage.memory import InMemoryStorage

SENDER = "GSENDERACCOUNT"
CLAIMANT = "GCLAIMANTACCOUNT"
PHONE = "+15551234567"


async def _create(service, amount="50", ttl_seconds=3600, **kwargs):
    return await service.create_claim(
        sender_account=SENDER,
        amount=amount,
        asset_code="NATIVE",
        notify_address=kwargs.pop("notify_address", "(555) 123-4567"),
        ttl_seconds=ttl_seconds,
        **kwargs,
    )


def _wrong(pin: str) -> str:
    return f"{(int(pin) + 1) % 10_000:04d}"


class LostConfirmationLedger(InMemoryLedgerGateway):
    """Applies the first create/release, then reports a timeout for it."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.create_calls = 0
        self.release_calls = 0

    async def create_conditional_hold(self, *args, **kwargs):
        self.create_calls += 1
        receipt = await super().create_conditional_hold(*args, **kwargs)
        if self.create_calls == 1:
            raise LedgerSubmissionError("timed out waiting for confirmation")
        return receipt

    async def release(self, escrow_reference, to_account):
        self.release_calls += 1
        confirmation = await super().release(escrow_reference, to_account)
        if self.release_calls == 1:
            raise LedgerSubmissionError("timed out waiting for confirmation")
        return confirmation


class TestCreateClaim:
    @pytest.mark.asyncio
    async def test_happy_path(self, service, ledger, notifier, registry):
        handle = await _create(service, sender_name="Alex")

        assert is_valid_pin_format(handle.pin)
        assert handle.notified
        assert handle.warnings == []
        assert ledger.balance(SENDER) == Decimal("950")

        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.ACTIVE
        assert claim.escrow_reference == handle.escrow_reference
        assert claim.notify_address == PHONE

        [message] = notifier.messages_for(PHONE)
        assert message.startswith("Alex sent you 50.00 NATIVE via PinClaim!")
        assert f"PIN: {handle.pin}" in message
        assert f"https://pay.example.com/claim/{handle.claim_id}" in message

    @pytest.mark.asyncio
    async def test_default_ttl(self, service, registry, clock, config):
        handle = await _create(service, ttl_seconds=None)

        claim = await registry.get(handle.claim_id)
        assert (claim.expires_at - clock.now).total_seconds() == config.default_ttl_seconds

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount": "0"},
            {"amount": "-5"},
            {"amount": "0.12345678"},
            {"amount": "abc"},
            {"amount": 1.5},
            {"ttl_seconds": 0},
            {"ttl_seconds": 31 * 86_400},
            {"notify_address": "not a phone"},
        ],
    )
    async def test_validation_has_no_side_effects(
        self, service, storage, ledger, notifier, overrides
    ):
        with pytest.raises(ValidationError):
            await _create(service, **overrides)

        assert await storage.count("escrow_claims") == 0
        assert ledger.balance(SENDER) == Decimal("1000")
        assert notifier.outbox == []

    @pytest.mark.asyncio
    async def test_unsupported_asset(self, service):
        with pytest.raises(ValidationError, match="Unsupported asset"):
            await service.create_claim(SENDER, "10", "USDC", PHONE)

    @pytest.mark.asyncio
    async def test_ledger_rejection_fails_claim(self, service, storage, notifier, registry):
        with pytest.raises(LedgerRejectedError):
            await _create(service, amount="5000")

        [record] = await storage.query("escrow_claims")
        claim = await registry.get(record["claim_id"])
        assert claim.status == ClaimStatus.FAILED
        assert "Insufficient funds" in claim.failure_reason
        assert notifier.outbox == []

    @pytest.mark.asyncio
    async def test_lost_confirmation_does_not_duplicate_hold(
        self, registry, secret_store, notifier, config, clock
    ):
        ledger = LostConfirmationLedger(balances={SENDER: Decimal("1000")}, clock=clock)
        service = ClaimService(registry, secret_store, ledger, notifier, config=config, clock=clock)

        handle = await _create(service)

        assert ledger.create_calls == 1
        assert ledger.holds() == [handle.escrow_reference]
        assert ledger.balance(SENDER) == Decimal("950")
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_submission_errors_leave_claim_pending(self, service, ledger, storage, registry):
        ledger.create_conditional_hold = AsyncMock(side_effect=LedgerSubmissionError("503"))
        ledger.find_hold = AsyncMock(return_value=None)

        with pytest.raises(LedgerSubmissionError):
            await _create(service)

        assert ledger.create_conditional_hold.await_count == 3
        assert ledger.find_hold.await_count == 2
        [record] = await storage.query("escrow_claims")
        assert (await registry.get(record["claim_id"])).status == ClaimStatus.PENDING

    @pytest.mark.asyncio
    async def test_slow_ledger_times_out(self, registry, secret_store, notifier, config, clock):
        class SlowLedger(InMemoryLedgerGateway):
            async def create_conditional_hold(self, *args, **kwargs):
                await asyncio.sleep(1)
                return await super().create_conditional_hold(*args, **kwargs)

        ledger = SlowLedger(balances={SENDER: Decimal("1000")}, clock=clock)
        fast = config.with_updates(request_timeout=0.05, ledger_max_attempts=1)
        service = ClaimService(registry, secret_store, ledger, notifier, config=fast, clock=clock)

        with pytest.raises(LedgerSubmissionError, match="timed out"):
            await _create(service)

    @pytest.mark.asyncio
    async def test_delivery_failure_is_a_warning(self, service, notifier, registry):
        notifier.send = AsyncMock(side_effect=DeliveryError("unreachable", provider_code=21608))

        handle = await _create(service)

        assert not handle.notified
        assert handle.warnings and "unreachable" in handle.warnings[0]
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_plaintext_pin_never_persisted_or_logged(self, service, storage, caplog):
        caplog.set_level(logging.DEBUG, logger="pinclaim")

        handle = await _create(service)

        record = await storage.get("escrow_claims", handle.claim_id)
        assert "pin" not in record
        assert handle.pin not in [v for v in record.values() if isinstance(v, str)]
        assert record["pin_hash"].startswith("pbkdf2_sha256$")
        assert SecretStore.check_pin(record["pin_hash"], handle.pin)
        assert f"PIN: {handle.pin}" not in caplog.text
        assert "pin='****'" in repr(handle)


class TestRedeemClaim:
    @pytest.mark.asyncio
    async def test_happy_path(self, service, ledger, registry, notifier):
        handle = await _create(service)

        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.success
        assert result.amount == Decimal("50")
        assert result.asset_code == "NATIVE"
        assert result.claimed_at is not None
        assert result.tx_hash
        assert ledger.balance(CLAIMANT) == Decimal("50")

        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.CLAIMED
        assert claim.claimant_account == CLAIMANT
        assert len(notifier.messages_for(PHONE)) == 2

        again = await service.redeem_claim(handle.claim_id, handle.pin, "GSOMEONEELSE")
        assert again.error_kind == RedeemErrorKind.ALREADY_CLAIMED
        assert ledger.balance("GSOMEONEELSE") == Decimal("0")

    @pytest.mark.asyncio
    async def test_wrong_pin_then_correct(self, service, ledger):
        handle = await _create(service)

        wrong = await service.redeem_claim(handle.claim_id, _wrong(handle.pin), CLAIMANT)
        right = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert wrong.error_kind == RedeemErrorKind.WRONG_PIN
        assert wrong.remaining_attempts == 4
        assert right.success
        assert ledger.balance(CLAIMANT) == Decimal("50")

    @pytest.mark.asyncio
    async def test_lockout(self, service, ledger, registry):
        handle = await _create(service)

        results = [
            await service.redeem_claim(handle.claim_id, _wrong(handle.pin), CLAIMANT)
            for _ in range(5)
        ]
        sixth = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert all(r.error_kind == RedeemErrorKind.WRONG_PIN for r in results)
        assert [r.remaining_attempts for r in results] == [4, 3, 2, 1, 0]
        assert sixth.error_kind == RedeemErrorKind.LOCKED
        assert ledger.holds() == [handle.escrow_reference]
        assert (await registry.get(handle.claim_id)).locked

    @pytest.mark.asyncio
    async def test_reset_attempts_after_lockout(self, service):
        handle = await _create(service)
        for _ in range(5):
            await service.redeem_claim(handle.claim_id, _wrong(handle.pin), CLAIMANT)

        reset = await service.reset_attempts(handle.claim_id)
        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert reset.attempt_count == 0
        assert result.success

    @pytest.mark.asyncio
    async def test_not_found(self, service):
        result = await service.redeem_claim("missing", "1234", CLAIMANT)

        assert result.error_kind == RedeemErrorKind.NOT_FOUND
        assert not result.success

    @pytest.mark.asyncio
    async def test_malformed_input_raises(self, service):
        handle = await _create(service)

        with pytest.raises(ValidationError):
            await service.redeem_claim(handle.claim_id, "12", CLAIMANT)
        with pytest.raises(ValidationError):
            await service.redeem_claim(handle.claim_id, handle.pin, "  ")

    @pytest.mark.asyncio
    async def test_pending_claim_is_not_active(self, service, registry, secret_store):
        claim = await registry.create(SENDER, Decimal("5"), "NATIVE", secret_store.hash_pin("1111"), 3600)

        result = await service.redeem_claim(claim.claim_id, "1111", CLAIMANT)

        assert result.error_kind == RedeemErrorKind.NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_expired_claim(self, service, clock, registry):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(60)

        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.error_kind == RedeemErrorKind.EXPIRED
        # Expired claims do not consume attempts
        assert (await registry.get(handle.claim_id)).attempt_count == 0

    @pytest.mark.asyncio
    async def test_ledger_expired_on_release(self, service, ledger, registry):
        handle = await _create(service)
        ledger.release = AsyncMock(side_effect=ExpiredError("hold expired"))

        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.error_kind == RedeemErrorKind.EXPIRED
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_ledger_already_released(self, service, ledger):
        handle = await _create(service)
        ledger.release = AsyncMock(side_effect=AlreadyReleasedError("gone"))

        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.error_kind == RedeemErrorKind.ALREADY_CLAIMED

    @pytest.mark.asyncio
    async def test_unconfirmed_release_waits_for_sweep(self, service, ledger, registry, clock, config):
        handle = await _create(service)
        original_release = ledger.release
        ledger.release = AsyncMock(side_effect=LedgerSubmissionError("503"))

        with pytest.raises(LedgerSubmissionError):
            await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert ledger.release.await_count == 3
        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.RELEASING
        assert claim.claimant_account == CLAIMANT

        # Nobody can redeem while the outcome is unknown
        retry = await service.redeem_claim(handle.claim_id, handle.pin, "GOTHERCLAIMANT")
        assert retry.error_kind == RedeemErrorKind.IN_PROGRESS

        # The hold is still open, so the sweep reopens the claim
        clock.advance(config.lock_ttl + 1)
        report = await service.expire_sweep()
        assert report.reconciled == [handle.claim_id]
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.ACTIVE

        ledger.release = original_release
        assert (await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)).success

    @pytest.mark.asyncio
    async def test_rejected_release_reopens_claim(self, service, ledger, registry):
        handle = await _create(service)
        ledger.release = AsyncMock(side_effect=LedgerRejectedError("op_no_trust"))

        with pytest.raises(LedgerRejectedError):
            await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.ACTIVE
        assert claim.claimant_account is None

    @pytest.mark.asyncio
    async def test_lost_release_confirmation_counts_as_claimed(
        self, registry, secret_store, notifier, config, clock
    ):
        ledger = LostConfirmationLedger(balances={SENDER: Decimal("1000")}, clock=clock)
        ledger.create_calls = 1  # only the release loses its confirmation
        service = ClaimService(registry, secret_store, ledger, notifier, config=config, clock=clock)
        handle = await _create(service)

        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.success
        assert ledger.release_calls == 2
        assert ledger.balance(CLAIMANT) == Decimal("50")
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.CLAIMED

    @pytest.mark.asyncio
    async def test_in_progress_when_lock_unavailable(self, service, storage, config):
        handle = await _create(service)
        await storage.acquire_lock(f"lock:claim:{handle.claim_id}", ttl=60)
        service._config = config.with_updates(lock_retry_count=1)

        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.error_kind == RedeemErrorKind.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_error_kinds_have_distinct_messages(self, service, clock):
        handle = await _create(service, ttl_seconds=60)
        wrong = await service.redeem_claim(handle.claim_id, _wrong(handle.pin), CLAIMANT)
        missing = await service.redeem_claim("missing", "1234", CLAIMANT)
        clock.advance(60)
        expired = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)
        await service.expire_sweep()
        refunded = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        messages = {wrong.message, missing.message, expired.message, refunded.message}
        assert len(messages) == 4
        assert refunded.error_kind == RedeemErrorKind.EXPIRED
        assert refunded.message == REFUNDED_MESSAGE


class TestExpireSweep:
    @pytest.mark.asyncio
    async def test_refunds_expired_claims(self, service, ledger, clock, registry, notifier):
        handle = await _create(service, ttl_seconds=60)
        live = await _create(service, ttl_seconds=3600)
        clock.advance(61)

        report = await service.expire_sweep()

        assert report.refunded == [handle.claim_id]
        assert ledger.balance(SENDER) == Decimal("950")
        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.REFUNDED
        assert claim.refund_tx_hash
        assert (await registry.get(live.claim_id)).status == ClaimStatus.ACTIVE
        assert any("returned to the sender" in m for m in notifier.messages_for(PHONE))

    @pytest.mark.asyncio
    async def test_stale_release_with_open_hold_reopens(self, service, clock, registry, config):
        handle = await _create(service)
        await registry.mark_releasing(handle.claim_id, CLAIMANT)
        clock.advance(config.lock_ttl + 1)

        report = await service.expire_sweep()

        assert report.reconciled == [handle.claim_id]
        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.ACTIVE
        assert claim.claimant_account is None

    @pytest.mark.asyncio
    async def test_stale_release_with_spent_hold_is_claimed(
        self, service, ledger, clock, registry, config
    ):
        handle = await _create(service)
        await registry.mark_releasing(handle.claim_id, CLAIMANT)
        await ledger.release(handle.escrow_reference, CLAIMANT)
        clock.advance(config.lock_ttl + 1)

        report = await service.expire_sweep()

        assert report.reconciled == [handle.claim_id]
        claim = await registry.get(handle.claim_id)
        assert claim.status == ClaimStatus.CLAIMED
        assert claim.claimant_account == CLAIMANT
        assert ledger.balance(CLAIMANT) == Decimal("50")

    @pytest.mark.asyncio
    async def test_recent_release_left_alone(self, service, registry):
        handle = await _create(service)
        await registry.mark_releasing(handle.claim_id, CLAIMANT)

        report = await service.expire_sweep()

        assert report.examined == 0
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.RELEASING

    @pytest.mark.asyncio
    async def test_stale_release_under_lock_is_deferred(
        self, service, storage, clock, registry, config
    ):
        handle = await _create(service)
        await registry.mark_releasing(handle.claim_id, CLAIMANT)
        await storage.acquire_lock(f"lock:claim:{handle.claim_id}", ttl=600)
        clock.advance(config.lock_ttl + 1)

        report = await service.expire_sweep()

        assert report.deferred == [handle.claim_id]
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.RELEASING

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, service, clock):
        await _create(service, ttl_seconds=60)
        clock.advance(61)

        first = await service.expire_sweep()
        second = await service.expire_sweep()

        assert len(first.refunded) == 1
        assert second.examined == 0

    @pytest.mark.asyncio
    async def test_refund_not_allowed_is_deferred(self, service, ledger, clock, registry):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(61)
        ledger.refund = AsyncMock(side_effect=RefundNotAllowedError("ledger clock behind"))

        report = await service.expire_sweep()

        assert report.deferred == [handle.claim_id]
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_submission_error_retried_next_sweep(self, service, ledger, clock, registry):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(61)
        original_refund = ledger.refund
        ledger.refund = AsyncMock(side_effect=LedgerSubmissionError("timeout"))

        report = await service.expire_sweep()

        assert handle.claim_id in report.errors
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.ACTIVE

        ledger.refund = original_refund
        report = await service.expire_sweep()
        assert report.refunded == [handle.claim_id]

    @pytest.mark.asyncio
    async def test_already_spent_hold_marks_expired(self, service, ledger, clock, registry):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(61)
        ledger.refund = AsyncMock(side_effect=AlreadyReleasedError("gone"))

        report = await service.expire_sweep()

        assert report.expired == [handle.claim_id]
        assert (await registry.get(handle.claim_id)).status == ClaimStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, service, ledger, clock, registry):
        broken = await _create(service, ttl_seconds=60)
        healthy = await _create(service, ttl_seconds=60)
        clock.advance(61)
        original_refund = ledger.refund

        async def refund(escrow_reference, to_account):
            if escrow_reference == broken.escrow_reference:
                raise RuntimeError("unexpected")
            return await original_refund(escrow_reference, to_account)

        ledger.refund = refund

        report = await service.expire_sweep()

        assert broken.claim_id in report.errors
        assert report.refunded == [healthy.claim_id]
        assert (await registry.get(healthy.claim_id)).status == ClaimStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_locked_claim_is_deferred(self, service, storage, clock):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(61)
        await storage.acquire_lock(f"lock:claim:{handle.claim_id}", ttl=60)

        report = await service.expire_sweep()

        assert report.deferred == [handle.claim_id]

    @pytest.mark.asyncio
    async def test_stale_pending_reconciled(self, service, ledger, registry, clock, config):
        ledger.create_conditional_hold = AsyncMock(side_effect=LedgerSubmissionError("503"))
        ledger.find_hold = AsyncMock(return_value=None)
        with pytest.raises(LedgerSubmissionError):
            await _create(service)
        clock.advance(config.pending_grace_seconds + 1)

        report = await service.expire_sweep()

        assert len(report.reconciled) == 1
        claim = await registry.get(report.reconciled[0])
        assert claim.status == ClaimStatus.FAILED


class TestReconcilePending:
    @pytest.mark.asyncio
    async def test_hold_found_activates(self, service, registry, secret_store, ledger, clock):
        claim = await registry.create(SENDER, Decimal("5"), "NATIVE", secret_store.hash_pin("1111"), 3600)
        receipt = await ledger.create_conditional_hold(
            SENDER, Decimal("5"), "NATIVE", claim.expires_at, claim.claim_id
        )

        updated = await service.reconcile_pending(claim.claim_id)

        assert updated.status == ClaimStatus.ACTIVE
        assert updated.escrow_reference == receipt.escrow_reference

    @pytest.mark.asyncio
    async def test_young_pending_left_alone(self, service, registry, secret_store):
        claim = await registry.create(SENDER, Decimal("5"), "NATIVE", secret_store.hash_pin("1111"), 3600)

        updated = await service.reconcile_pending(claim.claim_id)

        assert updated.status == ClaimStatus.PENDING

    @pytest.mark.asyncio
    async def test_non_pending_untouched(self, service):
        handle = await _create(service)

        assert (await service.reconcile_pending(handle.claim_id)).status == ClaimStatus.ACTIVE


class TestRefundClaim:
    @pytest.mark.asyncio
    async def test_sender_reclaims_after_expiry(self, service, ledger, clock):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(61)

        claim = await service.refund_claim(handle.claim_id, SENDER)

        assert claim.status == ClaimStatus.REFUNDED
        assert ledger.balance(SENDER) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_before_expiry(self, service):
        handle = await _create(service)

        with pytest.raises(RefundNotAllowedError):
            await service.refund_claim(handle.claim_id, SENDER)

    @pytest.mark.asyncio
    async def test_only_sender(self, service, clock):
        handle = await _create(service, ttl_seconds=60)
        clock.advance(61)

        with pytest.raises(ValidationError):
            await service.refund_claim(handle.claim_id, "GSTRANGER")

    @pytest.mark.asyncio
    async def test_claimed_cannot_be_refunded(self, service, clock):
        handle = await _create(service, ttl_seconds=60)
        await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)
        clock.advance(61)

        with pytest.raises(InvalidStateError):
            await service.refund_claim(handle.claim_id, SENDER)


class TestResendNotification:
    @pytest.mark.asyncio
    async def test_resend(self, service, notifier):
        handle = await _create(service)

        receipt = await service.resend_notification(handle.claim_id, handle.pin)

        assert receipt.address == PHONE
        assert len(notifier.messages_for(PHONE)) == 2

    @pytest.mark.asyncio
    async def test_resend_to_new_address(self, service, notifier):
        handle = await _create(service)

        await service.resend_notification(handle.claim_id, handle.pin, "+44 20 7946 0958")

        [message] = notifier.messages_for("+442079460958")
        assert f"PIN: {handle.pin}" in message

    @pytest.mark.asyncio
    async def test_wrong_pin_counts(self, service, registry):
        handle = await _create(service)

        with pytest.raises(ValidationError, match="Incorrect PIN"):
            await service.resend_notification(handle.claim_id, _wrong(handle.pin))

        assert (await registry.get(handle.claim_id)).attempt_count == 1

    @pytest.mark.asyncio
    async def test_inactive_claim(self, service):
        handle = await _create(service)
        await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        with pytest.raises(InvalidStateError):
            await service.resend_notification(handle.claim_id, handle.pin)


class TestMisc:
    @pytest.mark.asyncio
    async def test_get_claim(self, service):
        handle = await _create(service)

        claim = await service.get_claim(handle.claim_id)
        public = claim.to_public_dict()

        assert public["claimId"] == handle.claim_id
        assert public["status"] == "active"
        assert "pinHash" not in public and "pin_hash" not in public
        with pytest.raises(ClaimNotFoundError):
            await service.get_claim("missing")

    @pytest.mark.asyncio
    async def test_health_check(self, service):
        assert await service.health_check() == {"storage": True, "ledger": True}

    @pytest.mark.asyncio
    async def test_from_config(self, config, clock, notifier):
        ledger = InMemoryLedgerGateway(balances={SENDER: Decimal("100")}, clock=clock)
        service = ClaimService.from_config(
            config, ledger, notifier, storage=InMemoryStorage(), clock=clock
        )

        handle = await _create(service, amount="10")
        result = await service.redeem_claim(handle.claim_id, handle.pin, CLAIMANT)

        assert result.success
        assert ledger.balance(CLAIMANT) == Decimal("10")

    @pytest.mark.asyncio
    async def test_from_config_sets_up_logging_and_locks(self, config, notifier):
        production = config.with_updates(env="production", log_level="WARNING", lock_ttl=90)
        ledger = InMemoryLedgerGateway(balances={SENDER: Decimal("100")})

        service = ClaimService.from_config(production, ledger, notifier, storage=InMemoryStorage())

        logger = logging.getLogger("pinclaim")
        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)
        assert service._locks.ttl == 90
        assert service._locks.retry_count == config.lock_retry_count
