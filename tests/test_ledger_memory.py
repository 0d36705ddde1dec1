"""Tests for the in-memory ledger gateway's escrow predicates."""

from datetime import timedelta
from decimal import Decimal

import pytest

from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    ExpiredError,
    LedgerRejectedError,
    RefundNotAllowedError,
)

SENDER = "GSENDERACCOUNT"


async def _hold(ledger, clock, amount="100", ttl=3600, reference="claim-1"):
    return await ledger.create_conditional_hold(
        SENDER, Decimal(amount), "NATIVE", clock.now + timedelta(seconds=ttl), reference
    )


@pytest.mark.asyncio
async def test_hold_debits_source(ledger, clock):
    receipt = await _hold(ledger, clock)

    assert receipt.escrow_reference.startswith("00000000")
    assert receipt.tx_hash
    assert ledger.balance(SENDER) == Decimal("900")
    assert ledger.holds() == [receipt.escrow_reference]


@pytest.mark.asyncio
async def test_hold_rejections(ledger, clock):
    with pytest.raises(LedgerRejectedError, match="Insufficient funds"):
        await _hold(ledger, clock, amount="5000")
    with pytest.raises(LedgerRejectedError, match="Unsupported asset"):
        await ledger.create_conditional_hold(
            SENDER, Decimal("1"), "USDC", clock.now + timedelta(hours=1), "r"
        )
    with pytest.raises(LedgerRejectedError, match="does not exist"):
        await ledger.create_conditional_hold(
            "GUNKNOWN", Decimal("1"), "NATIVE", clock.now + timedelta(hours=1), "r"
        )
    with pytest.raises(LedgerRejectedError, match="already be expired"):
        await _hold(ledger, clock, ttl=0)

    assert ledger.balance(SENDER) == Decimal("1000")


@pytest.mark.asyncio
async def test_find_hold_by_reference(ledger, clock):
    receipt = await _hold(ledger, clock, reference="claim-xyz")

    found = await ledger.find_hold(SENDER, "claim-xyz")

    assert found == receipt
    assert await ledger.find_hold(SENDER, "other") is None
    assert await ledger.find_hold("GOTHER", "claim-xyz") is None


@pytest.mark.asyncio
async def test_release_before_expiry(ledger, clock):
    receipt = await _hold(ledger, clock)

    confirmation = await ledger.release(receipt.escrow_reference, "GCLAIMANT")

    assert confirmation.amount == Decimal("100")
    assert ledger.balance("GCLAIMANT") == Decimal("100")
    assert await ledger.find_hold(SENDER, "claim-1") is None


@pytest.mark.asyncio
async def test_release_spends_once(ledger, clock):
    receipt = await _hold(ledger, clock)
    await ledger.release(receipt.escrow_reference, "GCLAIMANT")

    with pytest.raises(AlreadyReleasedError):
        await ledger.release(receipt.escrow_reference, "GOTHER")
    assert ledger.balance("GOTHER") == Decimal("0")


@pytest.mark.asyncio
async def test_release_after_expiry_refused(ledger, clock):
    receipt = await _hold(ledger, clock, ttl=60)
    clock.advance(60)

    with pytest.raises(ExpiredError):
        await ledger.release(receipt.escrow_reference, "GCLAIMANT")


@pytest.mark.asyncio
async def test_refund_only_after_expiry(ledger, clock):
    receipt = await _hold(ledger, clock, ttl=60)

    with pytest.raises(RefundNotAllowedError):
        await ledger.refund(receipt.escrow_reference, SENDER)

    clock.advance(61)
    confirmation = await ledger.refund(receipt.escrow_reference, SENDER)

    assert confirmation.account == SENDER
    assert ledger.balance(SENDER) == Decimal("1000")


@pytest.mark.asyncio
async def test_refund_only_to_source(ledger, clock):
    receipt = await _hold(ledger, clock, ttl=60)
    clock.advance(61)

    with pytest.raises(LedgerRejectedError):
        await ledger.refund(receipt.escrow_reference, "GTHIEF")


@pytest.mark.asyncio
async def test_unknown_reference(ledger):
    with pytest.raises(AlreadyReleasedError):
        await ledger.release("00000000deadbeef", "GCLAIMANT")
