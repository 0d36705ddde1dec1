"""
Type definitions for PinClaim.

This module contains the enums, data classes and helpers shared by the
registry, the secret store, the gateways and the claim service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeAlias

# Type alias for flexible amount input
AmountType: TypeAlias = Decimal | int | str


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_decimal(value: AmountType) -> Decimal:
    """Convert amount input to Decimal. Floats are refused to avoid binary rounding."""
    if isinstance(value, float):
        raise TypeError("Amounts must be given as Decimal, int or str, not float")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def format_amount(amount: Decimal, places: int = 7) -> str:
    """
    Render a fixed-point ledger amount string.

    >>> format_amount(Decimal("50"), 7)
    '50.0000000'
    """
    quantum = Decimal(1).scaleb(-places)
    return str(amount.quantize(quantum, rounding=ROUND_DOWN))


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ClaimStatus(str, Enum):
    """Lifecycle of an escrow claim."""

    PENDING = "pending"  # Escrow submitted, not yet confirmed
    ACTIVE = "active"  # Escrow confirmed, awaiting redemption
    RELEASING = "releasing"  # Release submitted for one claimant, not yet confirmed
    CLAIMED = "claimed"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self in (ClaimStatus.CLAIMED, ClaimStatus.REFUNDED, ClaimStatus.FAILED)


class VerifyResult(str, Enum):
    """Outcome of a PIN verification attempt."""

    VALID = "valid"
    INVALID = "invalid"
    LOCKED = "locked"


class RedeemErrorKind(str, Enum):
    """Terminal, user-distinguishable reasons a redemption did not pay out."""

    WRONG_PIN = "WrongPin"
    LOCKED = "Locked"
    EXPIRED = "Expired"
    ALREADY_CLAIMED = "AlreadyClaimed"
    NOT_FOUND = "NotFound"
    NOT_ACTIVE = "NotActive"
    IN_PROGRESS = "InProgress"


REDEEM_ERROR_MESSAGES: dict[RedeemErrorKind, str] = {
    RedeemErrorKind.WRONG_PIN: "The PIN you entered is incorrect. Please check the message and try again.",
    RedeemErrorKind.LOCKED: (
        "Too many incorrect PIN attempts. This payment is locked; ask the sender to contact support."
    ),
    RedeemErrorKind.EXPIRED: (
        "This payment has expired and can no longer be claimed. The funds go back to the sender."
    ),
    RedeemErrorKind.ALREADY_CLAIMED: "This payment has already been claimed.",
    RedeemErrorKind.NOT_FOUND: "We could not find this payment. Check the link you received.",
    RedeemErrorKind.NOT_ACTIVE: (
        "This payment is not available for claiming yet. Please try again in a few minutes."
    ),
    RedeemErrorKind.IN_PROGRESS: (
        "Another claim for this payment is being processed. Please try again shortly."
    ),
}

REFUNDED_MESSAGE = "This payment expired and the funds were returned to the sender."


@dataclass
class EscrowClaim:
    """
    One send-to-phone transfer held in escrow until redeemed or expired.

    Attributes:
        claim_id: Opaque identifier embedded in the claim link
        sender_account: Ledger account that funded the escrow
        amount: Escrowed amount
        asset_code: Asset of the escrow
        pin_hash: Salted hash of the redemption PIN (never the PIN itself)
        expires_at: Deadline after which the claim can only be refunded
        status: Current lifecycle state
        escrow_reference: Ledger identifier of the conditional hold
        attempt_count: Wrong PIN submissions so far
        locked: Set once attempt_count reaches the configured threshold
    """

    claim_id: str
    sender_account: str
    amount: Decimal
    asset_code: str
    pin_hash: str
    created_at: datetime
    expires_at: datetime
    status: ClaimStatus = ClaimStatus.PENDING
    notify_address: str | None = None
    escrow_reference: str | None = None
    tx_hash: str | None = None
    attempt_count: int = 0
    locked: bool = False
    claimant_account: str | None = None
    claimed_at: datetime | None = None
    release_tx_hash: str | None = None
    refund_tx_hash: str | None = None
    activated_at: datetime | None = None
    expired_at: datetime | None = None
    refunded_at: datetime | None = None
    failure_reason: str | None = None
    updated_at: datetime | None = None

    def is_past_expiry(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "claim_id": self.claim_id,
            "sender_account": self.sender_account,
            "amount": str(self.amount),
            "asset_code": self.asset_code,
            "pin_hash": self.pin_hash,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "status": self.status.value,
            "notify_address": self.notify_address,
            "escrow_reference": self.escrow_reference,
            "tx_hash": self.tx_hash,
            "attempt_count": self.attempt_count,
            "locked": self.locked,
            "claimant_account": self.claimant_account,
            "claimed_at": _iso(self.claimed_at),
            "release_tx_hash": self.release_tx_hash,
            "refund_tx_hash": self.refund_tx_hash,
            "activated_at": _iso(self.activated_at),
            "expired_at": _iso(self.expired_at),
            "refunded_at": _iso(self.refunded_at),
            "failure_reason": self.failure_reason,
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EscrowClaim:
        """Create EscrowClaim from a stored dictionary."""
        return cls(
            claim_id=data["claim_id"],
            sender_account=data["sender_account"],
            amount=Decimal(str(data["amount"])),
            asset_code=data["asset_code"],
            pin_hash=data["pin_hash"],
            created_at=_parse_dt(data["created_at"]),  # type: ignore[arg-type]
            expires_at=_parse_dt(data["expires_at"]),  # type: ignore[arg-type]
            status=ClaimStatus(data.get("status", ClaimStatus.PENDING.value)),
            notify_address=data.get("notify_address"),
            escrow_reference=data.get("escrow_reference"),
            tx_hash=data.get("tx_hash"),
            attempt_count=int(data.get("attempt_count", 0)),
            locked=bool(data.get("locked", False)),
            claimant_account=data.get("claimant_account"),
            claimed_at=_parse_dt(data.get("claimed_at")),
            release_tx_hash=data.get("release_tx_hash"),
            refund_tx_hash=data.get("refund_tx_hash"),
            activated_at=_parse_dt(data.get("activated_at")),
            expired_at=_parse_dt(data.get("expired_at")),
            refunded_at=_parse_dt(data.get("refunded_at")),
            failure_reason=data.get("failure_reason"),
            updated_at=_parse_dt(data.get("updated_at")),
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Caller-facing view. Never includes the PIN hash or verification state details."""
        return {
            "claimId": self.claim_id,
            "status": self.status.value,
            "amount": str(self.amount),
            "assetCode": self.asset_code,
            "senderAccount": self.sender_account,
            "escrowReference": self.escrow_reference,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
            "claimedAt": _iso(self.claimed_at),
            "claimantAccount": self.claimant_account,
            "locked": self.locked,
        }


@dataclass
class VerifyOutcome:
    """Result of SecretStore.verify_pin."""

    result: VerifyResult
    attempt_count: int = 0
    remaining_attempts: int | None = None

    @property
    def is_valid(self) -> bool:
        return self.result == VerifyResult.VALID


@dataclass(frozen=True)
class HoldReceipt:
    """Ledger confirmation of a conditional hold."""

    escrow_reference: str
    tx_hash: str | None = None


@dataclass(frozen=True)
class TxConfirmation:
    """Ledger confirmation of a release or refund."""

    tx_hash: str
    escrow_reference: str
    account: str
    amount: Decimal | None = None
    asset_code: str | None = None


@dataclass(frozen=True)
class DeliveryReceipt:
    """Provider acknowledgement of a notification."""

    message_id: str
    address: str
    provider: str
    status: str | None = None


@dataclass
class ClaimHandle:
    """
    Result of ClaimService.create_claim.

    `pin` is the only copy of the plaintext PIN; it is handed to the
    immediate caller once and never stored.
    """

    claim_id: str
    escrow_reference: str
    expires_at: datetime
    pin: str
    amount: Decimal
    asset_code: str
    tx_hash: str | None = None
    notification: DeliveryReceipt | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def notified(self) -> bool:
        return self.notification is not None

    def __repr__(self) -> str:
        return (
            f"ClaimHandle(claim_id={self.claim_id!r}, escrow_reference={self.escrow_reference!r}, "
            f"expires_at={self.expires_at!r}, pin='****', warnings={self.warnings!r})"
        )


@dataclass
class RedeemResult:
    """Outcome of ClaimService.redeem_claim."""

    success: bool
    claim_id: str
    error_kind: RedeemErrorKind | None = None
    message: str | None = None
    amount: Decimal | None = None
    asset_code: str | None = None
    claimed_at: datetime | None = None
    claimant_account: str | None = None
    tx_hash: str | None = None
    remaining_attempts: int | None = None

    @classmethod
    def failure(
        cls,
        claim_id: str,
        kind: RedeemErrorKind,
        message: str | None = None,
        remaining_attempts: int | None = None,
    ) -> RedeemResult:
        return cls(
            success=False,
            claim_id=claim_id,
            error_kind=kind,
            message=message or REDEEM_ERROR_MESSAGES[kind],
            remaining_attempts=remaining_attempts,
        )


@dataclass
class SweepReport:
    """Summary of one expiry sweep."""

    examined: int = 0
    refunded: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    reconciled: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
