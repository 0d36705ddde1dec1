"""
PinClaim - PIN-protected claimable payments.

Send funds to a phone number: the amount is locked in a ledger escrow, the
recipient receives a four-digit PIN by SMS, and whoever presents the PIN
before the deadline receives the funds. Unclaimed escrows are refunded.

Usage:
    >>> from pinclaim import ClaimService, Config
    >>> from pinclaim.ledger import InMemoryLedgerGateway
    >>> from pinclaim.notify import InMemoryNotificationGateway
    >>>
    >>> service = ClaimService.from_config(
    ...     Config.from_env(), InMemoryLedgerGateway(), InMemoryNotificationGateway()
    ... )
    >>> handle = await service.create_claim("GA...", "50", "NATIVE", "+15551234567")
    >>> result = await service.redeem_claim(handle.claim_id, handle.pin, "GB...")
"""

__version__ = "0.1.0"

from pinclaim.core.config import Config
from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    ClaimNotFoundError,
    ConfigurationError,
    DeliveryError,
    ExpiredError,
    InvalidStateError,
    LedgerError,
    LedgerRejectedError,
    LedgerSubmissionError,
    PinClaimError,
    RefundNotAllowedError,
    ValidationError,
)
from pinclaim.core.types import (
    ClaimHandle,
    ClaimStatus,
    EscrowClaim,
    RedeemErrorKind,
    RedeemResult,
    SweepReport,
    VerifyResult,
)
from pinclaim.service import ClaimService
from pinclaim.sweeper import ExpirySweeper

__all__ = [
    "__version__",
    "ClaimService",
    "ExpirySweeper",
    "Config",
    # Types
    "ClaimHandle",
    "ClaimStatus",
    "EscrowClaim",
    "RedeemErrorKind",
    "RedeemResult",
    "SweepReport",
    "VerifyResult",
    # Exceptions
    "PinClaimError",
    "ConfigurationError",
    "ValidationError",
    "ClaimNotFoundError",
    "InvalidStateError",
    "LedgerError",
    "LedgerSubmissionError",
    "LedgerRejectedError",
    "RefundNotAllowedError",
    "AlreadyReleasedError",
    "ExpiredError",
    "DeliveryError",
]
