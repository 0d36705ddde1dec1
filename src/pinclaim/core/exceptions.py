"""
Exception hierarchy for PinClaim.

All service-specific exceptions inherit from PinClaimError for easy catching.

Wrong PINs, locked claims, expired or already-claimed claims are NOT
exceptions: redemption reports them through RedeemResult. The classes here
cover invalid input, missing records, rejected state transitions and
infrastructure failures of the ledger and notification gateways.
"""

from __future__ import annotations

from typing import Any


class PinClaimError(Exception):
    """
    Base exception for all PinClaim errors.

    Example:
        >>> try:
        ...     await service.create_claim(...)
        ... except PinClaimError as e:
        ...     print(f"Claim error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PinClaimError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Gateway credentials are not provided
    - A storage backend name is unknown
    """


class ValidationError(PinClaimError):
    """
    Input validation error.

    Raised when:
    - Amount is not a positive fixed-point number
    - Notification address cannot be normalized
    - TTL is out of bounds
    - PIN is not four digits

    Raised before any side effect takes place.
    """


class ClaimNotFoundError(PinClaimError):
    """No escrow claim exists for the given claim ID."""

    def __init__(self, claim_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Claim not found: {claim_id}", details)
        self.claim_id = claim_id


class InvalidStateError(PinClaimError):
    """
    A registry transition was rejected because the claim is not in the
    required state (e.g. marking a claim as claimed twice).
    """

    def __init__(
        self,
        claim_id: str,
        current_status: str,
        expected: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Claim {claim_id} is {current_status}, expected {expected}",
            details,
        )
        self.claim_id = claim_id
        self.current_status = current_status
        self.expected = expected


class LedgerError(PinClaimError):
    """
    Base exception for ledger gateway failures.

    `retryable` tells the caller whether resubmitting can succeed.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        gateway: str = "ledger",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retryable = retryable
        self.gateway = gateway

    def __str__(self) -> str:
        kind = "retryable" if self.retryable else "rejected"
        return f"[{self.gateway}:{kind}] {super().__str__()}"


class LedgerSubmissionError(LedgerError):
    """
    Transient ledger failure (network, timeout, server error).

    The operation may or may not have been applied on the ledger.
    """

    def __init__(
        self,
        message: str,
        gateway: str = "ledger",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, retryable=True, gateway=gateway, details=details)


class LedgerRejectedError(LedgerError):
    """
    The ledger refused the operation.

    Raised when:
    - Source account has insufficient funds
    - Source or destination account does not exist
    - Asset is not supported
    """

    def __init__(
        self,
        message: str,
        gateway: str = "ledger",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, retryable=False, gateway=gateway, details=details)


class RefundNotAllowedError(LedgerRejectedError):
    """The ledger's time predicate does not allow a refund yet."""


class AlreadyReleasedError(LedgerError):
    """The escrow hold no longer exists (already claimed or refunded)."""

    def __init__(
        self,
        message: str,
        escrow_reference: str | None = None,
        gateway: str = "ledger",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, retryable=False, gateway=gateway, details=details)
        self.escrow_reference = escrow_reference


class ExpiredError(LedgerError):
    """The ledger refused a release because the hold has expired."""

    def __init__(
        self,
        message: str,
        escrow_reference: str | None = None,
        gateway: str = "ledger",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, retryable=False, gateway=gateway, details=details)
        self.escrow_reference = escrow_reference


class DeliveryError(PinClaimError):
    """
    Notification delivery failed.

    Never fatal to a claim: an escrow that is already confirmed stays valid
    and the sender can resend.
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        retryable: bool = False,
        provider_code: int | str | None = None,
        gateway: str = "notification",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.address = address
        self.retryable = retryable
        self.provider_code = provider_code
        self.gateway = gateway

    def __str__(self) -> str:
        if self.provider_code is not None:
            return f"[{self.gateway}:{self.provider_code}] {self.message}"
        return f"[{self.gateway}] {self.message}"
