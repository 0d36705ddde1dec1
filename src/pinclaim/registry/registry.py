"""
Escrow Registry.

Durable state machine for EscrowClaim records on top of the StorageBackend.
Every mutation is a compare-and-update against the stored record, so the
guarantees hold for any backend that implements that primitive atomically.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pinclaim.core.exceptions import ClaimNotFoundError, InvalidStateError, ValidationError
from pinclaim.core.logging import get_logger
from pinclaim.core.types import ClaimStatus, EscrowClaim, utcnow

if TYPE_CHECKING:
    from pinclaim.storage.base import StorageBackend

# Allowed source states for each target state
_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.ACTIVE: frozenset({ClaimStatus.PENDING}),
    ClaimStatus.FAILED: frozenset({ClaimStatus.PENDING}),
    ClaimStatus.RELEASING: frozenset({ClaimStatus.ACTIVE}),
    ClaimStatus.CLAIMED: frozenset({ClaimStatus.ACTIVE, ClaimStatus.RELEASING}),
    ClaimStatus.EXPIRED: frozenset({ClaimStatus.ACTIVE}),
    ClaimStatus.REFUNDED: frozenset({ClaimStatus.ACTIVE, ClaimStatus.EXPIRED}),
}


def new_claim_id() -> str:
    """16 URL-safe characters; short enough to fit a ledger text memo."""
    return secrets.token_urlsafe(12)


class EscrowRegistry:
    """
    Lookup and lifecycle transitions for escrow claims.

    Records are never deleted; terminal records stay for audit.
    """

    COLLECTION = "escrow_claims"

    def __init__(
        self,
        storage: StorageBackend,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize registry with storage backend.

        Args:
            storage: The storage backend (InMemory, Redis, etc.)
            clock: Returns the current aware UTC time; injectable for tests
        """
        self._storage = storage
        self._clock = clock or utcnow
        self._logger = get_logger("registry")

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    def now(self) -> datetime:
        return self._clock()

    async def create(
        self,
        sender_account: str,
        amount: Decimal,
        asset_code: str,
        pin_hash: str,
        ttl: int | timedelta,
        notify_address: str | None = None,
    ) -> EscrowClaim:
        """
        Register a new claim in PENDING state.

        Args:
            sender_account: Account funding the escrow
            amount: Escrowed amount
            asset_code: Asset of the escrow
            pin_hash: Encoded salted PIN hash
            ttl: Lifetime in seconds (or timedelta)
            notify_address: Normalized notification address

        Returns:
            The stored EscrowClaim
        """
        ttl_delta = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        if ttl_delta <= timedelta(0):
            raise ValidationError("TTL must be positive", details={"ttl": str(ttl)})

        created_at = self.now()
        claim = EscrowClaim(
            claim_id=new_claim_id(),
            sender_account=sender_account,
            amount=amount,
            asset_code=asset_code,
            pin_hash=pin_hash,
            created_at=created_at,
            expires_at=created_at + ttl_delta,
            status=ClaimStatus.PENDING,
            notify_address=notify_address,
            updated_at=created_at,
        )
        await self._storage.save(self.COLLECTION, claim.claim_id, claim.to_dict())
        self._logger.info(
            f"Claim {claim.claim_id} registered: {amount} {asset_code} from {sender_account}, "
            f"expires {claim.expires_at.isoformat()}"
        )
        return claim

    async def find(self, claim_id: str) -> EscrowClaim | None:
        data = await self._storage.get(self.COLLECTION, claim_id)
        if not data:
            return None
        return EscrowClaim.from_dict(data)

    async def get(self, claim_id: str) -> EscrowClaim:
        """
        Get claim by ID.

        Raises:
            ClaimNotFoundError: If no claim exists
        """
        claim = await self.find(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    async def _transition(
        self,
        claim_id: str,
        target: ClaimStatus,
        updates: dict[str, Any],
        sources: frozenset[ClaimStatus] | None = None,
    ) -> tuple[bool, EscrowClaim]:
        """
        Move a claim to `target` if its current status allows it.

        `sources` overrides the allowed source states for this call.

        Returns:
            (changed, claim) where claim is the state after the attempt
        """
        allowed = sources if sources is not None else _TRANSITIONS[target]
        while True:
            claim = await self.get(claim_id)
            if claim.status not in allowed:
                return False, claim

            payload = {"status": target.value, "updated_at": self.now().isoformat(), **updates}
            swapped = await self._storage.compare_and_update(
                self.COLLECTION,
                claim_id,
                expected={"status": claim.status.value},
                updates=payload,
            )
            if swapped:
                self._logger.info(f"Claim {claim_id}: {claim.status.value} -> {target.value}")
                return True, await self.get(claim_id)
            # Status moved underneath us; re-read and re-check

    async def mark_active(
        self,
        claim_id: str,
        escrow_reference: str,
        tx_hash: str | None = None,
    ) -> EscrowClaim:
        """PENDING -> ACTIVE. No-op returning current state otherwise."""
        changed, claim = await self._transition(
            claim_id,
            ClaimStatus.ACTIVE,
            {
                "escrow_reference": escrow_reference,
                "tx_hash": tx_hash,
                "activated_at": self.now().isoformat(),
            },
        )
        if not changed:
            self._logger.debug(f"mark_active ignored for {claim_id} ({claim.status.value})")
        return claim

    async def mark_releasing(self, claim_id: str, claimant_account: str) -> EscrowClaim:
        """
        ACTIVE -> RELEASING, reserving the escrow for `claimant_account`.

        Only one caller can win this transition, so only one caller ever
        submits the ledger release for a claim.

        Raises:
            InvalidStateError: If the claim is not ACTIVE
        """
        changed, claim = await self._transition(
            claim_id,
            ClaimStatus.RELEASING,
            {"claimant_account": claimant_account},
        )
        if not changed:
            raise InvalidStateError(claim_id, claim.status.value, ClaimStatus.ACTIVE.value)
        return claim

    async def mark_claimed(
        self,
        claim_id: str,
        claimant_account: str,
        tx_hash: str | None = None,
    ) -> EscrowClaim:
        """
        ACTIVE|RELEASING -> CLAIMED.

        Raises:
            InvalidStateError: If the claim is in neither state (e.g. a
                concurrent redemption won)
        """
        changed, claim = await self._transition(
            claim_id,
            ClaimStatus.CLAIMED,
            {
                "claimant_account": claimant_account,
                "claimed_at": self.now().isoformat(),
                "release_tx_hash": tx_hash,
            },
        )
        if not changed:
            raise InvalidStateError(claim_id, claim.status.value, ClaimStatus.RELEASING.value)
        return claim

    async def abandon_release(self, claim_id: str) -> EscrowClaim:
        """RELEASING -> ACTIVE after a release that did not go through. No-op otherwise."""
        changed, claim = await self._transition(
            claim_id,
            ClaimStatus.ACTIVE,
            {"claimant_account": None},
            sources=frozenset({ClaimStatus.RELEASING}),
        )
        if not changed:
            self._logger.debug(f"abandon_release ignored for {claim_id} ({claim.status.value})")
        return claim

    async def mark_expired(self, claim_id: str) -> EscrowClaim:
        """ACTIVE -> EXPIRED. No-op if already expired or terminal."""
        _, claim = await self._transition(
            claim_id,
            ClaimStatus.EXPIRED,
            {"expired_at": self.now().isoformat()},
        )
        return claim

    async def mark_refunded(self, claim_id: str, tx_hash: str | None = None) -> EscrowClaim:
        """ACTIVE|EXPIRED -> REFUNDED. No-op if already terminal."""
        _, claim = await self._transition(
            claim_id,
            ClaimStatus.REFUNDED,
            {"refunded_at": self.now().isoformat(), "refund_tx_hash": tx_hash},
        )
        return claim

    async def mark_failed(self, claim_id: str, reason: str) -> EscrowClaim:
        """PENDING -> FAILED. No-op otherwise."""
        _, claim = await self._transition(
            claim_id,
            ClaimStatus.FAILED,
            {"failure_reason": reason},
        )
        return claim

    async def record_failed_attempt(
        self,
        claim_id: str,
        max_attempts: int,
    ) -> tuple[EscrowClaim, bool]:
        """
        Count one wrong PIN submission.

        Lossless under concurrency: the increment is a compare-and-update on
        the (attempt_count, locked) pair, retried until it lands.

        Returns:
            (claim, counted); counted is False if the claim was already locked
        """
        while True:
            claim = await self.get(claim_id)
            if claim.locked:
                return claim, False

            new_count = claim.attempt_count + 1
            locked = new_count >= max_attempts
            swapped = await self._storage.compare_and_update(
                self.COLLECTION,
                claim_id,
                expected={"attempt_count": claim.attempt_count, "locked": False},
                updates={
                    "attempt_count": new_count,
                    "locked": locked,
                    "updated_at": self.now().isoformat(),
                },
            )
            if swapped:
                claim.attempt_count = new_count
                claim.locked = locked
                if locked:
                    self._logger.warning(
                        f"Claim {claim_id} locked after {new_count} incorrect PIN attempts"
                    )
                return claim, True

    async def reset_attempts(self, claim_id: str) -> EscrowClaim:
        """Administrative reset of the attempt counter and lockout."""
        await self.get(claim_id)
        await self._storage.update(
            self.COLLECTION,
            claim_id,
            {"attempt_count": 0, "locked": False, "updated_at": self.now().isoformat()},
        )
        self._logger.info(f"PIN attempts reset for claim {claim_id}")
        return await self.get(claim_id)

    async def list_by_status(
        self,
        status: ClaimStatus,
        limit: int | None = None,
    ) -> list[EscrowClaim]:
        raw = await self._storage.query(self.COLLECTION, filters={"status": status.value})
        claims = sorted((EscrowClaim.from_dict(d) for d in raw), key=lambda c: c.created_at)
        return claims[:limit] if limit is not None else claims

    async def list_expired(self, now: datetime | None = None) -> list[EscrowClaim]:
        """ACTIVE claims whose expiry has passed, oldest deadline first."""
        now = now or self.now()
        active = await self.list_by_status(ClaimStatus.ACTIVE)
        expired = [c for c in active if c.expires_at <= now]
        expired.sort(key=lambda c: c.expires_at)
        return expired

    async def list_stale_pending(self, older_than: datetime) -> list[EscrowClaim]:
        """PENDING claims created before `older_than`."""
        pending = await self.list_by_status(ClaimStatus.PENDING)
        return [c for c in pending if c.created_at < older_than]

    async def list_stale_releasing(self, older_than: datetime) -> list[EscrowClaim]:
        """RELEASING claims untouched since before `older_than`."""
        releasing = await self.list_by_status(ClaimStatus.RELEASING)
        return [c for c in releasing if (c.updated_at or c.created_at) < older_than]
