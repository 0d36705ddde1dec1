"""
Secret Store - PIN generation, hashing and verification.

PINs are four decimal digits drawn from the OS CSPRNG. Only a salted
PBKDF2-HMAC-SHA256 hash is ever stored, encoded as:

    pbkdf2_sha256$<iterations>$<salt, urlsafe b64>$<hash, urlsafe b64>

Wrong guesses are ordinary outcomes reported through VerifyOutcome; the
attempt counter lives on the registry record and is updated with
compare-and-update so concurrent wrong guesses are all counted.
"""

from __future__ import annotations

import asyncio
import base64
import os
import secrets
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from pinclaim.core.logging import get_logger
from pinclaim.core.types import EscrowClaim, VerifyOutcome, VerifyResult

if TYPE_CHECKING:
    from pinclaim.registry.registry import EscrowRegistry

PIN_LENGTH = 4
HASH_SCHEME = "pbkdf2_sha256"
SALT_BYTES = 16
KEY_BYTES = 32


def is_valid_pin_format(pin: str) -> bool:
    """Exactly four ASCII digits."""
    return isinstance(pin, str) and len(pin) == PIN_LENGTH and pin.isascii() and pin.isdigit()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )


class SecretStore:
    """
    Generates, hashes and verifies redemption PINs with lockout.

    Args:
        registry: Registry holding the per-claim attempt counters
        max_attempts: Wrong guesses before the claim locks
        iterations: PBKDF2 rounds for new hashes
    """

    def __init__(
        self,
        registry: EscrowRegistry,
        max_attempts: int = 5,
        iterations: int = 100_000,
    ) -> None:
        self._registry = registry
        self.max_attempts = max_attempts
        self.iterations = iterations
        self._logger = get_logger("pin")

    @staticmethod
    def generate_pin() -> str:
        """Uniformly random PIN in 0000-9999, leading zeros kept."""
        return f"{secrets.randbelow(10 ** PIN_LENGTH):0{PIN_LENGTH}d}"

    def hash_pin(self, pin: str, salt: bytes | None = None) -> str:
        """Salted one-way hash of `pin` in the encoded format above."""
        salt = salt if salt is not None else os.urandom(SALT_BYTES)
        digest = _kdf(salt, self.iterations).derive(pin.encode("utf-8"))
        return f"{HASH_SCHEME}${self.iterations}${_b64encode(salt)}${_b64encode(digest)}"

    @staticmethod
    def check_pin(pin_hash: str, pin: str) -> bool:
        """
        Recompute the hash with the stored salt and iterations.

        Comparison is constant-time (PBKDF2HMAC.verify). A malformed stored
        hash never matches.
        """
        try:
            scheme, iterations, salt_b64, digest_b64 = pin_hash.split("$")
            if scheme != HASH_SCHEME:
                return False
            salt = _b64decode(salt_b64)
            expected = _b64decode(digest_b64)
            kdf = _kdf(salt, int(iterations))
        except ValueError:
            return False

        try:
            kdf.verify(pin.encode("utf-8"), expected)
        except InvalidKey:
            return False
        return True

    async def hash_pin_async(self, pin: str) -> str:
        return await asyncio.to_thread(self.hash_pin, pin)

    async def matches(self, claim: EscrowClaim, pin: str) -> bool:
        """Hash comparison only; does not touch the attempt counter."""
        return await asyncio.to_thread(self.check_pin, claim.pin_hash, pin)

    async def verify_pin(self, claim: EscrowClaim, supplied_pin: str) -> VerifyOutcome:
        """
        Verify a redemption attempt.

        Returns LOCKED for a locked claim whatever the PIN. On a mismatch the
        attempt is counted; the attempt that reaches the threshold still
        reports INVALID (with zero remaining) and every later one LOCKED.

        The lock state is read again after hashing, so a claim that locked
        while the hash was computed refuses even the right PIN. Callers
        still serialize verification per claim (ClaimService does so under
        the claim lock); otherwise guesses hashed in parallel are only
        counted once they finish.
        """
        current = await self._registry.get(claim.claim_id)
        if current.locked:
            return VerifyOutcome(VerifyResult.LOCKED, attempt_count=current.attempt_count, remaining_attempts=0)

        if await self.matches(current, supplied_pin):
            after = await self._registry.get(claim.claim_id)
            if after.locked:
                return VerifyOutcome(VerifyResult.LOCKED, attempt_count=after.attempt_count, remaining_attempts=0)
            return VerifyOutcome(VerifyResult.VALID, attempt_count=after.attempt_count)

        updated, counted = await self._registry.record_failed_attempt(
            claim.claim_id, self.max_attempts
        )
        if not counted:
            # Another request locked the claim while we were hashing
            return VerifyOutcome(VerifyResult.LOCKED, attempt_count=updated.attempt_count, remaining_attempts=0)

        remaining = max(self.max_attempts - updated.attempt_count, 0)
        self._logger.info(
            f"Incorrect PIN for claim {claim.claim_id} "
            f"(attempt {updated.attempt_count}/{self.max_attempts})"
        )
        return VerifyOutcome(
            VerifyResult.INVALID,
            attempt_count=updated.attempt_count,
            remaining_attempts=remaining,
        )

    async def reset_attempts(self, claim_id: str) -> EscrowClaim:
        """Administrative unlock."""
        return await self._registry.reset_attempts(claim_id)
