"""
Registry module - escrow claim records and per-claim locks.
"""

from pinclaim.registry.lock import ClaimLockService
from pinclaim.registry.registry import EscrowRegistry, new_claim_id

__all__ = [
    "EscrowRegistry",
    "ClaimLockService",
    "new_claim_id",
]
