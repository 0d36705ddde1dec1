"""
Ledger gateways - escrow holds on an external ledger.
"""

from pinclaim.ledger.base import LedgerGateway
from pinclaim.ledger.memory import InMemoryLedgerGateway

__all__ = [
    "LedgerGateway",
    "InMemoryLedgerGateway",
]
