"""
Resilience layer for PinClaim.

Provides the retry policy for ledger submissions.
"""

from .retry import execute_with_retry, is_transient_error, ledger_retrying

__all__ = [
    "execute_with_retry",
    "is_transient_error",
    "ledger_retrying",
]
