"""
PIN secret store.
"""

from pinclaim.pin.store import SecretStore, is_valid_pin_format

__all__ = [
    "SecretStore",
    "is_valid_pin_format",
]
