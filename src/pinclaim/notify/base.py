"""
Notification gateway interface, address normalization and message templates.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from decimal import Decimal

from pinclaim.core.exceptions import ValidationError
from pinclaim.core.types import DeliveryReceipt

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15  # E.164

_FORMATTING = re.compile(r"[^\d+]")
_LETTERS = re.compile(r"[A-Za-z]")


def normalize_phone_number(raw: str, default_country_code: str = "1") -> str:
    """
    Normalize a phone number to E.164 (`+` and 10-15 digits).

    Formatting characters are dropped. A number without `+` is taken as
    international when it starts with `00`, as national (the default country
    code is prepended) when it has exactly ten digits, and as already
    carrying its country code otherwise.

    >>> normalize_phone_number("(555) 123-4567")
    '+15551234567'

    Raises:
        ValidationError: If the result is not a plausible phone number
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Phone number is required")
    if _LETTERS.search(raw):
        raise ValidationError("Phone number must not contain letters", details={"address": raw})

    cleaned = _FORMATTING.sub("", raw.strip())
    if cleaned.count("+") > 1 or ("+" in cleaned and not cleaned.startswith("+")):
        raise ValidationError("Misplaced '+' in phone number", details={"address": raw})

    digits = cleaned.lstrip("+")
    if not cleaned.startswith("+"):
        if digits.startswith("00"):
            digits = digits[2:]
        elif len(digits) == MIN_PHONE_DIGITS:
            digits = f"{default_country_code}{digits}"

    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise ValidationError(
            f"Phone number must have {MIN_PHONE_DIGITS}-{MAX_PHONE_DIGITS} digits",
            details={"address": raw},
        )
    return f"+{digits}"


def claim_link(base_url: str, claim_id: str) -> str:
    return f"{base_url.rstrip('/')}/claim/{claim_id}"


def format_display_amount(amount: Decimal, asset_code: str) -> str:
    # Drop trailing zeros but keep at least two decimals: 50 -> 50.00
    text = format(amount.normalize(), "f")
    if "." not in text:
        text += ".00"
    elif len(text.split(".")[1]) == 1:
        text += "0"
    return f"{text} {asset_code}"


def claim_message(
    amount: Decimal,
    asset_code: str,
    pin: str,
    link: str,
    app_name: str,
    sender_name: str | None = None,
) -> str:
    """The SMS that carries the PIN and claim link to the recipient."""
    display = format_display_amount(amount, asset_code)
    if sender_name:
        return f"{sender_name} sent you {display} via {app_name}! Use PIN: {pin} to claim your funds at {link}"
    return f"You received {display} via {app_name}! Use PIN: {pin} to claim your funds at {link}"


_STATUS_TEMPLATES = {
    ("claim", "success"): "Success! Your claim of {amount} has been processed and sent to your {app} wallet.",
    ("claim", "pending"): "Your claim of {amount} is being processed. You'll receive confirmation shortly.",
    ("claim", "failed"): "Your claim of {amount} could not be processed. Please try again or contact support.",
    ("refund", "success"): "Your unclaimed payment of {amount} expired and was returned to the sender.",
    ("refund", "pending"): "Your unclaimed payment of {amount} has expired and is being returned to the sender.",
    ("refund", "failed"): "Your unclaimed payment of {amount} expired. Please contact {app} support.",
}


def status_message(kind: str, status: str, amount: Decimal, asset_code: str, app_name: str) -> str:
    """
    Status update SMS.

    Args:
        kind: 'claim' or 'refund'
        status: 'success', 'pending' or 'failed'
    """
    template = _STATUS_TEMPLATES.get((kind, status))
    if template is None:
        raise ValidationError(
            "Unknown status message", details={"kind": kind, "status": status}
        )
    return template.format(amount=format_display_amount(amount, asset_code), app=app_name)


class NotificationGateway(ABC):
    """
    Delivers human-readable messages to an out-of-band address.

    Implementations normalize the address themselves and raise
    DeliveryError on failure. Message bodies carry PINs and must never be
    logged.
    """

    name: str = "notification"

    def __init__(self, default_country_code: str = "1") -> None:
        self.default_country_code = default_country_code

    def normalize_address(self, address: str) -> str:
        return normalize_phone_number(address, self.default_country_code)

    @abstractmethod
    async def send(self, address: str, message: str) -> DeliveryReceipt:
        """
        Send `message` to `address`.

        Returns:
            DeliveryReceipt from the provider

        Raises:
            ValidationError: If the address cannot be normalized
            DeliveryError: If the provider did not accept the message
        """
        ...
