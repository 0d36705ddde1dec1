"""
Notification gateways - out-of-band delivery of claim PINs and status updates.
"""

from pinclaim.notify.base import (
    NotificationGateway,
    claim_link,
    claim_message,
    normalize_phone_number,
    status_message,
)
from pinclaim.notify.memory import InMemoryNotificationGateway

__all__ = [
    "NotificationGateway",
    "InMemoryNotificationGateway",
    "claim_link",
    "claim_message",
    "normalize_phone_number",
    "status_message",
]
