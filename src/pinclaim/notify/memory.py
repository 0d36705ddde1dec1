"""
In-Memory Notification Gateway.

Keeps sent messages in an outbox instead of delivering them. Intended for
development and tests; message bodies are held in memory only, never logged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from pinclaim.core.config import Config
from pinclaim.core.logging import get_logger
from pinclaim.core.types import DeliveryReceipt
from pinclaim.notify.base import NotificationGateway


@dataclass(frozen=True)
class OutboxMessage:
    message_id: str
    address: str
    body: str


class InMemoryNotificationGateway(NotificationGateway):
    """Outbox-backed gateway."""

    name = "memory"

    def __init__(self, default_country_code: str = "1") -> None:
        super().__init__(default_country_code)
        self.outbox: list[OutboxMessage] = []
        self._logger = get_logger("notify.memory")

    @classmethod
    def from_config(cls, config: Config) -> InMemoryNotificationGateway:
        return cls(config.default_country_code)

    async def send(self, address: str, message: str) -> DeliveryReceipt:
        to = self.normalize_address(address)
        message_id = f"MEM{uuid.uuid4().hex[:24]}"
        self.outbox.append(OutboxMessage(message_id=message_id, address=to, body=message))
        self._logger.debug(f"Message {message_id} stored for {to}")
        return DeliveryReceipt(message_id=message_id, address=to, provider=self.name, status="stored")

    def messages_for(self, address: str) -> list[str]:
        to = self.normalize_address(address)
        return [m.body for m in self.outbox if m.address == to]
