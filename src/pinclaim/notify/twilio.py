"""
Twilio SMS Notification Gateway.
"""

from __future__ import annotations

import asyncio

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from pinclaim.core.config import Config
from pinclaim.core.exceptions import ConfigurationError, DeliveryError
from pinclaim.core.logging import get_logger
from pinclaim.core.types import DeliveryReceipt
from pinclaim.notify.base import NotificationGateway

# Twilio error codes with a specific user-facing explanation
TWILIO_ERROR_MESSAGES = {
    21211: "Invalid phone number format. Please check the number and try again.",
    21608: "The sending number is not capable of sending to this destination.",
    21610: "The recipient has opted out of messages from this number.",
    21614: "The destination number cannot receive SMS.",
    20003: "Authentication failed. Please check the Twilio credentials.",
}


class TwilioNotificationGateway(NotificationGateway):
    """
    Sends SMS through Twilio's Messages API.

    Args:
        account_sid: Twilio account SID
        auth_token: Twilio auth token
        from_number: Sending number in E.164
        client: Pre-built twilio Client (tests inject a mock)
        default_country_code: Used when normalizing national numbers
    """

    name = "twilio"

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        client: Client | None = None,
        default_country_code: str = "1",
    ) -> None:
        super().__init__(default_country_code)
        if not from_number:
            raise ConfigurationError("Twilio sending number is not configured")
        if client is None:
            if not account_sid or not auth_token:
                raise ConfigurationError("Twilio credentials are not configured")
            client = Client(account_sid, auth_token)
        self._client = client
        self._from_number = from_number
        self._logger = get_logger("notify.twilio")

    @classmethod
    def from_config(cls, config: Config, client: Client | None = None) -> TwilioNotificationGateway:
        return cls(
            config.twilio_account_sid,
            config.twilio_auth_token,
            config.twilio_from_number,
            client=client,
            default_country_code=config.default_country_code,
        )

    def _create(self, to: str, body: str):
        return self._client.messages.create(body=body, from_=self._from_number, to=to)

    async def send(self, address: str, message: str) -> DeliveryReceipt:
        to = self.normalize_address(address)
        try:
            sent = await asyncio.to_thread(self._create, to, message)
        except TwilioRestException as e:
            retryable = e.status == 429 or (e.status is not None and e.status >= 500)
            text = TWILIO_ERROR_MESSAGES.get(e.code) or e.msg or "Unknown error from Twilio API"
            self._logger.error(f"Twilio rejected SMS to {to}: code={e.code} status={e.status}")
            raise DeliveryError(
                text,
                address=to,
                retryable=retryable,
                provider_code=e.code,
                gateway=self.name,
                details={"status": e.status},
            ) from e
        except TwilioException as e:
            self._logger.error(f"Twilio client error for SMS to {to}: {e}")
            raise DeliveryError(str(e), address=to, gateway=self.name) from e
        except OSError as e:
            # requests' transport errors derive from OSError
            self._logger.error(f"Twilio unreachable for SMS to {to}: {e}")
            raise DeliveryError(
                f"Twilio unreachable: {e}", address=to, retryable=True, gateway=self.name
            ) from e

        self._logger.info(f"SMS queued to {to} (sid: {sent.sid})")
        return DeliveryReceipt(
            message_id=sent.sid,
            address=to,
            provider=self.name,
            status=getattr(sent, "status", None),
        )
