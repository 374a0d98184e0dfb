"""
Outbound SMS delivery

Delivery is best-effort: send() never raises, it returns a DeliveryResult
that callers may log or record.
"""
from dataclasses import dataclass
from typing import Optional
import logging

import httpx

from config import Settings
from services.errors import ConfigurationError
from services.voice import mask

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one outbound message"""
    to: str
    delivered: bool
    sid: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, to: str, sid: Optional[str] = None) -> "DeliveryResult":
        return cls(to=to, delivered=True, sid=sid)

    @classmethod
    def failed(cls, to: str, error: str) -> "DeliveryResult":
        return cls(to=to, delivered=False, error=error)


class SmsGateway:
    """Base gateway; subclasses implement _deliver"""

    def send(self, to: str, body: str) -> DeliveryResult:
        try:
            sid = self._deliver(to, body)
        except Exception as e:
            logger.warning(f"[SMS] Delivery to {mask(to)} failed: {e}")
            return DeliveryResult.failed(to, str(e))
        return DeliveryResult.ok(to, sid)

    def _deliver(self, to: str, body: str) -> Optional[str]:
        raise NotImplementedError

    def close(self) -> None:
        """Release transport resources; nothing to release by default"""


class LoggingGateway(SmsGateway):
    """Development gateway: logs instead of sending"""

    def _deliver(self, to: str, body: str) -> Optional[str]:
        logger.info(f"[SMS DISABLED] To {mask(to)}: {body!r}")
        return None


class TwilioGateway(SmsGateway):
    """Twilio Programmable Messaging over its REST API"""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.url = f"{api_base.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self.client = client or httpx.Client(auth=(account_sid, auth_token), timeout=timeout)

    def _deliver(self, to: str, body: str) -> Optional[str]:
        response = self.client.post(
            self.url,
            data={"To": to, "From": self.from_number, "Body": body},
        )
        response.raise_for_status()
        return response.json().get("sid")

    def close(self) -> None:
        self.client.close()


def build_gateway(settings: Settings) -> SmsGateway:
    """
    Create the configured gateway.

    Raises:
        ConfigurationError: SMS is enabled but Twilio credentials are missing
    """
    if not settings.SMS_ENABLED:
        logger.warning("[SMS] SMS_ENABLED is false, outbound messages will only be logged")
        return LoggingGateway()

    missing = [
        name for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_NUMBER")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigurationError(f"Missing Twilio env. Set {', '.join(missing)}")

    return TwilioGateway(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_NUMBER,
        api_base=settings.TWILIO_API_BASE,
        timeout=settings.SMS_TIMEOUT_SECONDS,
    )
