"""
Narrator: formats Dread's messages and hands them to the gateway
"""
from typing import Callable, List, Optional, Sequence, Union

from services.invisible_codec import encode_invisible
from services.sms_gateway import DeliveryResult, SmsGateway
from services.voice import dread_header


class Narrator:
    """Prefixes every message with the Dread header (mantle alias aware)"""

    def __init__(self, gateway: SmsGateway, alias_source: Callable[[], Optional[str]]):
        self.gateway = gateway
        self.alias_source = alias_source

    def send(self, to: str, lines: Union[str, Sequence[str]]) -> DeliveryResult:
        if isinstance(lines, str):
            lines = [lines]
        body = "\n".join([dread_header(self.alias_source()), *lines])
        return self.gateway.send(to, body)

    def send_all(self, recipients: Sequence[str], lines: Union[str, Sequence[str]]) -> List[DeliveryResult]:
        return [self.send(to, lines) for to in recipients]

    def send_blank(self, to: str, payload: str) -> DeliveryResult:
        """Invisible payload, sent bare so the message looks empty"""
        return self.gateway.send(to, encode_invisible(payload))
