"""
Session tokens: one recipient's response window for one chain

Single rounds start the clock when the whisper is sent; mirrored rounds
start it when the recipient first opens the session, because a mirrored
verdict needs both people to have actually engaged.
"""
from typing import Callable, List, Optional
from datetime import datetime, timedelta
import logging
import math
import secrets

from models import ChainMode, SessionToken
from repositories.token_repository import TokenRepository
from services.clock import utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 16


def generate_token() -> str:
    """Unguessable, URL-safe token id"""
    return secrets.token_urlsafe(TOKEN_BYTES)


class SessionTokenStore:
    """Issues tokens and applies their deadline rules"""

    def __init__(
        self,
        tokens: TokenRepository,
        solo_window_seconds: int,
        mirrored_window_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tokens = tokens
        self.solo_window_seconds = solo_window_seconds
        self.mirrored_window_seconds = mirrored_window_seconds
        self.clock = clock

    def issue(self, chain_id: str, recipient: str, mode: str) -> SessionToken:
        sent_at = self.clock()
        deadline = None
        if mode == ChainMode.SINGLE.value:
            deadline = sent_at + timedelta(seconds=self.solo_window_seconds)

        token = SessionToken(
            token=generate_token(),
            chain_id=chain_id,
            recipient=recipient,
            mode=mode,
            sent_at=sent_at,
            opened_at=None,
            deadline=deadline,
            used=False,
            responded_text=None,
        )
        return self.tokens.add(token)

    def get(self, token: str) -> Optional[SessionToken]:
        return self.tokens.get(token)

    def for_chain(self, chain_id: str) -> List[SessionToken]:
        return self.tokens.for_chain(chain_id)

    def open(self, token: SessionToken) -> bool:
        """
        Record a view. For mirrored tokens the first view arms the deadline.

        Returns:
            True if this view started the clock
        """
        if token.mode != ChainMode.MIRRORED.value or token.deadline is not None:
            return False
        return self.tokens.arm_deadline(token.token, self.clock(), self.mirrored_window_seconds)

    def claim(self, token: str, text: Optional[str]) -> bool:
        return self.tokens.claim(token, self.clock(), text)

    def find_open_token_for_sender(self, sender: str) -> Optional[SessionToken]:
        return self.tokens.latest_open_for_recipient(sender, self.clock())

    def is_expired(self, token: SessionToken, now: Optional[datetime] = None) -> bool:
        return token.deadline is not None and (now or self.clock()) > token.deadline

    def seconds_remaining(self, token: SessionToken) -> int:
        if token.deadline is None:
            return 0
        remaining = (token.deadline - self.clock()).total_seconds()
        return max(0, math.ceil(remaining))
