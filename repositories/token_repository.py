"""
Token Repository - per-recipient session tokens
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import SessionToken

logger = logging.getLogger(__name__)


class TokenRepository:
    """Repository for SessionToken rows"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def get(self, token: str) -> Optional[SessionToken]:
        with session_scope(self.session_factory) as db:
            return db.get(SessionToken, token)

    def for_chain(self, chain_id: str) -> List[SessionToken]:
        with session_scope(self.session_factory) as db:
            return db.query(SessionToken).filter(
                SessionToken.chain_id == chain_id,
            ).order_by(SessionToken.sent_at).all()

    def latest_open_for_recipient(self, recipient: str, now: datetime) -> Optional[SessionToken]:
        """Most recently issued token with a running, unexpired clock"""
        with session_scope(self.session_factory) as db:
            return db.query(SessionToken).filter(
                SessionToken.recipient == recipient,
                SessionToken.used == False,  # noqa: E712
                SessionToken.deadline.isnot(None),
                SessionToken.deadline >= now,
            ).order_by(SessionToken.sent_at.desc()).first()

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    def add(self, token: SessionToken) -> SessionToken:
        with session_scope(self.session_factory) as db:
            db.add(token)
        return token

    def arm_deadline(self, token: str, opened_at: datetime, window_seconds: int) -> bool:
        """Start the clock on first open; later calls change nothing"""
        with session_scope(self.session_factory) as db:
            armed = db.query(SessionToken).filter(
                SessionToken.token == token,
                SessionToken.deadline.is_(None),
            ).update(
                {
                    "opened_at": opened_at,
                    "deadline": opened_at + timedelta(seconds=window_seconds),
                },
                synchronize_session=False,
            )
        return bool(armed)

    def claim(self, token: str, used_at: datetime, text: Optional[str]) -> bool:
        """
        Mark a token used. This is the single linearization point for
        answers: of any number of racing claims exactly one returns True.
        """
        with session_scope(self.session_factory) as db:
            claimed = db.query(SessionToken).filter(
                SessionToken.token == token,
                SessionToken.used == False,  # noqa: E712
            ).update(
                {"used": True, "used_at": used_at, "responded_text": text},
                synchronize_session=False,
            )
        return bool(claimed)
