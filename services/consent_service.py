"""
Consent and opt-out bookkeeping for SMS participants
"""
from typing import Callable, Iterable, List
from datetime import datetime
import logging

from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from models import User
from services.clock import utcnow
from services.voice import mask

logger = logging.getLogger(__name__)


class ConsentService:
    """Who may receive whispers"""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def _get_or_create(self, db: Session, phone: str) -> User:
        user = db.get(User, phone)
        if user is None:
            user = User(phone=phone, consented=False, opted_out=False, created_at=self.clock())
            db.add(user)
            db.flush()
        return user

    def ensure_user(self, phone: str) -> User:
        """Return the user row, creating an unconsented one if needed"""
        with session_scope(self.session_factory) as db:
            return self._get_or_create(db, phone)

    def set_consent(self, phone: str, value: bool = True) -> None:
        with session_scope(self.session_factory) as db:
            user = self._get_or_create(db, phone)
            user.consented = bool(value)
            user.opted_out = False
            user.consent_at = self.clock()
        logger.info(f"[CONSENT] {mask(phone)} consented={bool(value)}")

    def set_opt_out(self, phone: str) -> None:
        with session_scope(self.session_factory) as db:
            user = self._get_or_create(db, phone)
            user.opted_out = True
            user.consented = False
            user.opt_out_at = self.clock()
        logger.info(f"[CONSENT] {mask(phone)} opted out")

    def is_consented(self, phone: str) -> bool:
        with session_scope(self.session_factory) as db:
            user = db.get(User, phone)
            return bool(user and user.consented and not user.opted_out)

    def filter_consented(self, phones: Iterable[str]) -> List[str]:
        """Keep consented phones, preserving order"""
        return [p for p in phones if self.is_consented(p)]

    def consented_phones(self) -> List[str]:
        with session_scope(self.session_factory) as db:
            rows = db.query(User.phone).filter(
                User.consented == True,  # noqa: E712
                User.opted_out == False,  # noqa: E712
            ).order_by(User.created_at).all()
            return [row.phone for row in rows]
