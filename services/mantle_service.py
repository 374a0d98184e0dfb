"""
Mantle: a participant temporarily lends the narrator an alias.
Won by answering the keyphrase first while a phrase call is active.
"""
from typing import Callable, Optional
from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import Mantle, PhraseCall, User
from services.clock import utcnow
from services.voice import mask

logger = logging.getLogger(__name__)

SINGLETON_ID = 1


class MantleService:
    """Mantle holder and phrase-call contest state"""

    def __init__(
        self,
        session_factory: sessionmaker,
        keyphrase: str,
        mantle_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.keyphrase = keyphrase
        self.mantle_days = mantle_days
        self.clock = clock

    def current_mantle(self) -> Optional[Mantle]:
        """Active mantle, clearing it once expired"""
        with session_scope(self.session_factory) as db:
            mantle = db.get(Mantle, SINGLETON_ID)
            if mantle is None:
                return None
            if self.clock() > mantle.expires_at:
                db.delete(mantle)
                logger.info(f"[MANTLE] Expired for {mask(mantle.holder)}")
                return None
            return mantle

    def current_alias(self) -> Optional[str]:
        mantle = self.current_mantle()
        return mantle.alias if mantle else None

    def set_mantle(self, holder: str) -> Mantle:
        with session_scope(self.session_factory) as db:
            user = db.get(User, holder)
            alias = (user.alias if user and user.alias else None) or mask(holder)
            mantle = db.get(Mantle, SINGLETON_ID)
            if mantle is None:
                mantle = Mantle(id=SINGLETON_ID, holder=holder, alias=alias, expires_at=self.clock())
                db.add(mantle)
            mantle.holder = holder
            mantle.alias = alias
            mantle.expires_at = self.clock() + timedelta(days=self.mantle_days)
        logger.info(f"[MANTLE] {mask(holder)} wears the name until {mantle.expires_at.isoformat()}")
        return mantle

    def call_phrase(self) -> None:
        """Open the keyphrase contest"""
        with session_scope(self.session_factory) as db:
            call = db.get(PhraseCall, SINGLETON_ID)
            if call is None:
                call = PhraseCall(id=SINGLETON_ID)
                db.add(call)
            call.active = True
            call.started_at = self.clock()
            call.ended_at = None
            call.winner = None
        logger.info("[MANTLE] Phrase call started")

    def phrase_call_active(self) -> bool:
        with session_scope(self.session_factory) as db:
            call = db.get(PhraseCall, SINGLETON_ID)
            return bool(call and call.active)

    def try_claim(self, sender: str, text: str) -> bool:
        """
        Close the contest if text is the keyphrase (case-insensitive).

        Returns:
            True if sender won the mantle
        """
        if text.strip().lower() != self.keyphrase.lower():
            return False

        with session_scope(self.session_factory) as db:
            # Conditional update: only the first correct answer ends the call
            claimed = db.query(PhraseCall).filter(
                PhraseCall.id == SINGLETON_ID,
                PhraseCall.active == True,  # noqa: E712
            ).update(
                {"active": False, "ended_at": self.clock(), "winner": sender},
                synchronize_session=False,
            )
        if not claimed:
            return False

        self.set_mantle(sender)
        return True
