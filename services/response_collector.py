"""
Answer collection for whisper sessions

Two adapters feed one transition: the web form (by token) and inbound SMS
(by sender phone). The token's used flag is the linearization point, so
whichever adapter claims first wins and the other sees "already used".
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import enum
import logging

from models import ChainMode, ChainStatus, JobKind
from repositories.chain_repository import ChainRepository
from scheduler import JobScheduler
from services.clock import utcnow
from services.errors import NotFound
from services.locks import KeyedLock
from services.token_service import SessionTokenStore
from services.voice import mask

logger = logging.getLogger(__name__)


class SubmitOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


@dataclass
class SubmitResult:
    outcome: SubmitOutcome
    chain_id: str
    recipient: str
    text: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome == SubmitOutcome.ACCEPTED


@dataclass
class SessionView:
    """What the session page shows"""
    token: str
    chain_id: str
    question: str
    mode: str
    seconds_remaining: int


class ResponseCollector:
    """Views, submissions and the completion check that follows an answer"""

    def __init__(
        self,
        chains: ChainRepository,
        store: SessionTokenStore,
        scheduler: JobScheduler,
        locks: KeyedLock,
        answer_settle_ms: int = 200,
        grace_ms: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.chains = chains
        self.store = store
        self.scheduler = scheduler
        self.locks = locks
        self.answer_settle_ms = answer_settle_ms
        self.grace_ms = grace_ms
        self.clock = clock

    def view(self, token: str) -> SessionView:
        """
        Open a session.

        Raises:
            NotFound: unknown token or missing chain
        """
        tok = self.store.get(token)
        if tok is None:
            raise NotFound("no whisper.")
        chain = self.chains.get(tok.chain_id)
        if chain is None:
            raise NotFound("missing chain.")

        armed = self.store.open(tok)
        if tok.deadline is None:
            tok = self.store.get(token)
        if armed:
            logger.info(f"[TOKEN] Mirrored window opened for {mask(tok.recipient)} on {chain.id}")
            delay = (tok.deadline - self.clock()).total_seconds() + self.grace_ms / 1000
            self.scheduler.schedule(chain.id, JobKind.MIRROR_DEADLINE.value, delay)

        return SessionView(
            token=token,
            chain_id=chain.id,
            question=chain.question,
            mode=tok.mode,
            seconds_remaining=self.store.seconds_remaining(tok),
        )

    def submit(self, token: str, text: Optional[str]) -> SubmitResult:
        """
        Record an answer. Exactly one outcome per call.

        Raises:
            NotFound: unknown token
        """
        with self.locks.hold(f"token:{token}"):
            tok = self.store.get(token)
            if tok is None:
                raise NotFound("no session.")
            if tok.used:
                return SubmitResult(SubmitOutcome.ALREADY_USED, tok.chain_id, tok.recipient)

            if self.store.is_expired(tok):
                if not self.store.claim(token, None):
                    return SubmitResult(SubmitOutcome.ALREADY_USED, tok.chain_id, tok.recipient)
                self.chains.append_event(tok.chain_id, "expired", self.clock(), {
                    "who": tok.recipient,
                    "token": token,
                })
                logger.info(f"[TOKEN] Late answer from {mask(tok.recipient)} on {tok.chain_id}")
                return SubmitResult(SubmitOutcome.EXPIRED, tok.chain_id, tok.recipient)

            answer = (text or "").strip()
            if not self.store.claim(token, answer):
                return SubmitResult(SubmitOutcome.ALREADY_USED, tok.chain_id, tok.recipient)

        self._record_answer(tok.chain_id, tok.recipient, token, answer)
        return SubmitResult(SubmitOutcome.ACCEPTED, tok.chain_id, tok.recipient, answer)

    def submit_by_sender(self, sender: str, text: Optional[str]) -> Optional[SubmitResult]:
        """
        Answer by SMS: the sender's most recent token with a running clock.

        Returns:
            None if the sender has no open session
        """
        tok = self.store.find_open_token_for_sender(sender)
        if tok is None:
            return None
        return self.submit(tok.token, text)

    def _record_answer(self, chain_id: str, who: str, token: str, answer: str) -> None:
        with self.locks.hold(f"chain:{chain_id}"):
            self.chains.append_event(chain_id, "answer", self.clock(), {
                "who": who,
                "text": answer,
                "token": token,
            })
            logger.info(f"[TOKEN] Answer from {mask(who)} on {chain_id}")

            chain = self.chains.get(chain_id)
            if chain is None or chain.status == ChainStatus.ADJUDICATED.value:
                return

            if chain.mode == ChainMode.MIRRORED.value:
                recipients = chain.recipients or []
                got = sum(
                    1 for e in chain.events
                    if e.type == "answer" and e.payload.get("who") in recipients
                )
                if got < len(recipients):
                    return
                logger.info(f"[CHAIN] Mirrored quorum reached on {chain_id}")

            self.scheduler.schedule(chain_id, JobKind.ADJUDICATE.value, self.answer_settle_ms / 1000)

    def mirror_settled(self, chain_id: str) -> bool:
        """True once every token of a mirrored chain is used or past its deadline"""
        chain = self.chains.get(chain_id)
        if chain is None or chain.mode != ChainMode.MIRRORED.value:
            return False
        tokens = self.store.for_chain(chain_id)
        now = self.clock()
        return bool(tokens) and all(t.used or self.store.is_expired(t, now) for t in tokens)
