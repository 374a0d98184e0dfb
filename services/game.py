"""
Composition root: wires repositories, services and timers together
"""
from datetime import datetime
from typing import Callable, Optional
import logging
import random

from sqlalchemy.orm import sessionmaker

from config import Settings
from repositories import ChainRepository, JobRepository, TokenRepository
from scheduler import JobScheduler
from services.adjudication_service import AdjudicationEngine
from services.chain_scheduler import ChainScheduler
from services.clock import utcnow
from services.consent_service import ConsentService
from services.locks import KeyedLock
from services.mantle_service import MantleService
from services.narrator import Narrator
from services.response_collector import ResponseCollector
from services.sms_gateway import SmsGateway
from services.token_service import SessionTokenStore
from tasks.chain_tasks import register_chain_tasks

logger = logging.getLogger(__name__)


class WhisperGame:
    """Everything one process needs to run whisper chains"""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        gateway: SmsGateway,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        arm_timers: bool = True,
    ):
        self.settings = settings
        self.gateway = gateway
        self.rng = rng or random.SystemRandom()
        self.clock = clock
        self.locks = KeyedLock()

        self.chain_repo = ChainRepository(session_factory)
        self.token_repo = TokenRepository(session_factory)
        self.scheduler = JobScheduler(JobRepository(session_factory), clock=clock, arm_timers=arm_timers)

        self.consent = ConsentService(session_factory, clock=clock)
        self.mantle = MantleService(
            session_factory,
            keyphrase=settings.KEYPHRASE,
            mantle_days=settings.MANTLE_DAYS,
            clock=clock,
        )
        self.narrator = Narrator(gateway, alias_source=self.mantle.current_alias)

        self.tokens = SessionTokenStore(
            self.token_repo,
            solo_window_seconds=settings.SOLO_WINDOW_SECONDS,
            mirrored_window_seconds=settings.MIRRORED_WINDOW_SECONDS,
            clock=clock,
        )
        self.chains = ChainScheduler(
            self.chain_repo,
            self.tokens,
            self.consent,
            self.narrator,
            self.scheduler,
            self.locks,
            self.rng,
            settings,
            clock=clock,
        )
        self.collector = ResponseCollector(
            self.chain_repo,
            self.tokens,
            self.scheduler,
            self.locks,
            answer_settle_ms=settings.ANSWER_SETTLE_MS,
            grace_ms=settings.ADJUDICATION_GRACE_MS,
            clock=clock,
        )
        self.adjudicator = AdjudicationEngine(
            self.chain_repo,
            self.narrator,
            self.rng,
            self.locks,
            reveal_prob=settings.REVEAL_PROB,
            clock=clock,
        )

        register_chain_tasks(self.scheduler, self)

    def start(self) -> int:
        """Reschedule stalled fires, re-arm persisted timers; returns the number of pending jobs"""
        self.chains.resume_stalled()
        return self.scheduler.recover()

    def stop(self) -> None:
        self.scheduler.shutdown()
        self.gateway.close()


_game: Optional[WhisperGame] = None


def set_game(game: Optional[WhisperGame]) -> None:
    global _game
    _game = game


def get_game() -> WhisperGame:
    """FastAPI dependency for the running game"""
    if _game is None:
        raise RuntimeError("whisper game is not initialized")
    return _game
