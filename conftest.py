"""
Shared pytest fixtures: in-memory database, recording gateway, scripted
randomness and a hand-driven clock. Timers are never armed; tests drive
jobs with game.scheduler.run_due().
"""
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import build_engine, build_session_factory, init_db
from services.game import WhisperGame, get_game
from services.sms_gateway import SmsGateway

ALICE = "+13235550101"
BOB = "+13235550102"
CAROL = "+13235550103"


class RecordingGateway(SmsGateway):
    """Keeps every outbound message; numbers in fail_for raise on delivery"""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail_for = set()

    def _deliver(self, to: str, body: str) -> Optional[str]:
        if to in self.fail_for:
            raise ConnectionError("carrier unreachable")
        self.sent.append((to, body))
        return f"SM{len(self.sent):04d}"

    def bodies_for(self, to: str) -> List[str]:
        return [body for dest, body in self.sent if dest == to]

    def clear(self) -> None:
        self.sent.clear()


class ScriptedRandom:
    """
    Deterministic stand-in for random.Random.

    random() returns queued values (then `default`); choice() returns
    queued picks, falling back to cycling through the sequence.
    """

    def __init__(self, randoms: Sequence[float] = (), picks: Sequence[str] = (), default: float = 0.99):
        self.randoms = list(randoms)
        self.picks = list(picks)
        self.default = default
        self._cycle = 0

    def queue(self, *values: float) -> None:
        self.randoms.extend(values)

    def queue_picks(self, *values: str) -> None:
        self.picks.extend(values)

    def random(self) -> float:
        return self.randoms.pop(0) if self.randoms else self.default

    def choice(self, seq):
        if self.picks:
            pick = self.picks.pop(0)
            assert pick in seq, f"scripted pick {pick!r} not in {list(seq)!r}"
            return pick
        item = seq[self._cycle % len(seq)]
        self._cycle += 1
        return item


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 10, 17, 21, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SMS_ENABLED=False,
        BASE_URL="https://dread.test/",
        DATABASE_URL="sqlite://",
        BLANK_PROB=0.0015,
        MIRROR_CHANCE=0.12,
        REVEAL_PROB=0.72,
        ADMIN_SECRET="hush",
        KEYPHRASE="JACKDAW ASCENDS",
    )


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def rng() -> ScriptedRandom:
    return ScriptedRandom()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def game(settings, session_factory, gateway, rng, clock) -> WhisperGame:
    game = WhisperGame(settings, session_factory, gateway, rng=rng, clock=clock, arm_timers=False)
    yield game
    game.stop()


@pytest.fixture
def consented(game):
    """Consent a list of phones"""
    def _consent(*phones: str) -> List[str]:
        for phone in phones:
            game.consent.set_consent(phone, True)
        return list(phones)
    return _consent


@pytest.fixture
def client(game):
    from main import app

    app.dependency_overrides[get_game] = lambda: game
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fired_chain(game, consented, rng, clock):
    """
    Create and fire a chain.

    Usage: chain_id = fired_chain([ALICE, BOB], mirrored=True)
    """
    def _fire(participants: Sequence[str], mirrored: bool = False, picks: Sequence[str] = ()) -> str:
        consented(*participants)
        rng.queue(0.0)  # fire delay: window minimum
        chain_id, _ = game.chains.create("what did you avoid today?", list(participants))
        # blank roll misses, then mirror roll (only drawn with 2+ participants)
        rng.queue(0.99)
        if len(participants) >= 2:
            rng.queue(0.0 if mirrored else 0.99)
        rng.queue_picks(*picks)
        clock.advance(60)
        game.scheduler.run_due()
        return chain_id
    return _fire
