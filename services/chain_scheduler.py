"""
Chain scheduling: create a whisper chain, then fire it after a random delay
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple
import logging
import math
import numbers
import random
import secrets

from config import Settings
from models import Chain, ChainEvent, ChainMode, ChainStatus, JobKind, SessionToken
from repositories.chain_repository import ChainRepository
from scheduler import JobScheduler
from services.clock import utcnow
from services.consent_service import ConsentService
from services.errors import InvalidRequest
from services.locks import KeyedLock
from services.narrator import Narrator
from services.recipient_selector import select_recipients
from services.token_service import SessionTokenStore
from services.voice import WHISPER_WAITS, line, mask

logger = logging.getLogger(__name__)

MIN_WINDOW_MINUTES = 0.1


def generate_chain_id() -> str:
    return f"chain_{secrets.token_hex(5)}"


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def fire_window(window: Any, default_min: float, default_max: float) -> Tuple[float, float]:
    """
    Resolve the fire window in minutes.

    min is clamped to at least 0.1 and max to at least min; values that are
    not numbers, and windows that are not mappings, are ignored.
    """
    min_m, max_m = default_min, default_max
    if not isinstance(window, Mapping):
        window = None
    if window and _is_number(window.get("min")):
        min_m = max(MIN_WINDOW_MINUTES, float(window["min"]))
    if window and _is_number(window.get("max")):
        max_m = max(min_m, float(window["max"]))
    # An explicit min may exceed the default max
    max_m = max(min_m, max_m)
    return min_m, max_m


class ChainScheduler:
    """Creates chains and runs the fire step"""

    def __init__(
        self,
        chains: ChainRepository,
        store: SessionTokenStore,
        consent: ConsentService,
        narrator: Narrator,
        scheduler: JobScheduler,
        locks: KeyedLock,
        rng: random.Random,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.chains = chains
        self.store = store
        self.consent = consent
        self.narrator = narrator
        self.scheduler = scheduler
        self.locks = locks
        self.rng = rng
        self.settings = settings
        self.clock = clock

    def create(
        self,
        question: Any,
        participants: Any,
        window: Any = None,
    ) -> Tuple[str, int]:
        """
        Persist a scheduled chain and arm its fire timer.

        Returns:
            (chain_id, seconds until fire)

        Raises:
            InvalidRequest: empty question, participants not a list of
                phone strings, or nobody consented
        """
        question = str(question).strip() if question is not None else ""
        if not isinstance(participants, (list, tuple)):
            participants = []
        participants = [p for p in participants if isinstance(p, str) and p.strip()]
        if not question or not participants:
            raise InvalidRequest("question and participants required")

        eligible = self.consent.filter_consented(participants)
        if not eligible:
            raise InvalidRequest("no consented recipients")

        min_m, max_m = fire_window(
            window,
            self.settings.FIRE_WINDOW_MIN_MINUTES,
            self.settings.FIRE_WINDOW_MAX_MINUTES,
        )
        delay_ms = round(min_m * 60000 + self.rng.random() * ((max_m - min_m) * 60000))
        delay_seconds = delay_ms / 1000

        now = self.clock()
        chain_id = generate_chain_id()
        self.chains.create(
            chain_id=chain_id,
            question=question,
            participants=eligible,
            created_at=now,
            scheduled_at=now + timedelta(milliseconds=delay_ms),
        )
        self.scheduler.schedule(chain_id, JobKind.FIRE.value, delay_seconds)

        logger.info(
            f"[CHAIN] Created {chain_id} for {len(eligible)}/{len(participants)} consented participant(s), "
            f"fires in {delay_seconds:.1f}s"
        )
        return chain_id, max(0, int(math.floor(delay_seconds + 0.5)))

    def fire(self, chain_id: str) -> None:
        """
        Pick mode and recipients, issue tokens, notify, arm the deadline.

        A chain left in `fired` by an interrupted run picks up where it
        stopped: recipients already chosen are kept, and recipients who
        already have a token and a `sent` event are not messaged again.
        """
        with self.locks.hold(f"chain:{chain_id}"):
            chain = self.chains.get(chain_id)
            if chain is None:
                logger.warning(f"[CHAIN] Fire for unknown chain {chain_id}")
                return

            if chain.status == ChainStatus.SCHEDULED.value:
                now = self.clock()
                fired = self.chains.transition(
                    chain_id,
                    ChainStatus.SCHEDULED,
                    ChainStatus.FIRED,
                    values={"fired_at": now},
                    event=ChainEvent(type="fired", at=now, payload={}),
                )
                if not fired:
                    logger.info(f"[CHAIN] {chain_id} fired by another runner")
                    return

                # Blank folklore ping, independent of the round
                if self.rng.random() < self.settings.BLANK_PROB:
                    self._send_blank(chain_id, self.rng.choice(list(chain.participants)))
            elif chain.status == ChainStatus.FIRED.value:
                logger.warning(f"[CHAIN] Resuming interrupted fire for {chain_id}")
            else:
                logger.info(f"[CHAIN] {chain_id} already fired (status {chain.status})")
                return

            mode, recipients = self._choose_recipients(chain)
            self._notify_recipients(chain_id, mode, recipients)

            self.chains.transition(
                chain_id,
                ChainStatus.FIRED,
                ChainStatus.AWAITING_ANSWERS,
                values={"awaiting_since": self.clock()},
            )

            if mode == ChainMode.SINGLE.value:
                delay = self.settings.SOLO_WINDOW_SECONDS + self.settings.ADJUDICATION_GRACE_MS / 1000
            else:
                delay = self.settings.MIRRORED_ABANDON_SECONDS
            self.scheduler.schedule(chain_id, JobKind.ADJUDICATE.value, delay)

        logger.info(f"[CHAIN] Fired {chain_id} as {mode} to {', '.join(mask(r) for r in recipients)}")

    def _choose_recipients(self, chain: Chain) -> Tuple[str, List[str]]:
        """Roll the mode and pick recipients, unless an earlier run already did"""
        if chain.recipients:
            return chain.mode, list(chain.recipients)

        participants: List[str] = list(chain.participants)
        mirrored = len(participants) >= 2 and self.rng.random() < self.settings.MIRROR_CHANCE
        mode = ChainMode.MIRRORED.value if mirrored else ChainMode.SINGLE.value
        recipients = select_recipients(participants, mirrored, self.rng)
        self.chains.set_recipients(chain.id, mode, recipients)
        self.chains.append_event(chain.id, "chosen_recipients", self.clock(), {
            "mode": mode,
            "recipients": recipients,
        })
        return mode, recipients

    def _notify_recipients(self, chain_id: str, mode: str, recipients: Sequence[str]) -> None:
        """One token and one arrival message per recipient slot"""
        issued: Dict[str, List[SessionToken]] = {}
        for tok in self.store.for_chain(chain_id):
            issued.setdefault(tok.recipient, []).append(tok)
        notified = {e.payload.get("token") for e in self.chains.events(chain_id, "sent")}

        for recipient in recipients:
            earlier = issued.get(recipient)
            token = earlier.pop(0) if earlier else self.store.issue(chain_id, recipient, mode)
            if token.token in notified:
                continue
            link = f"{self.settings.session_base_url}/open/{token.token}"
            sent = self.narrator.send(recipient, [
                line("arrival", self.rng),
                WHISPER_WAITS.format(link=link),
            ])
            self.chains.append_event(chain_id, "sent", self.clock(), {
                "to": recipient,
                "token": token.token,
                "delivered": sent.delivered,
                "error": sent.error,
            })

    def resume_stalled(self) -> int:
        """
        Give every chain stuck before `awaiting_answers` a live fire job.

        Covers fire jobs that failed or were lost. Chains that still have a
        pending or running fire job are left to it.

        Returns:
            Number of fire jobs scheduled
        """
        now = self.clock()
        resumed = 0
        for chain in self.chains.in_status(ChainStatus.SCHEDULED, ChainStatus.FIRED):
            if self.scheduler.has_open_job(chain.id, JobKind.FIRE.value):
                continue
            due = chain.scheduled_at or now
            self.scheduler.schedule(chain.id, JobKind.FIRE.value, (due - now).total_seconds())
            resumed += 1
        if resumed:
            logger.warning(f"[CHAIN] Rescheduled fire for {resumed} stalled chain(s)")
        return resumed

    def _send_blank(self, chain_id: str, target: str) -> None:
        payload = f"{self.settings.RIDDLE_TEXT}|||{self.settings.KEYPHRASE}"
        sent = self.narrator.send_blank(target, payload)
        if sent.delivered:
            self.chains.append_event(chain_id, "blank_sent", self.clock(), {"to": target})
            logger.info(f"[CHAIN] Blank ping sent to {mask(target)}")
        else:
            self.chains.append_event(chain_id, "blank_fail", self.clock(), {"to": target, "error": sent.error})
