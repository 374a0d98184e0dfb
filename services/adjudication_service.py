"""
Adjudication: the terminal step of a chain

The verdict is computed and persisted first, with a compare-and-set on the
chain status, so the chain is judged at most once no matter how many
triggers (solo timer, mirrored quorum, deadline sweeps) arrive. Reveal
messages go out afterwards and never roll the verdict back.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import random

from models import Chain, ChainEvent, ChainMode, ChainStatus
from repositories.chain_repository import ChainRepository
from services.clock import utcnow
from services.exposure import score_exposure
from services.locks import KeyedLock
from services.narrator import Narrator
from services.voice import (
    JUDGED_EXPOSURE, LEANED_NEAREST, NO_ANSWER, WITHHELD_HALF, line, mask,
)

logger = logging.getLogger(__name__)

# Reveal tiers for mirrored rounds: r < 0.55 both, r < 0.85 winner only, else none
REVEAL_BOTH_BELOW = 0.55
REVEAL_WINNER_BELOW = 0.85


@dataclass
class ScoredAnswer:
    who: str
    text: str
    score: int


def rank_answers(answers: List[Dict[str, Any]], recipients: List[str]) -> List[ScoredAnswer]:
    """
    Score mirrored answers, adding a zero entry for each silent recipient.

    The sort is stable: equal scores keep insertion order (answers in
    arrival order, then no-shows in recipient order).
    """
    entries = [
        ScoredAnswer(who=a["who"], text=a.get("text") or "", score=score_exposure(a.get("text") or ""))
        for a in answers
    ]
    for r in recipients:
        if not any(e.who == r for e in entries):
            entries.append(ScoredAnswer(who=r, text="", score=0))
    return sorted(entries, key=lambda e: e.score, reverse=True)


def quote(entry: ScoredAnswer) -> str:
    return f'— {mask(entry.who)}: "{entry.text or NO_ANSWER}"'


class AdjudicationEngine:
    """Judges a chain and runs its reveal policy"""

    def __init__(
        self,
        chains: ChainRepository,
        narrator: Narrator,
        rng: random.Random,
        locks: KeyedLock,
        reveal_prob: float = 0.72,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.chains = chains
        self.narrator = narrator
        self.rng = rng
        self.locks = locks
        self.reveal_prob = reveal_prob
        self.clock = clock

    def adjudicate(self, chain_id: str) -> Optional[Dict[str, Any]]:
        """
        Judge a chain awaiting answers.

        Returns:
            The persisted verdict, or None if there was nothing to do
        """
        with self.locks.hold(f"chain:{chain_id}"):
            chain = self.chains.get(chain_id)
            if chain is None:
                logger.warning(f"[ADJUDICATE] Chain {chain_id} not found")
                return None
            if chain.status != ChainStatus.AWAITING_ANSWERS.value:
                logger.debug(f"[ADJUDICATE] Skipping {chain_id} in status {chain.status}")
                return None

            answers = self._answers(chain)
            if chain.mode == ChainMode.MIRRORED.value:
                ranked = rank_answers(answers, chain.recipients or [])
                winner = ranked[0]
                loser = ranked[1] if len(ranked) > 1 else None
                result = {
                    "mode": ChainMode.MIRRORED.value,
                    "winner": winner.who,
                    "loser": loser.who if loser else None,
                    "answers": [asdict(e) for e in ranked],
                }
            else:
                last = answers[-1] if answers else None
                ranked = []
                result = {
                    "mode": ChainMode.SINGLE.value,
                    "actor": last["who"] if last else None,
                    "answer": last.get("text") if last else None,
                }

            now = self.clock()
            judged = self.chains.transition(
                chain_id,
                ChainStatus.AWAITING_ANSWERS,
                ChainStatus.ADJUDICATED,
                values={"adjudication": result, "adjudicated_at": now},
                event=ChainEvent(type="adjudicated", at=now, payload={"mode": result["mode"]}),
            )
            if not judged:
                return None

        logger.info(f"[ADJUDICATE] {chain_id} judged ({result['mode']})")
        if chain.mode == ChainMode.MIRRORED.value:
            reveal = self._reveal_mirrored(chain, ranked)
        else:
            reveal = self._reveal_single(chain, result["actor"], result["answer"])
        self.chains.append_event(chain_id, "reveal", self.clock(), reveal)
        return result

    @staticmethod
    def _answers(chain: Chain) -> List[Dict[str, Any]]:
        """Accepted answers from chain recipients, in log order"""
        recipients = chain.recipients or []
        return [
            e.payload for e in chain.events
            if e.type == "answer" and e.payload.get("who") in recipients
        ]

    def _reveal_single(self, chain: Chain, actor: Optional[str], answer: Optional[str]) -> Dict[str, Any]:
        will_reveal = self.rng.random() < self.reveal_prob
        if will_reveal and answer:
            targets = [p for p in chain.participants if p != actor]
            if not targets:
                return {"policy": "exposure", "target": None, "delivered": 0}
            target = self.rng.choice(targets)
            sent = self.narrator.send(target, [
                f'{mask(actor)} → {mask(target)}: "{answer}"',
                JUDGED_EXPOSURE,
            ])
            return {"policy": "exposure", "target": target, "delivered": int(sent.delivered)}

        if actor:
            sent = self.narrator.send(actor, line("closers", self.rng))
            return {"policy": "closer", "target": actor, "delivered": int(sent.delivered)}
        return {"policy": "silence", "target": None, "delivered": 0}

    def _reveal_mirrored(self, chain: Chain, ranked: List[ScoredAnswer]) -> Dict[str, Any]:
        participants = chain.participants
        winner = ranked[0]

        results = self.narrator.send_all(participants, LEANED_NEAREST.format(who=mask(winner.who)))

        r = self.rng.random()
        if r < REVEAL_BOTH_BELOW:
            tier = "both"
            results += self.narrator.send_all(participants, [quote(e) for e in ranked])
        elif r < REVEAL_WINNER_BELOW:
            tier = "winner"
            results += self.narrator.send_all(participants, [quote(winner), WITHHELD_HALF])
        else:
            tier = "none"
            results += [self.narrator.send(p, line("closers", self.rng)) for p in participants]

        return {
            "policy": "mirrored",
            "tier": tier,
            "delivered": sum(1 for s in results if s.delivered),
            "failed": sum(1 for s in results if not s.delivered),
        }
