"""
Recipient selection for a firing chain
"""
import logging
import random
from typing import List, Sequence

logger = logging.getLogger(__name__)


def select_recipients(participants: Sequence[str], mirrored: bool, rng: random.Random) -> List[str]:
    """
    Pick one recipient (single) or two (mirrored).

    Mirrored rounds re-pick the second slot until it differs from the first.
    With a single distinct participant both slots hold the same phone.
    """
    if not participants:
        raise ValueError("no participants to choose from")

    first = rng.choice(participants)
    if not mirrored:
        return [first]

    if len(set(participants)) < 2:
        logger.warning("[CHAIN] Mirrored round with one distinct participant; both slots collapse")
        return [first, first]

    second = rng.choice(participants)
    while second == first:
        second = rng.choice(participants)
    return [first, second]
