"""
Narrator voice corpus (lower-case, third-person, existential tone)

Dread is fictional. Dread narrates timing tension. Dread never tells a
human who they are.
"""
import random
from typing import Optional

CORPUS = {
    "normal": [
        "dread watches pattern.",
        "small truths surface under a short clock.",
        "most answers arrive before the mask can be fixed.",
        "dread is a game. humans are the story.",
        "brevity uncovers what polish conceals.",
    ],
    "closers": [
        "silence.",
        "it is enough.",
        "the moment passed.",
    ],
    "arrival": [
        "dread has arrived.",
        "dread knows his name. dread knows…",
    ],
}

# Fixed lines
WHISPER_WAITS = "a whisper waits. open now: {link}"
JUDGED_EXPOSURE = "dread has judged the exposure."
LEANED_NEAREST = "{who} leaned nearest the abyss."
WITHHELD_HALF = "dread withheld the other half."
NO_ANSWER = "[no answer]"
LEFT_CIRCLE = "you have left the circle."
MAY_BE_MARKED = "you may be marked."
MARKED_PROMPT = ["you have been marked for possible whispers.", "reply exactly: I CONSENT TO DREAD"]
CONSENT_PHRASE = "i consent to dread"
WEAR_THE_NAME = "you wear the name. seven days."
BEARER_CHOSEN = "dread has chosen a bearer."
CALLS_THE_PHRASE = "dread calls the phrase."
ANSWER_RECORDED = "answer recorded."


def line(kind: str, rng: random.Random) -> str:
    """Pick one line of the given corpus kind"""
    return rng.choice(CORPUS[kind])


def mask(phone: Optional[str]) -> str:
    """Hide the middle of a phone number: +1323555012 -> +13235••12"""
    if not phone:
        return ""
    return f"{phone[:-4]}••{phone[-2:]}"


def dread_header(alias: Optional[str] = None) -> str:
    return f"Dread ({alias}):" if alias else "Dread:"
