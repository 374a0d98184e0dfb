"""
Exposure score heuristic for mirrored adjudication

Higher score = more emotionally exposed text. The constants are part of the
game rules; changing any of them changes verdicts.
"""
import math
import re
from typing import Optional

LENGTH_POINTS = 30
LENGTH_CAP = 200
FIRST_PERSON_POINTS = 8
VULNERABILITY_POINTS = 12
EXCLAMATION_PENALTY = 6

# Leftmost alternation: "i am" and "i'm" both count once, as "i"
FIRST_PERSON_RE = re.compile(r"\b(i|i'm|i am|me|my|mine)\b", re.ASCII)

VULNERABILITY_KEYWORDS = (
    "ashamed",
    "sorry",
    "regret",
    "fear",
    "alone",
    "embarrass",
    "hid",
    "secret",
)


def utf16_length(text: str) -> int:
    """Length in UTF-16 code units; characters outside the BMP count twice"""
    return len(text.encode("utf-16-le")) // 2


def score_exposure(text: Optional[str]) -> int:
    """
    Score how exposed an answer is.

    Args:
        text: Answer text (None or empty scores 0)

    Returns:
        Non-negative integer score
    """
    if not text:
        return 0

    t = text.lower()
    score = min(1.0, utf16_length(t) / LENGTH_CAP) * LENGTH_POINTS
    score += len(FIRST_PERSON_RE.findall(t)) * FIRST_PERSON_POINTS
    score += sum(1 for word in VULNERABILITY_KEYWORDS if word in t) * VULNERABILITY_POINTS
    score -= t.count("!") * EXCLAMATION_PENALTY

    # Round half up, then floor at zero
    return max(0, int(math.floor(score + 0.5)))
