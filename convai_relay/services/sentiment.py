"""Lexicon-based sentiment scoring for conversation turns.

Every text turn passing through the relay is scored here before it is
appended to the ledger, and feedback text is labelled with the same mood.

Scoring:
- lowercase, split on whitespace, strip surrounding punctuation per token
- ``score`` is the sum of AFINN-165 word polarities (unknown tokens count 0);
  multi-word AFINN phrases never match a single token
- ``comparative`` is ``score / token_count`` (token_count floored at 1)
- mood is taken from the raw ``score``: ``> 0.2`` positive, ``< -0.2``
  negative, anything else (including exactly +/-0.2) neutral
"""

from __future__ import annotations

import string
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Mapping, Optional

from afinn import Afinn

MOOD_POSITIVE = "positive"
MOOD_NEGATIVE = "negative"
MOOD_NEUTRAL = "neutral"

POSITIVE_THRESHOLD: float = 0.2
NEGATIVE_THRESHOLD: float = -0.2


@lru_cache()
def load_lexicon() -> Dict[str, int]:
    """AFINN-165 English word list, polarity in [-5, 5]."""
    return dict(Afinn(language="en")._dict)


# Keep apostrophes so contractions like "don't" survive stripping.
_STRIP_CHARS = string.punctuation.replace("'", "")


@dataclass(frozen=True)
class SentimentResult:
    score: float
    comparative: float
    mood: str

    def as_dict(self) -> Dict[str, object]:
        return {"score": self.score, "comparative": self.comparative, "mood": self.mood}


def classify_mood(value: float) -> str:
    """Map a raw sentiment score onto a mood label."""
    if value > POSITIVE_THRESHOLD:
        return MOOD_POSITIVE
    if value < NEGATIVE_THRESHOLD:
        return MOOD_NEGATIVE
    return MOOD_NEUTRAL


def tokenize(text: str) -> list[str]:
    return [token.strip(_STRIP_CHARS) for token in (text or "").lower().split()]


def score(text: str, lexicon: Optional[Mapping[str, int]] = None) -> SentimentResult:
    """Score ``text`` against ``lexicon`` (AFINN-165 by default). Pure and deterministic."""
    if lexicon is None:
        lexicon = load_lexicon()
    tokens = tokenize(text)
    total = float(sum(lexicon.get(token, 0) for token in tokens))
    comparative = total / max(len(tokens), 1)
    return SentimentResult(score=total, comparative=comparative, mood=classify_mood(total))
