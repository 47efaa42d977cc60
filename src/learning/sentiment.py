"""Keyword-based sentiment scoring for activity feedback.

A deliberately simple lexicon heuristic. Anything implementing
``SentimentClassifier`` (e.g. a real NLP service) can be passed to the
updater in its place.
"""

import string
from dataclasses import dataclass, field
from typing import Optional, Protocol

from shared_types import Mood

# Lexicon-based sentiment (no external deps needed)
POSITIVE_WORDS = frozenset({
    "great", "amazing", "fantastic", "loved", "enjoyed", "perfect", "excellent",
    "wonderful", "good", "happy", "excited", "proud", "accomplished", "progress",
    "success", "win", "awesome", "love", "enjoy", "productive", "motivated",
    "inspired", "grateful", "confident", "breakthrough", "achieved", "improved",
    "energized", "satisfied", "fun", "rewarding", "focused",
})

NEGATIVE_WORDS = frozenset({
    "terrible", "awful", "hated", "difficult", "frustrating", "boring", "hard",
    "challenging", "bad", "frustrated", "stuck", "stressed", "anxious",
    "overwhelmed", "exhausted", "failed", "struggling", "confused", "worried",
    "disappointed", "tired", "impossible", "unmotivated", "drained", "annoyed",
    "painful", "hopeless",
})

MOOD_THRESHOLD = 0.3
SCORE_SCALE = 10

_STRIP = string.punctuation + "“”‘’"


@dataclass(frozen=True)
class SentimentResult:
    score: float = 0.0  # -1 to 1
    mood: Mood = Mood.NEUTRAL
    keywords: list[str] = field(default_factory=list)


class SentimentClassifier(Protocol):
    def classify(self, text: Optional[str]) -> SentimentResult: ...


class LexiconSentimentClassifier:
    """Scores text by counting positive/negative lexicon hits.

    score = clamp((positive - negative) / max(1, tokens) * 10, -1, 1)
    """

    def __init__(
        self,
        positive: frozenset[str] = POSITIVE_WORDS,
        negative: frozenset[str] = NEGATIVE_WORDS,
    ):
        self.positive = positive
        self.negative = negative

    def classify(self, text: Optional[str]) -> SentimentResult:
        if not text or not isinstance(text, str):
            return SentimentResult()

        tokens = text.lower().split()
        raw = 0
        keywords: list[str] = []
        for token in tokens:
            word = token.strip(_STRIP)
            if word in self.positive:
                raw += 1
                keywords.append(word)
            elif word in self.negative:
                raw -= 1
                keywords.append(word)

        score = max(-1.0, min(1.0, raw / max(1, len(tokens)) * SCORE_SCALE))

        if score > MOOD_THRESHOLD:
            mood = Mood.POSITIVE
        elif score < -MOOD_THRESHOLD:
            mood = Mood.NEGATIVE
        else:
            mood = Mood.NEUTRAL

        return SentimentResult(score=score, mood=mood, keywords=keywords)


_default = LexiconSentimentClassifier()


def classify(text: Optional[str]) -> SentimentResult:
    """Classify with the default lexicon classifier."""
    return _default.classify(text)
