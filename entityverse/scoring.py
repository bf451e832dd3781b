"""
Pluggable text scoring used by the kernel.

Two interfaces:
- SimilarityScorer: how alike two texts are (0..1). Drives
  ``MemoryStore.find_similar_memory`` and the physical similarity force.
- SalienceScorer: how important a piece of text is to remember (>= 0).
  Drives the salience of messages and speech an entity hears.

Both ship with in-core defaults so a world runs without any external model.
An embedding-backed scorer can replace them by implementing the same method.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from entityverse.logging_utils import LOG_TAG_ERROR, Color, log_once


_TOKEN_RE = re.compile(r"[\w']+", re.UNICODE)


def tokenize(text: str) -> set[str]:
    return {token.lower() for token in _TOKEN_RE.findall(text or "")}


class SimilarityScorer(ABC):
    """Scores similarity between two texts in [0, 1]."""

    @abstractmethod
    def similarity(self, a: str, b: str) -> float:
        """Return similarity in [0, 1]; 1 means identical meaning."""


class TextOverlapScorer(SimilarityScorer):
    """Jaccard overlap of lowercase word tokens."""

    def similarity(self, a: str, b: str) -> float:
        tokens_a = tokenize(a)
        tokens_b = tokenize(b)
        if not tokens_a and not tokens_b:
            return 1.0 if (a or "").strip() == (b or "").strip() else 0.0
        union = tokens_a | tokens_b
        return len(tokens_a & tokens_b) / len(union)


class SalienceRule(BaseModel):
    """A content class that deserves a fixed salience when it matches.

    Rules are evaluated in order and the highest matching salience wins.
    """

    name: str
    pattern: str = Field(..., description="Regular expression searched case-insensitively")
    salience: float = Field(..., ge=0.0, description="Salience assigned on match (may exceed 1)")

    def matches(self, text: str) -> bool:
        return re.search(self.pattern, text, flags=re.IGNORECASE) is not None


class SalienceScorer(ABC):
    """Scores how memorable a piece of text is (>= 0)."""

    @abstractmethod
    def score(self, text: str, *, base: float = 0.5) -> float:
        """Return salience for ``text``; ``base`` is the caller's default."""


# Introductions ("my name is Ada", "call me Ada", "I'm Ada") are the classic
# example of content that should never be forgotten.
NAME_INTRODUCTION_RULE = SalienceRule(
    name="name_introduction",
    pattern=r"\b(my name is|call me|i am called|i'm called|this is)\s+[A-Za-z][\w'-]*",
    salience=1.5,
)
QUESTION_RULE = SalienceRule(name="question", pattern=r"\?\s*$", salience=0.7)

DEFAULT_SALIENCE_RULES: tuple[SalienceRule, ...] = (NAME_INTRODUCTION_RULE, QUESTION_RULE)


class RuleBasedSalienceScorer(SalienceScorer):
    """Default salience policy: configurable rules on top of a length heuristic.

    Longer utterances carry slightly more information, so the base salience
    grows with token count up to ``length_bonus``. Any matching rule overrides
    the heuristic when its salience is higher.
    """

    def __init__(
        self,
        rules: Optional[Iterable[SalienceRule]] = None,
        *,
        length_bonus: float = 0.2,
        saturation_tokens: int = 20,
    ) -> None:
        self.rules: Sequence[SalienceRule] = (
            tuple(rules) if rules is not None else DEFAULT_SALIENCE_RULES
        )
        self.length_bonus = length_bonus
        self.saturation_tokens = max(1, saturation_tokens)

    def score(self, text: str, *, base: float = 0.5) -> float:
        tokens = len(tokenize(text))
        heuristic = base + self.length_bonus * min(1.0, tokens / self.saturation_tokens)
        best = heuristic
        for rule in self.rules:
            if rule.salience > best and rule.matches(text):
                best = rule.salience
        return max(0.0, best)


class FallbackSimilarityScorer(SimilarityScorer):
    """Calls ``primary`` and falls back to ``fallback`` when it raises or returns junk."""

    def __init__(self, primary: SimilarityScorer, fallback: Optional[SimilarityScorer] = None) -> None:
        self.primary = primary
        self.fallback = fallback or TextOverlapScorer()

    def similarity(self, a: str, b: str) -> float:
        try:
            value = float(self.primary.similarity(a, b))
        except Exception as exc:
            _report_fallback("similarity", exc)
            return self.fallback.similarity(a, b)
        if value != value:  # NaN
            return self.fallback.similarity(a, b)
        return min(1.0, max(0.0, value))


class FallbackSalienceScorer(SalienceScorer):
    """Salience counterpart of FallbackSimilarityScorer."""

    def __init__(self, primary: SalienceScorer, fallback: Optional[SalienceScorer] = None) -> None:
        self.primary = primary
        self.fallback = fallback or RuleBasedSalienceScorer()

    def score(self, text: str, *, base: float = 0.5) -> float:
        try:
            value = float(self.primary.score(text, base=base))
        except Exception as exc:
            _report_fallback("salience", exc)
            return self.fallback.score(text, base=base)
        if value != value:
            return self.fallback.score(text, base=base)
        return max(0.0, value)


def _report_fallback(kind: str, exc: Exception) -> None:
    log_once(
        f"scorer-failed:{kind}",
        f"  {LOG_TAG_ERROR} [Scoring] External {kind} scorer failed ({exc}); using built-in heuristic",
        color=Color.RED,
    )
