"""
Shared, decaying vocabulary crystallized from the transcript.

Weights live in [0, 1]. A term that keeps being used climbs toward 1; a
term nobody says for longer than ``idle_threshold`` seconds loses a
fraction ``decay_rate`` of its weight every tick and is deleted once it
falls under ``min_weight``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from entityverse.ontology.emotion import EmotionalState, emotion_distance


EMOTION_SMOOTHING = 0.3


class LexiconEntry(BaseModel):
    term: str
    origin: str = Field(..., description="Speaker who first used the term")
    usage_count: int = Field(0, ge=0)
    first_seen: float = 0.0
    last_seen: float = 0.0
    weight: float = Field(0.5, ge=0.0, le=1.0)
    emotion: EmotionalState = Field(default_factory=EmotionalState)
    speakers: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class LexiconStats(BaseModel):
    total_terms: int = 0
    total_usage: int = 0
    average_weight: float = 0.0
    categories: Dict[str, int] = Field(default_factory=dict)


class Lexicon:
    """Term -> LexiconEntry map with reinforcement and idle decay."""

    def __init__(
        self,
        *,
        initial_weight: float = 0.5,
        reinforcement: float = 0.1,
        decay_rate: float = 0.01,
        idle_threshold: float = 10.0,
        min_weight: float = 0.01,
    ) -> None:
        self.initial_weight = initial_weight
        self.reinforcement = reinforcement
        self.decay_rate = decay_rate
        self.idle_threshold = idle_threshold
        self.min_weight = min_weight
        self.entries: Dict[str, LexiconEntry] = {}

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, term: str) -> bool:
        return term in self.entries

    def get(self, term: str) -> Optional[LexiconEntry]:
        return self.entries.get(term)

    def upsert(
        self,
        term: str,
        *,
        origin: str,
        count: int,
        speakers: List[str],
        emotion: EmotionalState,
        now: float,
        category: Optional[str] = None,
    ) -> tuple[LexiconEntry, bool]:
        """Insert a new term or reinforce an existing one.

        Returns:
            (entry, created)
        """
        entry = self.entries.get(term)
        if entry is None:
            entry = LexiconEntry(
                term=term,
                origin=origin,
                usage_count=count,
                first_seen=now,
                last_seen=now,
                weight=self.initial_weight,
                emotion=emotion.model_copy(),
                speakers=sorted(set(speakers)),
                category=category,
            )
            self.entries[term] = entry
            return entry, True

        entry.usage_count += 1
        entry.weight = min(1.0, entry.weight + self.reinforcement)
        entry.last_seen = now
        entry.speakers = sorted(set(entry.speakers) | set(speakers))
        a = EMOTION_SMOOTHING
        entry.emotion = EmotionalState(
            valence=entry.emotion.valence * (1 - a) + emotion.valence * a,
            arousal=entry.emotion.arousal * (1 - a) + emotion.arousal * a,
            dominance=entry.emotion.dominance * (1 - a) + emotion.dominance * a,
        )
        if category and not entry.category:
            entry.category = category
        return entry, False

    def decay(self, now: float) -> List[str]:
        """Decay idle entries once; return the terms that were removed."""

        removed: List[str] = []
        for term in list(self.entries):
            entry = self.entries[term]
            if now - entry.last_seen <= self.idle_threshold:
                continue
            entry.weight = max(0.0, entry.weight * (1.0 - self.decay_rate))
            if entry.weight < self.min_weight:
                del self.entries[term]
                removed.append(term)
        return removed

    def popular(self, limit: int = 10) -> List[LexiconEntry]:
        ranked = sorted(self.entries.values(), key=lambda e: (-e.weight, -e.usage_count, e.term))
        return ranked[:limit]

    def by_category(self, category: str) -> List[LexiconEntry]:
        return sorted(
            (e for e in self.entries.values() if e.category == category),
            key=lambda e: (-e.weight, e.term),
        )

    def recent(self, limit: int = 10) -> List[LexiconEntry]:
        ranked = sorted(self.entries.values(), key=lambda e: (-e.last_seen, e.term))
        return ranked[:limit]

    def closest(self, emotion: EmotionalState, limit: int = 5) -> List[LexiconEntry]:
        """Entries whose emotional context best matches ``emotion``, weight breaking ties."""

        ranked = sorted(
            self.entries.values(),
            key=lambda e: (emotion_distance(e.emotion, emotion) - e.weight * 0.1, e.term),
        )
        return ranked[:limit]

    def stats(self) -> LexiconStats:
        stats = LexiconStats(total_terms=len(self.entries))
        if not self.entries:
            return stats
        stats.total_usage = sum(e.usage_count for e in self.entries.values())
        stats.average_weight = sum(e.weight for e in self.entries.values()) / len(self.entries)
        for entry in self.entries.values():
            key = entry.category or "uncategorized"
            stats.categories[key] = stats.categories.get(key, 0) + 1
        return stats

    def load(self, entries: List[LexiconEntry]) -> None:
        self.entries = {entry.term: entry for entry in entries}
