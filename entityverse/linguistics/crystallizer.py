"""
Linguistic crystallization: mining the transcript for shared vocabulary.

On its cadence the crystallizer scans every utterance appended since its
previous run, normalizes the text, and counts each phrase together with
its distinct speakers and mean emotional snapshot. Phrases used at least
``min_usage`` times within the window are upserted into the lexicon.
The lexicon decays on every tick regardless of the cadence.

Categorization is optional. The engine works on frequency alone; a
CategoryTagger only labels what frequency already selected.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from entityverse.cadence import TickInterval
from entityverse.ontology.emotion import EmotionalState
from .lexicon import Lexicon
from .transcript import Transcript, Utterance


def normalize_text(text: str) -> str:
    """Trim, case-fold and collapse internal whitespace."""
    return " ".join(text.strip().casefold().split())


class CategoryTagger(ABC):
    @abstractmethod
    def tag(self, term: str) -> Optional[str]:
        """Return a category label for ``term`` or None."""


class KeywordCategoryTagger(CategoryTagger):
    """Cheap keyword heuristics: greeting, question, affirmation, concern, expression."""

    GREETINGS = ("hello", "hi", "hey", "good morning", "good evening", "bye", "goodbye")
    AFFIRMATIONS = ("yes", "yeah", "ok", "okay", "sure", "agreed", "right")
    CONCERNS = ("worried", "afraid", "scared", "careful", "danger", "help")

    def tag(self, term: str) -> Optional[str]:
        words = set(re.findall(r"[\w']+", term))
        if term.endswith("?"):
            return "question"
        if any((g in term) if " " in g else (g in words) for g in self.GREETINGS):
            return "greeting"
        if words & set(self.AFFIRMATIONS):
            return "affirmation"
        if words & set(self.CONCERNS):
            return "concern"
        if term.endswith("!"):
            return "expression"
        return "statement"


class CrystallizerConfig(BaseModel):
    analyze_every: int = Field(50, ge=1, description="Ticks between transcript scans")
    min_usage: int = Field(3, ge=1, description="Occurrences within a window needed to crystallize")
    min_length: int = Field(2, ge=1)
    max_length: int = Field(100, ge=1)
    min_speakers: int = Field(1, ge=1)
    warm_up_ticks: int = Field(0, ge=0, description="Early ticks that use warm_up_min_usage")
    warm_up_min_usage: Optional[int] = Field(None, ge=1)
    transcript_size: int = Field(1000, ge=1)
    initial_weight: float = Field(0.5, ge=0.0, le=1.0)
    reinforcement: float = Field(0.1, ge=0.0, le=1.0)
    decay_rate: float = Field(0.01, ge=0.0, le=1.0)
    idle_threshold: float = Field(10.0, ge=0.0, description="Seconds without use before decay starts")
    min_weight: float = Field(0.01, ge=0.0, le=1.0)

    def build_lexicon(self) -> Lexicon:
        return Lexicon(
            initial_weight=self.initial_weight,
            reinforcement=self.reinforcement,
            decay_rate=self.decay_rate,
            idle_threshold=self.idle_threshold,
            min_weight=self.min_weight,
        )

    def build_transcript(self) -> Transcript:
        return Transcript(max_size=self.transcript_size)


class CrystallizationReport(BaseModel):
    tick: int
    analyzed: int = 0
    candidates: int = 0
    new_terms: List[str] = Field(default_factory=list)
    reinforced: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class _PhraseStats:
    __slots__ = ("count", "speakers", "valence", "arousal", "dominance")

    def __init__(self) -> None:
        self.count = 0
        self.speakers: List[str] = []
        self.valence = self.arousal = self.dominance = 0.0

    def add(self, utterance: Utterance) -> None:
        self.count += 1
        if utterance.speaker not in self.speakers:
            self.speakers.append(utterance.speaker)
        self.valence += utterance.emotion.valence
        self.arousal += utterance.emotion.arousal
        self.dominance += utterance.emotion.dominance

    def mean_emotion(self) -> EmotionalState:
        n = max(1, self.count)
        return EmotionalState(
            valence=self.valence / n, arousal=self.arousal / n, dominance=self.dominance / n
        )


class Crystallizer:
    """Owns the lexicon and reads the transcript on its own cadence."""

    def __init__(
        self,
        transcript: Transcript,
        lexicon: Lexicon,
        config: Optional[CrystallizerConfig] = None,
        *,
        tagger: Optional[CategoryTagger] = None,
        last_seq: int = 0,
        last_run_tick: Optional[int] = None,
    ) -> None:
        self.transcript = transcript
        self.lexicon = lexicon
        self.config = config or CrystallizerConfig()
        self.tagger = tagger
        self.last_seq = last_seq
        self.last_run_tick = last_run_tick
        self.interval = TickInterval(every=self.config.analyze_every)

    def min_usage_for(self, tick: int) -> int:
        if self.config.warm_up_min_usage is not None and tick <= self.config.warm_up_ticks:
            return self.config.warm_up_min_usage
        return self.config.min_usage

    def step(self, *, tick: int, now: float) -> Optional[CrystallizationReport]:
        """Per-tick entry point: decay always, analyze when due."""

        removed = self.lexicon.decay(now)
        report: Optional[CrystallizationReport] = None
        if self.interval.is_due(tick=tick, last_run_tick=self.last_run_tick):
            report = self.analyze(tick=tick, now=now)
        if removed:
            report = report or CrystallizationReport(tick=tick)
            report.removed = removed
        return report

    def analyze(self, *, tick: int, now: float) -> CrystallizationReport:
        """Scan utterances since the last run and upsert frequent phrases."""

        window = self.transcript.since(self.last_seq)
        report = CrystallizationReport(tick=tick, analyzed=len(window))
        phrases: Dict[str, _PhraseStats] = {}
        for utterance in window:
            phrase = normalize_text(utterance.text)
            if not (self.config.min_length <= len(phrase) <= self.config.max_length):
                continue
            phrases.setdefault(phrase, _PhraseStats()).add(utterance)

        threshold = self.min_usage_for(tick)
        for phrase, stats in phrases.items():
            if stats.count < threshold or len(stats.speakers) < self.config.min_speakers:
                continue
            report.candidates += 1
            category = self.tagger.tag(phrase) if self.tagger is not None else None
            _, created = self.lexicon.upsert(
                phrase,
                origin=stats.speakers[0],
                count=stats.count,
                speakers=stats.speakers,
                emotion=stats.mean_emotion(),
                now=now,
                category=category,
            )
            (report.new_terms if created else report.reinforced).append(phrase)

        if window:
            self.last_seq = window[-1].seq
        self.last_run_tick = tick
        return report
