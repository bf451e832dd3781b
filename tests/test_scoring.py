"""Tests for similarity and salience scoring and their fallbacks."""

import contextlib
import io
import math

import pytest

from entityverse.logging_utils import reset_log_once
from entityverse.scoring import (
    DEFAULT_SALIENCE_RULES,
    FallbackSalienceScorer,
    FallbackSimilarityScorer,
    RuleBasedSalienceScorer,
    SalienceRule,
    SalienceScorer,
    SimilarityScorer,
    TextOverlapScorer,
)


class BrokenSimilarity(SimilarityScorer):
    def similarity(self, a: str, b: str) -> float:
        raise RuntimeError("embedding service down")


class NaNSalience(SalienceScorer):
    def score(self, text: str, *, base: float = 0.5) -> float:
        return math.nan


def test_text_overlap_is_jaccard():
    scorer = TextOverlapScorer()
    assert scorer.similarity("hello there", "hello there") == 1.0
    assert scorer.similarity("hello there", "hello friend") == pytest.approx(1 / 3)
    assert scorer.similarity("", "") == 1.0
    assert scorer.similarity("", "x") == 0.0


def test_name_introduction_outranks_ordinary_speech():
    scorer = RuleBasedSalienceScorer()
    ordinary = scorer.score("nice weather today")
    named = scorer.score("Hello, my name is Ada")

    assert named == pytest.approx(1.5)
    assert named > 1.0 > ordinary


def test_question_rule_and_length_heuristic():
    scorer = RuleBasedSalienceScorer()
    assert scorer.score("where is the bakery?") == pytest.approx(0.7)
    assert scorer.score("") == pytest.approx(0.5)


def test_name_rule_is_removable():
    rules = [r for r in DEFAULT_SALIENCE_RULES if r.name != "name_introduction"]
    scorer = RuleBasedSalienceScorer(rules)
    assert scorer.score("my name is Ada") < 1.0


def test_custom_rule():
    scorer = RuleBasedSalienceScorer([SalienceRule(name="danger", pattern=r"\bfire\b", salience=2.0)])
    assert scorer.score("FIRE in the mill") == pytest.approx(2.0)


def test_failing_similarity_scorer_falls_back_and_logs_once():
    reset_log_once()
    scorer = FallbackSimilarityScorer(BrokenSimilarity())

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        first = scorer.similarity("hello there", "hello there")
        scorer.similarity("a", "b")

    assert first == 1.0
    out = buf.getvalue()
    assert out.count("[!] [Scoring] External similarity scorer failed") == 1


def test_nan_salience_falls_back_to_rules():
    scorer = FallbackSalienceScorer(NaNSalience())
    assert scorer.score("my name is Ada") == pytest.approx(1.5)
