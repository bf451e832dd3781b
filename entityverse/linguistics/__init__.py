"""Emergent vocabulary: transcript, lexicon and crystallizer."""

from .transcript import Transcript, Utterance
from .lexicon import Lexicon, LexiconEntry, LexiconStats
from .crystallizer import (
    CategoryTagger,
    CrystallizationReport,
    Crystallizer,
    CrystallizerConfig,
    KeywordCategoryTagger,
    normalize_text,
)

__all__ = [
    "Transcript",
    "Utterance",
    "Lexicon",
    "LexiconEntry",
    "LexiconStats",
    "CategoryTagger",
    "CrystallizationReport",
    "Crystallizer",
    "CrystallizerConfig",
    "KeywordCategoryTagger",
    "normalize_text",
]
