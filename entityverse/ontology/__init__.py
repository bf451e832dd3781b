"""Per-entity state: emotion, memory, relationships, learning."""

from .emotion import (
    EmotionalState,
    EmotionDelta,
    EMOTION_BASELINES,
    NEUTRAL,
    blend_emotions,
    emotion_distance,
    preset,
)
from .memory import Memory, MemoryStore, MemoryType, ConsolidationReport
from .relationships import (
    DECAY_PRESETS,
    DecayConfig,
    DecayCurve,
    DecayStats,
    Relationship,
    RelationshipTable,
    RelationshipTransition,
)
from .learning import LearningState, Outcome

__all__ = [
    "EmotionalState",
    "EmotionDelta",
    "EMOTION_BASELINES",
    "NEUTRAL",
    "blend_emotions",
    "emotion_distance",
    "preset",
    "Memory",
    "MemoryStore",
    "MemoryType",
    "ConsolidationReport",
    "DECAY_PRESETS",
    "DecayConfig",
    "DecayCurve",
    "DecayStats",
    "Relationship",
    "RelationshipTable",
    "RelationshipTransition",
    "LearningState",
    "Outcome",
]
