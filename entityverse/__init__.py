"""
Entityverse - a kernel for emergent populations.

Entities with emotion, memory and relationships move through a world,
talk, bond, share memories under trust rules, and grow a shared vocabulary.

No file I/O required. No database required. No global config.
All collaborators injected by the user.
"""

__version__ = "0.1.0"

# Main simulation components
from .world import World, UnknownEntityError, UnknownDefinitionError
from .config import Config

# Per-entity state
from .entity import Entity
from .ontology import (
    EmotionalState,
    EmotionDelta,
    EMOTION_BASELINES,
    Memory,
    MemoryStore,
    MemoryType,
    DECAY_PRESETS,
    DecayConfig,
    DecayCurve,
    Relationship,
    RelationshipTable,
    LearningState,
    Outcome,
)

# Core schemas
from .schemas import (
    WorldConfig,
    PhysicsConfig,
    MentalConfig,
    RelationalConfig,
    Message,
    MessageKind,
    MessagePriority,
    WorldField,
    WorldEvent,
    TickReport,
    Trigger,
    Capabilities,
    EntityDefinition,
)

# Collaborator interfaces
from .scoring import (
    SimilarityScorer,
    TextOverlapScorer,
    SalienceScorer,
    SalienceRule,
    RuleBasedSalienceScorer,
    DEFAULT_SALIENCE_RULES,
)
from .generation import (
    LanguageGenerator,
    LexiconPhraseGenerator,
    LLMLanguageGenerator,
    GenerationContext,
)

# Language and memory replication
from .linguistics import (
    Transcript,
    Utterance,
    Lexicon,
    LexiconEntry,
    Crystallizer,
    CrystallizerConfig,
    CategoryTagger,
    KeywordCategoryTagger,
)
from .sync import (
    VectorClock,
    MemoryLog,
    MemoryLogEntry,
    InvalidLogError,
    merge_logs,
    PrivacySettings,
    SharePolicy,
    TrustConfig,
    TrustGate,
    MemorySync,
)

# Persistence
from .persistence import (
    PersistenceStrategy,
    InMemoryPersistence,
    JsonPersistence,
    WorldSnapshot,
    SnapshotError,
)

# Population loader helpers
from .scenario import load_population, PopulationLoader

__all__ = [
    # Main class
    "World",
    "UnknownEntityError",
    "UnknownDefinitionError",
    "Config",
    # Entity state
    "Entity",
    "EmotionalState",
    "EmotionDelta",
    "EMOTION_BASELINES",
    "Memory",
    "MemoryStore",
    "MemoryType",
    "DECAY_PRESETS",
    "DecayConfig",
    "DecayCurve",
    "Relationship",
    "RelationshipTable",
    "LearningState",
    "Outcome",
    # World schemas
    "WorldConfig",
    "PhysicsConfig",
    "MentalConfig",
    "RelationalConfig",
    "Message",
    "MessageKind",
    "MessagePriority",
    "WorldField",
    "WorldEvent",
    "TickReport",
    "Trigger",
    "Capabilities",
    "EntityDefinition",
    # Collaborators
    "SimilarityScorer",
    "TextOverlapScorer",
    "SalienceScorer",
    "SalienceRule",
    "RuleBasedSalienceScorer",
    "DEFAULT_SALIENCE_RULES",
    "LanguageGenerator",
    "LexiconPhraseGenerator",
    "LLMLanguageGenerator",
    "GenerationContext",
    # Linguistics
    "Transcript",
    "Utterance",
    "Lexicon",
    "LexiconEntry",
    "Crystallizer",
    "CrystallizerConfig",
    "CategoryTagger",
    "KeywordCategoryTagger",
    # Memory replication
    "VectorClock",
    "MemoryLog",
    "MemoryLogEntry",
    "InvalidLogError",
    "merge_logs",
    "PrivacySettings",
    "SharePolicy",
    "TrustConfig",
    "TrustGate",
    "MemorySync",
    # Persistence
    "PersistenceStrategy",
    "InMemoryPersistence",
    "JsonPersistence",
    "WorldSnapshot",
    "SnapshotError",
    # Population helpers
    "load_population",
    "PopulationLoader",
]
