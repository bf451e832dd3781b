"""
Entity: the unit of the simulated population.

An entity always has a position and an emotional state. Memory,
relationships, learning and a replicated memory log are optional
capabilities; each is a typed sub-record that is ``None`` when disabled,
and every phase short-circuits on ``None``.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from entityverse.ontology.emotion import EmotionalState, EmotionDelta
from entityverse.ontology.learning import LearningState, Outcome
from entityverse.ontology.memory import Memory, MemoryStore, MemoryType
from entityverse.ontology.relationships import RelationshipTable
from entityverse.schemas import Message
from entityverse.scoring import SimilarityScorer
from entityverse.sync.memory_log import MemoryLog
from entityverse.sync.trust import PrivacySettings


class Entity(BaseModel):
    """Full mutable state of one entity."""

    id: str
    definition: Optional[str] = Field(None, description="Name of the EntityDefinition it was spawned from")
    essence: Optional[str] = Field(None, description="Text used by the physical similarity force")

    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    age: float = Field(0.0, ge=0.0, description="Seconds since spawn")

    emotion: EmotionalState = Field(default_factory=EmotionalState)
    baseline: EmotionalState = Field(default_factory=EmotionalState)

    memory: Optional[MemoryStore] = None
    relationships: Optional[RelationshipTable] = None
    learning: Optional[LearningState] = None
    memory_log: Optional[MemoryLog] = None
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)

    outbox: List[Message] = Field(default_factory=list, description="Queued for the next Relational phase")
    inbox: List[Message] = Field(default_factory=list, description="Most recent delivered messages")

    faults: int = Field(0, ge=0, description="Per-tick failures isolated by the scheduler")
    # Transient: not serialized into snapshots.
    last_error: Optional[str] = Field(None, exclude=True)

    # ------------------------------------------------------------------
    # Relationship helpers
    # ------------------------------------------------------------------

    def trust_in(self, peer_id: str) -> float:
        if self.relationships is None:
            return 0.0
        return self.relationships.trust_of(peer_id)

    def strength_with(self, peer_id: str) -> float:
        if self.relationships is None:
            return 0.0
        return self.relationships.strength_of(peer_id)

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def apply_emotion(self, delta: EmotionDelta) -> None:
        self.emotion.apply_delta(delta)

    def remember(
        self,
        memory_type: MemoryType,
        *,
        subject: Optional[str],
        content: Any,
        timestamp: float,
        salience: float,
        scorer: Optional[SimilarityScorer] = None,
        merge_threshold: Optional[float] = None,
        boost: float = 0.05,
    ) -> Optional[Memory]:
        """Form a memory, or reinforce a similar one when ``merge_threshold`` is set.

        Newly stored memories are also appended to the memory log (if any);
        reinforcement is local only.
        """
        if self.memory is None:
            return None

        if merge_threshold is not None:
            probe = Memory(
                id="probe", memory_type=memory_type, subject=subject, content=content
            ).describe()
            existing = self.memory.find_similar_memory(
                probe,
                merge_threshold,
                scorer=scorer,
                memory_type=memory_type,
                subject=subject,
            )
            if existing is not None:
                return self.memory.reinforce(existing, boost)

        memory, evicted = self.memory.form(
            self.id,
            memory_type=memory_type,
            subject=subject,
            content=content,
            timestamp=timestamp,
            salience=salience,
        )
        if evicted is memory:
            return None
        if self.memory_log is not None:
            self.memory_log.append(memory, timestamp)
        return memory

    def record_outcome(self, action: str, reward: float, *, timestamp: float = 0.0) -> bool:
        if self.learning is None:
            return False
        self.learning.record(
            Outcome(action=action, reward=max(-1.0, min(1.0, reward)), timestamp=timestamp)
        )
        return True

    def receive(self, message: Message, *, inbox_size: int) -> None:
        self.inbox.append(message)
        if len(self.inbox) > inbox_size:
            self.inbox = self.inbox[-inbox_size:]
