"""
Capacity-bounded, decaying memory store for entities.

A MemoryStore is a plain list of Memory records plus a fixed capacity.
Key behaviours:
- remember(): insert; past capacity the lowest-salience memory is evicted
  (ties go to the oldest), so important memories survive a flood of trivia
- decay(): salience *= exp(-rate * dt), never below zero
- forget(): drop memories whose salience fell under a threshold
- find_similar_memory(): best match above a threshold according to a
  pluggable SimilarityScorer, enabling "boost instead of duplicate"
- consolidate(): collapse recurring (type, subject) groups into one
  stronger memory so growth stays bounded while themes persist

Salience is unbounded above on purpose: rules such as name introductions
assign values > 1 so those memories outlive ordinary ones.
"""

from __future__ import annotations

import json
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from entityverse.scoring import SimilarityScorer, TextOverlapScorer


class MemoryType(str, Enum):
    INTERACTION = "interaction"
    EMOTION = "emotion"
    OBSERVATION = "observation"
    FIELD = "field"
    MESSAGE = "message"
    SPEECH = "speech"
    SPAWN = "spawn"
    INTENT_CHANGE = "intent_change"
    CUSTOM = "custom"


class Memory(BaseModel):
    """A single remembered event."""

    id: str = Field(..., description="Unique id, '<owner>:m<n>' for locally formed memories")
    memory_type: MemoryType = Field(MemoryType.CUSTOM, description="Type tag")
    subject: Optional[str] = Field(None, description="Entity/field/term the memory is about")
    content: Any = Field(None, description="Opaque payload")
    timestamp: float = Field(0.0, description="World time (seconds) when formed")
    salience: float = Field(0.5, ge=0.0, description="Importance; decays over time")
    rehearsals: int = Field(0, ge=0, description="How often the memory was reinforced")
    origin: Optional[str] = Field(None, description="Entity that first formed the memory")

    def describe(self) -> str:
        """Text form used for similarity scoring."""
        if isinstance(self.content, str):
            body = self.content
        elif self.content is None:
            body = ""
        else:
            body = json.dumps(self.content, sort_keys=True, default=str)
        subject = self.subject or ""
        return f"{self.memory_type.value} {subject} {body}".strip()


class ConsolidationReport(BaseModel):
    groups_merged: int = 0
    memories_removed: int = 0


def _merge_content(memories: List[Memory]) -> Any:
    contents = [m.content for m in sorted(memories, key=lambda m: m.timestamp)]
    if all(isinstance(c, dict) for c in contents):
        merged: Dict[str, Any] = {}
        for content in contents:
            merged.update(content)
        return merged
    distinct: List[Any] = []
    for content in contents:
        if content not in distinct:
            distinct.append(content)
    return distinct[0] if len(distinct) == 1 else distinct


class MemoryStore(BaseModel):
    """Fixed-capacity list of memories owned by one entity."""

    capacity: int = Field(100, ge=1)
    memories: List[Memory] = Field(default_factory=list)
    formed_count: int = Field(0, ge=0, description="Counter used to mint local memory ids")

    def __len__(self) -> int:
        return len(self.memories)

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def form(
        self,
        owner_id: str,
        *,
        memory_type: MemoryType,
        subject: Optional[str],
        content: Any,
        timestamp: float,
        salience: float,
    ) -> Tuple[Memory, Optional[Memory]]:
        """Create a new memory owned by ``owner_id`` and insert it.

        Returns:
            (memory, evicted) where evicted may be the new memory itself if it
            was the weakest entry in a full store
        """
        self.formed_count += 1
        memory = Memory(
            id=f"{owner_id}:m{self.formed_count}",
            memory_type=memory_type,
            subject=subject,
            content=content,
            timestamp=timestamp,
            salience=max(0.0, salience),
            origin=owner_id,
        )
        return memory, self.remember(memory)

    def remember(self, memory: Memory) -> Optional[Memory]:
        """Insert ``memory``; return the evicted memory when over capacity."""

        self.memories.append(memory)
        if len(self.memories) <= self.capacity:
            return None

        victim_index = min(
            range(len(self.memories)),
            key=lambda i: (self.memories[i].salience, self.memories[i].timestamp, i),
        )
        return self.memories.pop(victim_index)

    def contains(self, memory_id: str) -> bool:
        return any(m.id == memory_id for m in self.memories)

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def find_similar_memory(
        self,
        probe: str,
        threshold: float,
        *,
        scorer: Optional[SimilarityScorer] = None,
        memory_type: Optional[MemoryType] = None,
        subject: Optional[str] = None,
    ) -> Optional[Memory]:
        """Return the most similar memory scoring at least ``threshold``."""

        scorer = scorer or TextOverlapScorer()
        best: Optional[Memory] = None
        best_score = -1.0
        for memory in self.memories:
            if memory_type is not None and memory.memory_type != memory_type:
                continue
            if subject is not None and memory.subject != subject:
                continue
            score = scorer.similarity(probe, memory.describe())
            if score >= threshold and score > best_score:
                best, best_score = memory, score
        return best

    def reinforce(self, memory: Memory, boost: float) -> Memory:
        """Raise salience of an existing memory (ordinary memories stay <= 1)."""

        cap = max(1.0, memory.salience)
        memory.salience = min(cap, memory.salience + max(0.0, boost))
        memory.rehearsals += 1
        return memory

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def decay(self, dt: float, rate: float) -> None:
        """Exponential decay of every salience by ``exp(-rate * dt)``."""

        if dt <= 0 or rate <= 0:
            return
        factor = math.exp(-rate * dt)
        for memory in self.memories:
            memory.salience = max(0.0, memory.salience * factor)

    def forget(self, threshold: float = 0.1) -> List[Memory]:
        """Remove memories with salience below ``threshold``; return them."""

        kept: List[Memory] = []
        dropped: List[Memory] = []
        for memory in self.memories:
            (dropped if memory.salience < threshold else kept).append(memory)
        self.memories = kept
        return dropped

    def consolidate(
        self,
        *,
        min_combined_salience: float = 1.0,
        boost: float = 0.1,
    ) -> ConsolidationReport:
        """Merge memories sharing (type, subject) into one stronger memory.

        A group qualifies when it has at least two members and their summed
        salience reaches ``min_combined_salience``. The strongest member
        survives, absorbing the others' content and rehearsals, and gains
        ``boost`` per absorbed memory (ordinary memories capped at 1).
        """
        groups: Dict[Tuple[str, Optional[str]], List[Memory]] = {}
        for memory in self.memories:
            groups.setdefault((memory.memory_type.value, memory.subject), []).append(memory)

        report = ConsolidationReport()
        absorbed_ids: set[str] = set()
        for members in groups.values():
            if len(members) < 2:
                continue
            if sum(m.salience for m in members) < min_combined_salience:
                continue

            strongest = max(members, key=lambda m: (m.salience, -m.timestamp))
            others = [m for m in members if m is not strongest]
            cap = max(1.0, strongest.salience)
            strongest.content = _merge_content(members)
            strongest.timestamp = min(m.timestamp for m in members)
            strongest.rehearsals += sum(m.rehearsals for m in others) + len(others)
            strongest.salience = min(cap, strongest.salience + boost * len(others))
            absorbed_ids.update(m.id for m in others)
            report.groups_merged += 1
            report.memories_removed += len(others)

        if absorbed_ids:
            self.memories = [m for m in self.memories if m.id not in absorbed_ids]
        return report

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def recall(
        self,
        *,
        memory_type: Optional[MemoryType] = None,
        subject: Optional[str] = None,
        min_salience: Optional[float] = None,
        since: Optional[float] = None,
        before: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """Filter memories, most salient (then most recent) first."""

        results = [
            m
            for m in self.memories
            if (memory_type is None or m.memory_type == memory_type)
            and (subject is None or m.subject == subject)
            and (min_salience is None or m.salience >= min_salience)
            and (since is None or m.timestamp >= since)
            and (before is None or m.timestamp < before)
        ]
        results.sort(key=lambda m: (-m.salience, -m.timestamp))
        return results[:limit] if limit is not None else results

    def strength_for(self, subject: str) -> float:
        """Aggregate memory strength about ``subject`` in [0, 1]."""

        total = sum(m.salience for m in self.memories if m.subject == subject)
        return min(1.0, total / self.capacity)

    def average_salience(self) -> float:
        if not self.memories:
            return 0.0
        return sum(m.salience for m in self.memories) / len(self.memories)
