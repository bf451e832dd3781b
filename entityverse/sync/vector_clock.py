"""Vector clocks for causal ordering of memory log entries."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable

from pydantic import BaseModel, Field


class ClockOrder(str, Enum):
    EQUAL = "equal"
    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"


class VectorClock(BaseModel):
    """One non-negative counter per replica id; missing ids count as zero."""

    counters: Dict[str, int] = Field(default_factory=dict)

    def get(self, replica_id: str) -> int:
        return self.counters.get(replica_id, 0)

    def increment(self, replica_id: str) -> "VectorClock":
        """Return a new clock with ``replica_id`` advanced by one."""

        counters = dict(self.counters)
        counters[replica_id] = counters.get(replica_id, 0) + 1
        return VectorClock(counters=counters)

    def merged(self, other: "VectorClock") -> "VectorClock":
        """Element-wise maximum."""

        counters = dict(self.counters)
        for replica_id, value in other.counters.items():
            if value > counters.get(replica_id, 0):
                counters[replica_id] = value
        return VectorClock(counters=counters)

    def compare(self, other: "VectorClock") -> ClockOrder:
        less = greater = False
        for replica_id in set(self.counters) | set(other.counters):
            mine, theirs = self.get(replica_id), other.get(replica_id)
            if mine < theirs:
                less = True
            elif mine > theirs:
                greater = True
        if less and greater:
            return ClockOrder.CONCURRENT
        if less:
            return ClockOrder.BEFORE
        if greater:
            return ClockOrder.AFTER
        return ClockOrder.EQUAL

    def dominates(self, other: "VectorClock") -> bool:
        """True when every counter of ``other`` is <= the matching counter here."""

        return self.compare(other) in (ClockOrder.AFTER, ClockOrder.EQUAL)

    def total(self) -> int:
        return sum(self.counters.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorClock):
            return NotImplemented
        return self.compare(other) is ClockOrder.EQUAL

    def __hash__(self) -> int:
        return hash(tuple(sorted((k, v) for k, v in self.counters.items() if v)))


def merge_clocks(clocks: Iterable[VectorClock]) -> VectorClock:
    result = VectorClock()
    for clock in clocks:
        result = result.merged(clock)
    return result
