"""
Conflict-free replicated memory log.

Each entity appends the memories it forms to its own log. Every append is
stamped with the author's vector clock, and the entry id is
``"<author>:<seq>"`` where ``seq`` is the author's own counter in that clock.
Entries are immutable, so two logs merge by id-keyed set union and the
summary clock is the element-wise maximum. That makes merge a join:
commutative, associative and idempotent.

A log that carries two different entries under one id, or an entry whose
id disagrees with its clock, is corrupt. Such input is rejected with
InvalidLogError before the receiving log is touched.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from entityverse.ontology.memory import Memory
from .vector_clock import ClockOrder, VectorClock, merge_clocks


class InvalidLogError(ValueError):
    """Raised when a memory log or entry batch is corrupted.

    The receiving log is never mutated when this is raised.
    """

    def __init__(self, *, owner: str, reason: str, entry_id: Optional[str] = None) -> None:
        self.owner = owner
        self.reason = reason
        self.entry_id = entry_id
        location = f" (entry '{entry_id}')" if entry_id else ""
        super().__init__(
            f"Rejected memory log input for '{owner}'{location}: {reason}\n"
            "Logs are append-only; entries must never be edited after creation."
        )


class MemoryLogEntry(BaseModel):
    """One causally-stamped append event wrapping a memory."""

    model_config = ConfigDict(frozen=True)

    id: str
    author: str
    seq: int = Field(..., ge=1)
    clock: VectorClock
    timestamp: float
    memory: Memory


class MergeResult(BaseModel):
    added: int = 0
    total: int = 0
    conflicts: int = 0
    added_ids: List[str] = Field(default_factory=list)


def _sort_key(entry: MemoryLogEntry) -> tuple:
    # The clock total is a linear extension of happened-before.
    return (entry.clock.total(), entry.author, entry.seq)


class MemoryLog(BaseModel):
    """Append-only log of memory events owned by one entity."""

    owner: str
    entries: Dict[str, MemoryLogEntry] = Field(default_factory=dict)
    clock: VectorClock = Field(default_factory=VectorClock)

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, memory: Memory, timestamp: float) -> MemoryLogEntry:
        clock = self.clock.increment(self.owner)
        seq = clock.get(self.owner)
        entry = MemoryLogEntry(
            id=f"{self.owner}:{seq}",
            author=self.owner,
            seq=seq,
            clock=clock,
            timestamp=timestamp,
            memory=memory.model_copy(deep=True),
        )
        self.entries[entry.id] = entry
        self.clock = clock
        return entry

    def ordered(self) -> List[MemoryLogEntry]:
        return sorted(self.entries.values(), key=_sort_key)

    def ids(self) -> set[str]:
        return set(self.entries)

    def validate_batch(self, batch: Iterable[MemoryLogEntry]) -> List[MemoryLogEntry]:
        """Check ``batch`` against itself and this log; return it as a list."""

        seen: Dict[str, MemoryLogEntry] = {}
        entries = list(batch)
        for entry in entries:
            if entry.id != f"{entry.author}:{entry.seq}":
                raise InvalidLogError(owner=self.owner, reason="entry id does not match author/seq", entry_id=entry.id)
            if entry.clock.get(entry.author) != entry.seq:
                raise InvalidLogError(owner=self.owner, reason="entry clock does not match its sequence", entry_id=entry.id)
            previous = seen.get(entry.id) or self.entries.get(entry.id)
            if previous is not None and previous != entry:
                raise InvalidLogError(owner=self.owner, reason="duplicate id with different content", entry_id=entry.id)
            seen[entry.id] = entry
        return entries

    def merge(self, other: Union["MemoryLog", Iterable[MemoryLogEntry]]) -> MergeResult:
        """Union ``other`` into this log.

        Merging entries that are already present is a no-op.

        Raises:
            InvalidLogError: If the incoming entries are corrupt
        """
        incoming = other.entries.values() if isinstance(other, MemoryLog) else other
        batch = self.validate_batch(incoming)

        added: List[str] = []
        for entry in sorted(batch, key=_sort_key):
            if entry.id in self.entries:
                continue
            self.entries[entry.id] = entry.model_copy(deep=True)
            added.append(entry.id)

        if added:
            self.clock = self.clock.merged(merge_clocks(self.entries[i].clock for i in added))
        if isinstance(other, MemoryLog):
            self.clock = self.clock.merged(other.clock)
        return MergeResult(added=len(added), total=len(self.entries), added_ids=added)

    def entries_since(self, clock: VectorClock) -> List[MemoryLogEntry]:
        """Entries not covered by ``clock``, in causal order."""

        return [e for e in self.ordered() if e.seq > clock.get(e.author)]

    def has_seen(self, clock: VectorClock) -> bool:
        return self.clock.dominates(clock)

    def causal_history(self, entry_id: str) -> List[MemoryLogEntry]:
        """Entries that happened before ``entry_id``."""

        target = self.entries.get(entry_id)
        if target is None:
            return []
        return [
            e
            for e in self.ordered()
            if e.id != entry_id and e.clock.compare(target.clock) is ClockOrder.BEFORE
        ]

    def prune(self, *, max_age: float, now: float) -> int:
        """Drop entries older than ``max_age``; the summary clock is kept."""

        cutoff = now - max_age
        stale = [entry_id for entry_id, e in self.entries.items() if e.timestamp < cutoff]
        for entry_id in stale:
            del self.entries[entry_id]
        return len(stale)

    def strength_for(self, subject: str) -> float:
        salience = [e.memory.salience for e in self.entries.values() if e.memory.subject == subject]
        return min(1.0, sum(salience) / len(self.entries)) if self.entries else 0.0

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "MemoryLog":
        try:
            log = cls.model_validate_json(payload)
        except ValidationError as exc:
            raise InvalidLogError(owner="<unknown>", reason=f"malformed log: {exc.error_count()} errors") from exc
        mismatched = [entry_id for entry_id, e in log.entries.items() if entry_id != e.id]
        if mismatched:
            raise InvalidLogError(owner=log.owner, reason="entry keyed under wrong id", entry_id=mismatched[0])
        log.validate_batch(log.entries.values())
        return log


def merge_logs(a: MemoryLog, b: MemoryLog) -> MemoryLog:
    """Pure merge: a new log holding the union of ``a`` and ``b``.

    The result is owned by the lexically smaller owner id so that
    ``merge_logs(a, b) == merge_logs(b, a)``.
    """
    result = MemoryLog(owner=min(a.owner, b.owner))
    result.merge(a)
    result.merge(b)
    return result
