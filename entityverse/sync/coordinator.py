"""
Incremental, trust-gated memory exchange between pairs of entities.

The coordinator remembers, per ordered (sender, receiver) pair, which of
the sender's entry ids it has already considered. Each sync only offers
entries outside that set. Entries that reach the sender later through a
relay are new to the pair even when their author's counter is behind the
sender's clock, so they are still forwarded.

Entries withheld by a contextual policy are not re-offered to the same
receiver later; they count as considered once the sender has seen them.
Ids the sender has since pruned are dropped from the ledger.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, Field

from .memory_log import MemoryLog, MemoryLogEntry
from .trust import DataCategory, GateDecision, TrustGate

if TYPE_CHECKING:  # pragma: no cover
    from entityverse.entity import Entity


class SyncLedger(BaseModel):
    """Per-pair record of exchanged entry ids, serializable with the world snapshot."""

    exchanged: Dict[str, List[str]] = Field(default_factory=dict)

    @staticmethod
    def key(sender_id: str, receiver_id: str) -> str:
        return f"{sender_id}->{receiver_id}"

    def get(self, sender_id: str, receiver_id: str) -> Set[str]:
        return set(self.exchanged.get(self.key(sender_id, receiver_id), []))

    def pending(self, sender_id: str, receiver_id: str, log: MemoryLog) -> List[MemoryLogEntry]:
        """Entries of ``log`` not yet considered for this pair, in causal order."""

        seen = self.get(sender_id, receiver_id)
        return [e for e in log.ordered() if e.id not in seen]

    def advance(self, sender_id: str, receiver_id: str, log: MemoryLog, considered: Iterable[str] = ()) -> None:
        key = self.key(sender_id, receiver_id)
        current = log.ids()
        merged = (self.get(sender_id, receiver_id) | set(considered)) & current
        self.exchanged[key] = sorted(merged)

    def forget_entity(self, entity_id: str) -> None:
        for key in [k for k in self.exchanged if entity_id in k.split("->")]:
            del self.exchanged[key]

class TransferResult(BaseModel):
    sender: str
    receiver: str
    offered: int = 0
    withheld: int = 0
    added: int = 0


class MemorySync:
    """Runs pairwise log exchange through the trust gate."""

    def __init__(
        self,
        gate: Optional[TrustGate] = None,
        ledger: Optional[SyncLedger] = None,
        *,
        share_salience_factor: float = 0.5,
    ) -> None:
        self.gate = gate or TrustGate()
        self.ledger = ledger or SyncLedger()
        self.share_salience_factor = share_salience_factor

    def _decision(self, owner: "Entity", peer: "Entity") -> GateDecision:
        trust = owner.trust_in(peer.id)
        return self.gate.decide(owner.privacy, DataCategory.MEMORY, trust)

    def pair_permitted(self, a: "Entity", b: "Entity") -> bool:
        if a.memory_log is None or b.memory_log is None:
            return False
        return (
            self._decision(a, b) is not GateDecision.DENY
            and self._decision(b, a) is not GateDecision.DENY
        )

    def sync_pair(self, a: "Entity", b: "Entity") -> List[TransferResult]:
        """Exchange new entries in both directions when both gates permit."""

        if not self.pair_permitted(a, b):
            return []
        return [self.transfer(a, b), self.transfer(b, a)]

    def transfer(self, sender: "Entity", receiver: "Entity") -> TransferResult:
        """Send ``sender``'s unseen entries to ``receiver``.

        Raises:
            InvalidLogError: If the sender's entries are corrupt; nothing changes
        """
        assert sender.memory_log is not None and receiver.memory_log is not None
        pending = self.ledger.pending(sender.id, receiver.id, sender.memory_log)
        candidates = [e for e in pending if e.author != receiver.id]

        decision = self._decision(sender, receiver)
        shared: List[MemoryLogEntry] = []
        for entry in candidates:
            if decision is GateDecision.IMPORTANT_ONLY and not self.gate.is_important(entry.memory.salience):
                continue
            shared.append(entry)

        merge = receiver.memory_log.merge(shared)
        self.ledger.advance(sender.id, receiver.id, sender.memory_log, (e.id for e in pending))

        if receiver.memory is not None:
            for entry_id in merge.added_ids:
                if receiver.memory.contains(entry_id):
                    continue
                copy = receiver.memory_log.entries[entry_id].memory.model_copy(deep=True)
                copy.id = entry_id
                copy.salience = copy.salience * self.share_salience_factor
                receiver.memory.remember(copy)

        return TransferResult(
            sender=sender.id,
            receiver=receiver.id,
            offered=len(candidates),
            withheld=len(candidates) - len(shared),
            added=merge.added,
        )
