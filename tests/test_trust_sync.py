"""Tests for the trust gate and incremental memory exchange."""

import pytest

from entityverse.entity import Entity
from entityverse.ontology.memory import MemoryStore, MemoryType
from entityverse.ontology.relationships import RelationshipTable
from entityverse.sync import (
    DataCategory,
    GateDecision,
    InvalidLogError,
    MemoryLog,
    MemoryLogEntry,
    MemorySync,
    PrivacySettings,
    SharePolicy,
    TrustGate,
    VectorClock,
)


def make_entity(entity_id: str, *, memory_policy: SharePolicy = SharePolicy.TRUST) -> Entity:
    return Entity(
        id=entity_id,
        memory=MemoryStore(),
        relationships=RelationshipTable(),
        memory_log=MemoryLog(owner=entity_id),
        privacy=PrivacySettings(
            policies={DataCategory.MEMORY: memory_policy, DataCategory.EMOTION: SharePolicy.PUBLIC}
        ),
    )


def observe(entity: Entity, subject: str, salience: float) -> None:
    entity.remember(MemoryType.OBSERVATION, subject=subject, content=subject, timestamp=1.0, salience=salience)


def trust(entity: Entity, peer: str, amount: float) -> None:
    entity.relationships.interact(peer, now=0.0, trust_delta=amount)


@pytest.mark.parametrize(
    "policy, trust_value, expected",
    [
        (SharePolicy.PUBLIC, 0.0, GateDecision.ALLOW),
        (SharePolicy.NEVER, 1.0, GateDecision.DENY),
        (SharePolicy.TRUST, 0.59, GateDecision.DENY),
        (SharePolicy.TRUST, 0.6, GateDecision.ALLOW),
        (SharePolicy.CONTEXTUAL, 0.2, GateDecision.IMPORTANT_ONLY),
        (SharePolicy.CONTEXTUAL, 0.9, GateDecision.ALLOW),
    ],
)
def test_gate_decisions(policy, trust_value, expected):
    settings = PrivacySettings(policies={DataCategory.MEMORY: policy})
    assert TrustGate().decide(settings, DataCategory.MEMORY, trust_value) is expected


def test_default_privacy_shares_emotion_publicly():
    settings = PrivacySettings()
    assert settings.policy_for(DataCategory.EMOTION) is SharePolicy.PUBLIC
    assert settings.policy_for(DataCategory.MEMORY) is SharePolicy.TRUST


def test_sync_requires_both_gates():
    ada, bo = make_entity("ada"), make_entity("bo")
    observe(ada, "bread", 0.5)
    sync = MemorySync()

    assert sync.sync_pair(ada, bo) == []

    trust(ada, "bo", 0.2)
    assert sync.sync_pair(ada, bo) == []

    trust(bo, "ada", 0.2)
    results = sync.sync_pair(ada, bo)
    assert [r.added for r in results] == [1, 0]
    assert "ada:1" in bo.memory_log.ids()


def test_received_memory_is_materialised_weaker():
    ada, bo = make_entity("ada"), make_entity("bo")
    trust(ada, "bo", 0.2)
    trust(bo, "ada", 0.2)
    observe(ada, "bread", 0.8)

    MemorySync(share_salience_factor=0.5).sync_pair(ada, bo)

    shared = [m for m in bo.memory.memories if m.id == "ada:1"]
    assert len(shared) == 1
    assert shared[0].salience == pytest.approx(0.4)
    assert shared[0].origin == "ada"


def test_sync_is_incremental():
    ada, bo = make_entity("ada"), make_entity("bo")
    trust(ada, "bo", 0.2)
    trust(bo, "ada", 0.2)
    sync = MemorySync()

    observe(ada, "one", 0.5)
    first = sync.transfer(ada, bo)
    second = sync.transfer(ada, bo)
    observe(ada, "two", 0.5)
    third = sync.transfer(ada, bo)

    assert (first.offered, second.offered, third.offered) == (1, 0, 1)


def test_entries_are_not_echoed_back_to_author():
    ada, bo = make_entity("ada"), make_entity("bo")
    trust(ada, "bo", 0.2)
    trust(bo, "ada", 0.2)
    observe(ada, "bread", 0.5)
    sync = MemorySync()

    sync.transfer(ada, bo)
    back = sync.transfer(bo, ada)
    assert back.offered == 0


def test_contextual_policy_shares_only_important_entries():
    ada = make_entity("ada", memory_policy=SharePolicy.CONTEXTUAL)
    bo = make_entity("bo", memory_policy=SharePolicy.PUBLIC)
    observe(ada, "fire", 0.9)
    observe(ada, "weather", 0.3)
    sync = MemorySync()

    result = sync.transfer(ada, bo)

    assert (result.offered, result.withheld, result.added) == (2, 1, 1)
    assert bo.memory_log.ids() == {"ada:1"}

    # withheld entries count as considered and are not offered again
    trust(ada, "bo", 0.3)
    assert sync.transfer(ada, bo).offered == 0


def test_corrupt_sender_log_is_rejected_without_mutation():
    ada, bo = make_entity("ada", memory_policy=SharePolicy.PUBLIC), make_entity("bo", memory_policy=SharePolicy.PUBLIC)
    observe(bo, "mine", 0.5)
    bad = MemoryLogEntry(
        id="ada:1",
        author="ada",
        seq=1,
        clock=VectorClock(counters={"ada": 3}),
        timestamp=0.0,
        memory=bo.memory.memories[0],
    )
    ada.memory_log.entries[bad.id] = bad
    ada.memory_log.clock = VectorClock(counters={"ada": 1})
    before = bo.model_copy(deep=True)

    with pytest.raises(InvalidLogError):
        MemorySync().transfer(ada, bo)
    assert bo == before


def test_forget_entity_drops_ledger_entries():
    ada, bo = make_entity("ada", memory_policy=SharePolicy.PUBLIC), make_entity("bo", memory_policy=SharePolicy.PUBLIC)
    sync = MemorySync()
    observe(ada, "x", 0.5)
    sync.sync_pair(ada, bo)
    assert sync.ledger.exchanged

    sync.ledger.forget_entity("ada")
    assert sync.ledger.exchanged == {}


def test_entries_relayed_later_are_still_forwarded():
    cy = make_entity("cy", memory_policy=SharePolicy.CONTEXTUAL)
    dov = make_entity("dov", memory_policy=SharePolicy.PUBLIC)
    ada = make_entity("ada", memory_policy=SharePolicy.PUBLIC)
    bo = make_entity("bo", memory_policy=SharePolicy.PUBLIC)
    observe(cy, "weather", 0.3)
    observe(cy, "fire", 0.9)
    sync = MemorySync()

    sync.transfer(cy, dov)
    assert dov.memory_log.ids() == {"cy:2"}
    sync.transfer(dov, ada)
    sync.transfer(ada, bo)
    assert bo.memory_log.ids() == {"cy:2"}

    trust(cy, "ada", 0.2)
    sync.transfer(cy, ada)
    assert ada.memory_log.ids() == {"cy:1", "cy:2"}

    result = sync.transfer(ada, bo)
    assert (result.offered, result.added) == (1, 1)
    assert bo.memory_log.ids() == {"cy:1", "cy:2"}
    assert bo.memory.contains("cy:1")


def test_ledger_drops_pruned_ids():
    ada = make_entity("ada", memory_policy=SharePolicy.PUBLIC)
    bo = make_entity("bo", memory_policy=SharePolicy.PUBLIC)
    observe(ada, "old", 0.5)
    sync = MemorySync()
    sync.transfer(ada, bo)
    assert sync.ledger.get("ada", "bo") == {"ada:1"}

    ada.memory_log.prune(max_age=1.0, now=10.0)
    sync.transfer(ada, bo)
    assert sync.ledger.get("ada", "bo") == set()
