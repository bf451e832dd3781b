"""Tests for the conflict-free memory log."""

import pytest

from entityverse.ontology.memory import Memory, MemoryType
from entityverse.sync.memory_log import InvalidLogError, MemoryLog, MemoryLogEntry, merge_logs
from entityverse.sync.vector_clock import ClockOrder, VectorClock


def memory(subject: str, salience: float = 0.5) -> Memory:
    return Memory(id=f"local:{subject}", memory_type=MemoryType.OBSERVATION, subject=subject, salience=salience)


def test_vector_clock_ordering():
    a = VectorClock().increment("ada")
    b = a.increment("bo")
    c = VectorClock().increment("bo")

    assert a.compare(b) is ClockOrder.BEFORE
    assert b.compare(a) is ClockOrder.AFTER
    assert a.compare(c) is ClockOrder.CONCURRENT
    assert a.merged(c) == VectorClock(counters={"ada": 1, "bo": 1})
    assert VectorClock(counters={"x": 0}) == VectorClock()


def test_append_stamps_author_and_sequence():
    log = MemoryLog(owner="ada")
    first = log.append(memory("m1"), 1.0)
    second = log.append(memory("m2"), 2.0)

    assert (first.id, first.seq) == ("ada:1", 1)
    assert second.id == "ada:2"
    assert second.clock.get("ada") == 2
    assert log.clock.get("ada") == 2


def test_three_way_merge_converges():
    a = MemoryLog(owner="a")
    b = MemoryLog(owner="b")
    c = MemoryLog(owner="c")
    a.append(memory("m1"), 1.0)
    b.append(memory("m2"), 1.0)
    c.append(memory("m3"), 1.0)

    a.merge(b)
    b.merge(c)
    c.merge(a)
    a.merge(c)
    b.merge(a)

    expected = {"a:1", "b:1", "c:1"}
    assert a.ids() == b.ids() == c.ids() == expected
    assert a.clock == b.clock == c.clock


def test_merge_is_commutative_and_idempotent():
    a = MemoryLog(owner="a")
    b = MemoryLog(owner="b")
    a.append(memory("x"), 1.0)
    a.append(memory("y"), 2.0)
    b.append(memory("z"), 1.5)

    ab = merge_logs(a, b)
    ba = merge_logs(b, a)
    assert ab == ba

    again = merge_logs(ab, a)
    assert again.ids() == ab.ids()
    assert ab.merge(a).added == 0


def test_merge_reports_added_entries():
    a = MemoryLog(owner="a")
    b = MemoryLog(owner="b")
    b.append(memory("z"), 1.0)

    result = a.merge(b)
    assert result.added == 1
    assert result.added_ids == ["b:1"]
    assert a.clock.get("b") == 1


def test_conflicting_duplicate_is_rejected_without_mutation():
    a = MemoryLog(owner="a")
    a.append(memory("original"), 1.0)
    before = a.model_copy(deep=True)

    forged = MemoryLogEntry(
        id="a:1",
        author="a",
        seq=1,
        clock=VectorClock(counters={"a": 1}),
        timestamp=1.0,
        memory=memory("tampered"),
    )
    fresh = MemoryLogEntry(
        id="b:1", author="b", seq=1, clock=VectorClock(counters={"b": 1}), timestamp=1.0, memory=memory("ok")
    )

    with pytest.raises(InvalidLogError):
        a.merge([fresh, forged])
    assert a == before


def test_entry_whose_clock_disagrees_is_rejected():
    log = MemoryLog(owner="a")
    bad = MemoryLogEntry(
        id="b:2", author="b", seq=2, clock=VectorClock(counters={"b": 5}), timestamp=0.0, memory=memory("x")
    )
    with pytest.raises(InvalidLogError, match="clock"):
        log.merge([bad])
    assert len(log) == 0


def test_entries_since_and_has_seen():
    log = MemoryLog(owner="a")
    log.append(memory("1"), 1.0)
    watermark = log.clock
    log.append(memory("2"), 2.0)

    assert [e.id for e in log.entries_since(watermark)] == ["a:2"]
    assert log.has_seen(watermark)
    assert not MemoryLog(owner="b").has_seen(log.clock)


def test_causal_history():
    a = MemoryLog(owner="a")
    b = MemoryLog(owner="b")
    a.append(memory("1"), 1.0)
    b.merge(a)
    later = b.append(memory("2"), 2.0)

    assert [e.id for e in b.causal_history(later.id)] == ["a:1"]


def test_prune_keeps_clock():
    log = MemoryLog(owner="a")
    log.append(memory("old"), 0.0)
    log.append(memory("new"), 50.0)

    assert log.prune(max_age=20.0, now=60.0) == 1
    assert log.ids() == {"a:2"}
    assert log.clock.get("a") == 2


def test_json_round_trip_and_corruption():
    log = MemoryLog(owner="a")
    log.append(memory("x"), 1.0)

    restored = MemoryLog.from_json(log.to_json())
    assert restored == log

    with pytest.raises(InvalidLogError):
        MemoryLog.from_json('{"owner": "a", "entries": {"a:1": {"id": "a:1"}}}')


def test_incremental_merge_scenario():
    a = MemoryLog(owner="a")
    b = MemoryLog(owner="b")
    a.append(memory("m1"), 1.0)
    a.append(memory("m2"), 2.0)
    b.append(memory("m3"), 1.0)

    b.merge(a.entries_since(b.clock))
    assert sorted(e.memory.subject for e in b.entries.values()) == ["m1", "m2", "m3"]

    result = b.merge(a.entries_since(b.clock))
    assert result.added == 0
    assert len(b) == 3
