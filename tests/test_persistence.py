"""Tests for world snapshots, restore validation and storage backends."""

import contextlib
import io
import json

import pytest

from entityverse.ontology.memory import MemoryType
from entityverse.persistence import (
    InMemoryPersistence,
    JsonPersistence,
    SnapshotError,
    WorldSnapshot,
    parse_snapshot,
)
from entityverse.schemas import Capabilities, EntityDefinition, Trigger, WorldConfig
from entityverse.sync import DataCategory, PrivacySettings, SharePolicy
from entityverse.world import World


DEFINITIONS = {
    "villager": EntityDefinition(
        name="villager",
        essence="villager who bakes bread",
        capabilities=Capabilities(learning=True, memory_log=True),
        privacy=PrivacySettings(policies={DataCategory.MEMORY: SharePolicy.PUBLIC}),
        triggers=[Trigger(on="bonded", say=["fresh bread for you"], learn="share", reward=0.5)],
    )
}


def build_world(seed: int = 5) -> World:
    with contextlib.redirect_stdout(io.StringIO()):
        world = World(WorldConfig(seed=seed), definitions=DEFINITIONS)
        for _ in range(4):
            world.spawn("villager")
        world.spawn_field(x=400.0, y=300.0, radius=200.0, duration=20.0, kind="market")
    return world


def quiet_steps(world: World, n: int) -> None:
    with contextlib.redirect_stdout(io.StringIO()):
        for i in range(n):
            if i % 3 == 0:
                world.say("villager-1", "the oven is warm today")
            world.step()


def test_snapshot_restores_equal_state():
    world = build_world()
    quiet_steps(world, 6)
    snapshot = world.snapshot()

    with contextlib.redirect_stdout(io.StringIO()):
        restored = World.restore(snapshot.model_dump_json(), definitions=DEFINITIONS)

    assert restored.tick == world.tick
    assert restored.time == pytest.approx(world.time)
    assert restored.snapshot().model_dump(mode="json") == snapshot.model_dump(mode="json")
    assert len(restored.transcript) == len(world.transcript)


def test_restored_world_continues_identically():
    original = build_world()
    quiet_steps(original, 5)

    with contextlib.redirect_stdout(io.StringIO()):
        restored = World.restore(original.snapshot(), definitions=DEFINITIONS)

    quiet_steps(original, 8)
    quiet_steps(restored, 8)

    assert restored.snapshot().model_dump(mode="json") == original.snapshot().model_dump(mode="json")


def test_auto_ids_continue_after_restore():
    world = build_world()
    with contextlib.redirect_stdout(io.StringIO()):
        restored = World.restore(world.snapshot(), definitions=DEFINITIONS)
        spawned = restored.spawn("villager")
    assert spawned.id == "villager-5"


def test_version_mismatch_is_refused():
    payload = build_world().snapshot().model_dump(mode="json")
    payload["version"] = "2"

    with pytest.raises(SnapshotError) as excinfo:
        World.restore(payload, definitions=DEFINITIONS)
    assert excinfo.value.reason == "version_mismatch"


def test_truncated_json_is_refused():
    text = build_world().snapshot().model_dump_json()

    with pytest.raises(SnapshotError) as excinfo:
        World.restore(text[: len(text) // 2], definitions=DEFINITIONS)
    assert excinfo.value.reason == "truncated"


def test_missing_fields_count_as_truncated():
    payload = build_world().snapshot().model_dump(mode="json")
    del payload["entities"]

    with pytest.raises(SnapshotError) as excinfo:
        parse_snapshot(payload)
    assert excinfo.value.reason == "truncated"
    assert "entities" in excinfo.value.detail


def test_unknown_definition_is_refused():
    snapshot = build_world().snapshot()

    with pytest.raises(SnapshotError) as excinfo:
        World.restore(snapshot, definitions={})
    assert excinfo.value.reason == "unknown_definition"
    assert "villager" in str(excinfo.value)


def test_corrupt_rng_state_is_refused():
    payload = build_world().snapshot().model_dump(mode="json")
    payload["rng_state"] = [3, [1, 2, 3], None]

    with pytest.raises(SnapshotError) as excinfo:
        World.restore(payload, definitions=DEFINITIONS)
    assert excinfo.value.reason == "invalid"


def test_tampered_memory_log_is_refused():
    world = build_world()
    world.entity("villager-2").remember(
        MemoryType.OBSERVATION, subject="oven", content="the oven cracked", timestamp=0.0, salience=0.8
    )
    payload = world.snapshot().model_dump(mode="json")

    tampered = False
    for entity in payload["entities"]:
        entries = (entity.get("memory_log") or {}).get("entries") or {}
        for entry in entries.values():
            entry["clock"]["counters"][entry["author"]] = entry["seq"] + 7
            tampered = True
            break
        if tampered:
            break
    assert tampered

    with pytest.raises(SnapshotError) as excinfo:
        World.restore(payload, definitions=DEFINITIONS)
    assert excinfo.value.reason == "invalid"


def test_duplicate_entity_ids_are_refused():
    payload = build_world().snapshot().model_dump(mode="json")
    payload["entities"].append(payload["entities"][0])

    with pytest.raises(SnapshotError) as excinfo:
        World.restore(payload, definitions=DEFINITIONS)
    assert excinfo.value.reason == "invalid"


def test_snapshot_error_explains_that_nothing_changed():
    err = SnapshotError(reason="truncated", detail="missing fields: tick")
    assert "truncated" in str(err)
    assert "not modified" in str(err)


@pytest.mark.asyncio
async def test_in_memory_persistence_round_trip():
    world = build_world()
    quiet_steps(world, 2)
    persistence = InMemoryPersistence()
    await persistence.initialize()

    await persistence.save_snapshot(world.run_id, world.tick, world.snapshot())
    # Later mutation of the live world must not leak into stored state.
    quiet_steps(world, 1)

    loaded = await persistence.load_snapshot(world.run_id, 2)
    assert isinstance(loaded, WorldSnapshot)
    assert loaded.tick == 2
    assert await persistence.load_snapshot(world.run_id, 99) is None
    assert await persistence.list_ticks(world.run_id) == [2]
    assert await persistence.latest_tick(world.run_id) == 2

    await persistence.delete_run(world.run_id)
    assert await persistence.list_ticks(world.run_id) == []


@pytest.mark.asyncio
async def test_json_persistence_writes_one_file_per_tick(tmp_path):
    world = build_world()
    persistence = JsonPersistence(tmp_path / "snapshots")
    await persistence.initialize()

    quiet_steps(world, 3)
    await persistence.save_snapshot(world.run_id, world.tick, world.snapshot())

    path = tmp_path / "snapshots" / str(world.run_id) / "snapshots" / "00003.json"
    assert path.exists()
    assert json.loads(path.read_text())["version"] == "1"

    loaded = await persistence.load_snapshot(world.run_id, 3)
    with contextlib.redirect_stdout(io.StringIO()):
        restored = World.restore(loaded, definitions=DEFINITIONS)
    assert sorted(restored.entities) == sorted(world.entities)
    assert await persistence.list_ticks(world.run_id) == [3]

    await persistence.delete_run(world.run_id)
    assert not path.exists()
    await persistence.close()


@pytest.mark.asyncio
async def test_json_persistence_rejects_truncated_file(tmp_path):
    world = build_world()
    persistence = JsonPersistence(tmp_path)
    await persistence.initialize()
    await persistence.save_snapshot(world.run_id, 0, world.snapshot())

    path = tmp_path / str(world.run_id) / "snapshots" / "00000.json"
    path.write_text(path.read_text()[:100])

    with pytest.raises(SnapshotError) as excinfo:
        await persistence.load_snapshot(world.run_id, 0)
    assert excinfo.value.reason == "truncated"
