"""Tests for population loading via PopulationLoader."""

import contextlib
import io
import json
from pathlib import Path

import pytest

from entityverse.config import Config
from entityverse.scenario import PopulationLoader
from entityverse.sync import DataCategory, SharePolicy


MINIMAL = {
    "name": "Pair",
    "definitions": {"villager": {"essence": "farmer", "emotion": {"valence": 0.3}}},
    "entities": [
        {"definition": "villager", "id": "ada", "x": 10, "y": 10},
        {"definition": "villager", "id": "bo"},
    ],
}


def build(data, **kwargs):
    with contextlib.redirect_stdout(io.StringIO()):
        return PopulationLoader().build(data, **kwargs)


def test_village_population_loads_from_default_directory():
    with contextlib.redirect_stdout(io.StringIO()):
        world = PopulationLoader().load("village")

    assert sorted(world.entities) == ["ada", "bo", "cy", "dov"]
    assert world.config.seed == 7
    assert world.config.physics.width == 400
    assert world.config.crystallizer.min_usage == 2

    ada = world.entity("ada")
    assert ada.definition == "baker"
    assert ada.learning is not None
    assert ada.memory_log is not None
    assert ada.emotion.valence == pytest.approx(0.5)

    dov = world.entity("dov")
    assert dov.privacy.policy_for(DataCategory.MEMORY) is SharePolicy.NEVER
    assert dov.memory_log is None


def test_village_spawn_triggers_queue_greetings():
    with contextlib.redirect_stdout(io.StringIO()):
        world = PopulationLoader().load("village")
        world.step()

    speakers = sorted({u.speaker for u in world.transcript.entries()})
    assert speakers == ["ada", "bo", "cy"]


def test_list_and_describe_populations(tmp_path):
    (tmp_path / "pair.json").write_text(json.dumps(MINIMAL))
    (tmp_path / "_draft.json").write_text("{}")
    loader = PopulationLoader(tmp_path)

    assert loader.list_populations() == ["pair"]
    info = loader.get_population_info("pair")
    assert info == {"name": "Pair", "description": "", "num_entities": 2, "definitions": ["villager"]}

    assert "village" in PopulationLoader().list_populations()
    assert PopulationLoader(tmp_path / "missing").list_populations() == []


def test_default_directory_comes_from_config():
    assert PopulationLoader().populations_dir == Config.POPULATIONS_DIR


def test_unplaced_entities_are_positioned_from_seed():
    first = build(MINIMAL)
    second = build(MINIMAL)

    assert first.entity("ada").x == 10
    assert first.entity("bo").x == second.entity("bo").x
    assert first.entity("bo").y == second.entity("bo").y


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PopulationLoader(tmp_path).load("nowhere")


def test_invalid_json_raises_value_error(tmp_path):
    (tmp_path / "broken.json").write_text('{"name": "Broken", ')
    with pytest.raises(ValueError, match="not valid JSON"):
        PopulationLoader(tmp_path).load("broken")


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d.pop("entities"), "missing required fields"),
        (lambda d: d.__setitem__("definitions", []), "'definitions' must map"),
        (lambda d: d.__setitem__("entities", {}), "'entities' must be a list"),
        (lambda d: d["entities"].append({"id": "cy"}), "must be an object with a 'definition'"),
        (lambda d: d["entities"].append({"definition": "dragon"}), "unknown definition 'dragon'"),
        (lambda d: d["entities"].append({"definition": "villager", "id": "ada"}), "Duplicate entity id 'ada'"),
        (lambda d: d.__setitem__("world", {"tick_seconds": -1}), "invalid settings"),
    ],
)
def test_validation_errors(mutate, message):
    data = json.loads(json.dumps(MINIMAL))
    mutate(data)
    with pytest.raises(ValueError, match=message):
        build(data)


def test_emotion_preset_names_are_accepted():
    data = json.loads(json.dumps(MINIMAL))
    data["definitions"]["villager"]["emotion"] = "happy"
    data["definitions"]["villager"]["baseline"] = "calm"

    world = build(data)
    ada = world.entity("ada")
    assert ada.emotion.valence == pytest.approx(0.7)
    assert ada.baseline.arousal == pytest.approx(0.1)


def test_unknown_emotion_preset_is_rejected():
    data = json.loads(json.dumps(MINIMAL))
    data["definitions"]["villager"]["emotion"] = "furious"
    with pytest.raises(ValueError, match="Unknown emotion preset 'furious'"):
        build(data)


def test_entity_overrides_apply():
    data = json.loads(json.dumps(MINIMAL))
    data["entities"][0].update({"essence": "miller", "emotion": {"valence": -0.2}, "vx": 1.5})

    ada = build(data).entity("ada")
    assert ada.essence == "miller"
    assert ada.emotion.valence == pytest.approx(-0.2)
    assert ada.vx == 1.5


def test_entity_emotion_accepts_preset_name():
    data = json.loads(json.dumps(MINIMAL))
    data["entities"][0]["emotion"] = "happy"

    world = build(data)
    assert world.entity("ada").emotion.valence == pytest.approx(0.7)
    assert world.entity("bo").emotion.valence == pytest.approx(0.3)


@pytest.mark.parametrize(
    "emotion, message",
    [
        ("furious", "Unknown emotion preset 'furious'"),
        ({"valence": 5.0}, "Entity entry 0 has an invalid emotion"),
    ],
)
def test_bad_entity_emotion_is_rejected(emotion, message):
    data = json.loads(json.dumps(MINIMAL))
    data["entities"][0]["emotion"] = emotion
    with pytest.raises(ValueError, match=message):
        build(data)
