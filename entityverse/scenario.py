"""
Population loading for JSON-defined worlds.

PopulationLoader turns a population file into a ready-to-step World: the
world configuration, the entity definitions it may spawn from, and the
entities present at tick 0.

Population file structure:
```json
{
  "name": "Village",
  "description": "...",
  "world": {"seed": 7, "relational": {"contact_radius": 80}},
  "definitions": {
    "villager": {"essence": "farmer who likes bread", "emotion": {"valence": 0.3}}
  },
  "entities": [
    {"definition": "villager", "id": "ada", "x": 100, "y": 100},
    {"definition": "villager", "id": "bo"}
  ]
}
```

Entities without coordinates are placed from the world RNG, so a file loads
to the same world for the same seed.

Usage:
    loader = PopulationLoader()
    world = loader.load("village")
    report = world.step()
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import Config
from .ontology.emotion import EmotionalState, preset
from .schemas import EntityDefinition, WorldConfig
from .world import World


def _parse_emotion(value: Any) -> EmotionalState:
    # preset names are accepted wherever an emotional state is expected
    if isinstance(value, str):
        return preset(value)
    if isinstance(value, EmotionalState):
        return value
    return EmotionalState(**value)


class PopulationLoader:
    """Load and validate populations from JSON files.

    Directory structure:
    - Default: Config.POPULATIONS_DIR ({PROJECT_ROOT}/examples/populations)
    - Override via constructor: PopulationLoader(Path("/custom/populations"))
    - Population files: {name}.json

    Validation:
    - Required fields: name, definitions, entities
    - Every entity must reference a declared definition
    - Entity ids must be unique
    - Raises ValueError on any problem, before a World is built
    """

    def __init__(self, populations_dir: Optional[Path] = None):
        self.populations_dir = populations_dir or Config.POPULATIONS_DIR

    def load(self, population_name: str, **world_kwargs: Any) -> World:
        """Load a population by name and build its World.

        Args:
            population_name: File name without the .json extension
            **world_kwargs: Collaborators forwarded to World (scorers, generator, ...)

        Raises:
            FileNotFoundError: If the population file doesn't exist
            ValueError: If the file is malformed or fails validation
        """
        path = self.populations_dir / f"{population_name}.json"
        if not path.exists():
            raise FileNotFoundError(f"Population '{population_name}' not found at {path}")

        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as exc:
            raise ValueError(f"Population '{population_name}' is not valid JSON: {exc}") from exc
        return self.build(data, **world_kwargs)

    def build(self, data: Dict[str, Any], **world_kwargs: Any) -> World:
        """Build a World from already-parsed population data."""

        self._validate_population(data)

        try:
            config = WorldConfig(**data.get("world", {}))
            definitions = {
                name: self._parse_definition(name, raw)
                for name, raw in data["definitions"].items()
            }
        except ValidationError as exc:
            raise ValueError(f"Population '{data['name']}' has invalid settings:\n{exc}") from exc

        world = World(config, definitions=definitions, **world_kwargs)
        for index, entry in enumerate(data["entities"]):
            emotion = entry.get("emotion")
            if emotion is not None:
                try:
                    emotion = _parse_emotion(emotion)
                except ValidationError as exc:
                    raise ValueError(f"Entity entry {index} has an invalid emotion:\n{exc}") from exc
            world.spawn(
                entry["definition"],
                entity_id=entry.get("id"),
                x=entry.get("x"),
                y=entry.get("y"),
                vx=entry.get("vx", 0.0),
                vy=entry.get("vy", 0.0),
                essence=entry.get("essence"),
                emotion=emotion,
            )
        return world

    def _validate_population(self, data: Dict[str, Any]) -> None:
        required = ["name", "definitions", "entities"]
        missing = [field for field in required if field not in data]
        if missing:
            raise ValueError(f"Population missing required fields: {missing}")

        if not isinstance(data["definitions"], dict):
            raise ValueError("'definitions' must map definition names to definitions")
        if not isinstance(data["entities"], list):
            raise ValueError("'entities' must be a list")

        seen: set = set()
        for index, entry in enumerate(data["entities"]):
            if not isinstance(entry, dict) or "definition" not in entry:
                raise ValueError(f"Entity entry {index} must be an object with a 'definition'")
            if entry["definition"] not in data["definitions"]:
                raise ValueError(
                    f"Entity entry {index} references unknown definition '{entry['definition']}'"
                )
            entity_id = entry.get("id")
            if entity_id is not None:
                if entity_id in seen:
                    raise ValueError(f"Duplicate entity id '{entity_id}'")
                seen.add(entity_id)

    def _parse_definition(self, name: str, raw: Dict[str, Any]) -> EntityDefinition:
        for key in ("emotion", "baseline"):
            if isinstance(raw.get(key), str):
                raw = {**raw, key: preset(raw[key])}
        return EntityDefinition(**{**raw, "name": name})

    def list_populations(self) -> List[str]:
        """Names of the population files available in the directory."""

        if not self.populations_dir.exists():
            return []
        return sorted(
            f.stem for f in self.populations_dir.glob("*.json") if not f.name.startswith("_")
        )

    def get_population_info(self, population_name: str) -> Dict[str, Any]:
        """Name, description and entity count without building a World."""

        path = self.populations_dir / f"{population_name}.json"
        data = json.loads(path.read_text())
        return {
            "name": data.get("name", population_name),
            "description": data.get("description", ""),
            "num_entities": len(data.get("entities", [])),
            "definitions": sorted(data.get("definitions", {})),
        }


def load_population(population_name: str, **world_kwargs: Any) -> World:
    """Convenience function to load a population from the default directory."""
    return PopulationLoader().load(population_name, **world_kwargs)
