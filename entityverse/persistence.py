"""
Snapshot persistence for worlds.

``World.snapshot()`` produces a WorldSnapshot: every entity's full state,
every field, the transcript, the lexicon, and the bookkeeping needed to keep
running deterministically (RNG state, crystallizer and sync ledger).
``World.restore(snapshot)`` rebuilds an equivalent world.

Loading fails closed. A snapshot with the wrong version, truncated data, or
an entity that references an unknown definition is refused as a whole with
SnapshotError; no partially restored world is ever returned.

Two storage backends implement the async PersistenceStrategy interface:
1. InMemoryPersistence - dict-based, lost on exit (tests, prototyping)
2. JsonPersistence - one pretty-printed JSON file per saved tick

Usage pattern:
    persistence = JsonPersistence("world_snapshots")
    await persistence.initialize()
    await persistence.save_snapshot(run_id, tick, world.snapshot())
    snapshot = await persistence.load_snapshot(run_id, tick)
    world = World.restore(snapshot, definitions=definitions)
    await persistence.close()
"""

from __future__ import annotations

import asyncio
import json
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from entityverse.entity import Entity
from entityverse.generation import GenerationRequest
from entityverse.linguistics.lexicon import LexiconEntry
from entityverse.linguistics.transcript import Utterance
from entityverse.schemas import WorldConfig, WorldField
from entityverse.sync.coordinator import SyncLedger


SNAPSHOT_VERSION = "1"


class SnapshotError(Exception):
    """Raised when a snapshot cannot be loaded or restored.

    ``reason`` is one of ``version_mismatch``, ``truncated``,
    ``unknown_definition`` or ``invalid``.
    """

    def __init__(self, *, reason: str, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(
            f"Cannot restore world ({reason}): {detail}\n"
            "The world was not modified. Check that the snapshot file is complete "
            "and that the same entity definitions are supplied to restore()."
        )


class WorldSnapshot(BaseModel):
    """Serializable image of a World at the end of a tick."""

    version: str = SNAPSHOT_VERSION
    tick: int = Field(..., ge=0)
    time: float = Field(..., ge=0.0)
    config: WorldConfig
    rng_state: List[Any] = Field(..., description="random.Random.getstate() as JSON lists")
    entities: List[Entity]
    fields: List[WorldField]
    transcript: List[Utterance]
    transcript_next_seq: int = Field(..., ge=1)
    lexicon: List[LexiconEntry]
    crystallizer_last_seq: int = Field(0, ge=0)
    crystallizer_last_run_tick: Optional[int] = None
    consolidation_last_tick: Optional[int] = None
    sync_ledger: SyncLedger = Field(default_factory=SyncLedger)
    message_seq: int = Field(0, ge=0)
    field_seq: int = Field(0, ge=0)
    spawn_seq: int = Field(0, ge=0)
    pending_generation: List[GenerationRequest] = Field(default_factory=list)


def parse_snapshot(payload: Union[str, bytes, Dict[str, Any], WorldSnapshot]) -> WorldSnapshot:
    """Validate raw snapshot data.

    Raises:
        SnapshotError: If the data is from another version, cut short, or malformed
    """
    if isinstance(payload, WorldSnapshot):
        payload = payload.model_dump(mode="json")
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise SnapshotError(reason="truncated", detail=f"JSON ends unexpectedly ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise SnapshotError(reason="invalid", detail="snapshot must be a JSON object")

    version = payload.get("version")
    if version != SNAPSHOT_VERSION:
        raise SnapshotError(
            reason="version_mismatch",
            detail=f"snapshot version {version!r}, expected {SNAPSHOT_VERSION!r}",
        )

    try:
        return WorldSnapshot.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        missing = [".".join(str(p) for p in err["loc"]) for err in errors if err["type"] == "missing"]
        if missing:
            raise SnapshotError(reason="truncated", detail=f"missing fields: {', '.join(missing[:5])}") from exc
        raise SnapshotError(reason="invalid", detail=f"{len(errors)} validation errors") from exc


class PersistenceStrategy(ABC):
    """Async storage backend for world snapshots keyed by (run_id, tick)."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def save_snapshot(self, run_id: UUID, tick: int, snapshot: WorldSnapshot) -> None:
        """Store ``snapshot`` for ``run_id`` at ``tick`` (overwrites)."""

    @abstractmethod
    async def load_snapshot(self, run_id: UUID, tick: int) -> Optional[WorldSnapshot]:
        """Return the stored snapshot, or None if absent.

        Raises:
            SnapshotError: If stored data exists but cannot be parsed
        """

    @abstractmethod
    async def list_ticks(self, run_id: UUID) -> List[int]:
        """Ticks with a stored snapshot, ascending."""

    @abstractmethod
    async def delete_run(self, run_id: UUID) -> None:
        """Remove everything stored for ``run_id``."""

    async def latest_tick(self, run_id: UUID) -> Optional[int]:
        ticks = await self.list_ticks(run_id)
        return ticks[-1] if ticks else None


class InMemoryPersistence(PersistenceStrategy):
    """Keeps serialized snapshots in a dict; nothing survives the process.

    Snapshots are stored as JSON text so later mutation of a live world can
    never leak into stored state, and loading exercises the same validation
    path as files do.
    """

    def __init__(self) -> None:
        self.snapshots: Dict[tuple[UUID, int], str] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        # Data is kept so callers can inspect a run after it finished.
        pass

    async def save_snapshot(self, run_id: UUID, tick: int, snapshot: WorldSnapshot) -> None:
        self.snapshots[(run_id, tick)] = snapshot.model_dump_json()

    async def load_snapshot(self, run_id: UUID, tick: int) -> Optional[WorldSnapshot]:
        raw = self.snapshots.get((run_id, tick))
        return parse_snapshot(raw) if raw is not None else None

    async def list_ticks(self, run_id: UUID) -> List[int]:
        return sorted(tick for rid, tick in self.snapshots if rid == run_id)

    async def delete_run(self, run_id: UUID) -> None:
        for key in [k for k in self.snapshots if k[0] == run_id]:
            del self.snapshots[key]


class JsonPersistence(PersistenceStrategy):
    """File-based snapshots, human-readable.

    Directory structure:
    ```
    {base_path}/
      {run_id}/
        snapshots/
          00000.json
          00010.json
    ```
    All file I/O runs via ``asyncio.to_thread`` so saving never blocks ticks.
    """

    def __init__(self, base_path: Path | str = "world_snapshots"):
        self.base_path = Path(base_path)

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        return None

    async def save_snapshot(self, run_id: UUID, tick: int, snapshot: WorldSnapshot) -> None:
        path = self._snapshot_path(run_id, tick)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        payload = snapshot.model_dump(mode="json")
        await asyncio.to_thread(path.write_text, json.dumps(payload, indent=2), "utf-8")

    async def load_snapshot(self, run_id: UUID, tick: int) -> Optional[WorldSnapshot]:
        path = self._snapshot_path(run_id, tick)
        if not path.exists():
            return None
        raw = await asyncio.to_thread(path.read_text, "utf-8")
        return parse_snapshot(raw)

    async def list_ticks(self, run_id: UUID) -> List[int]:
        directory = self._run_dir(run_id) / "snapshots"
        if not directory.exists():
            return []
        names = await asyncio.to_thread(lambda: [p.stem for p in directory.glob("*.json")])
        return sorted(int(name) for name in names if name.isdigit())

    async def delete_run(self, run_id: UUID) -> None:
        run_dir = self._run_dir(run_id)
        if run_dir.exists():
            await asyncio.to_thread(shutil.rmtree, run_dir)

    def _run_dir(self, run_id: UUID) -> Path:
        return self.base_path / str(run_id)

    def _snapshot_path(self, run_id: UUID, tick: int) -> Path:
        return self._run_dir(run_id) / "snapshots" / f"{tick:05d}.json"
