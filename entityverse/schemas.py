"""
Pydantic schemas for the Entityverse world kernel.

World-level configuration, the records that flow between phases (messages,
fields, events) and the declarative entity definitions a loader supplies.
Entity-internal state lives in ``entityverse.ontology`` and
``entityverse.entity``.

Design Philosophy:
- Every knob has a default so ``World()`` runs out of the box
- Config models are validated at construction and serialized into snapshots
- Records are plain data; behaviour lives in World and the ontology classes
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from entityverse.config import Config
from entityverse.linguistics.crystallizer import CrystallizationReport, CrystallizerConfig
from entityverse.ontology.emotion import EmotionalState, EmotionDelta
from entityverse.ontology.relationships import DecayConfig
from entityverse.sync.trust import PrivacySettings, TrustConfig


# ============================================================================
# World configuration
# ============================================================================


class PhysicsConfig(BaseModel):
    """Knobs for the Physical phase."""

    width: float = Field(800.0, gt=0)
    height: float = Field(600.0, gt=0)
    # 'bounce' reflects velocity at walls, 'clamp' pins to the wall, 'none' is unbounded.
    bounds: Literal["bounce", "clamp", "none"] = "bounce"
    damping: float = Field(0.85, ge=0.0, le=1.0, description="Velocity retained per second")
    interaction_radius: float = Field(160.0, gt=0)
    force_constant: float = Field(0.05, ge=0.0, description="Attraction per unit similarity")
    personal_space: float = Field(20.0, ge=0.0, description="No attraction closer than this")
    max_speed: float = Field(50.0, gt=0)


class MentalConfig(BaseModel):
    """Knobs for the Mental phase."""

    consolidation_every: int = Field(10, ge=1, description="Ticks between consolidate/forget passes")
    memory_decay_rate: float = Field(0.01, ge=0.0, description="Per-second exponential salience decay")
    forget_threshold: float = Field(0.05, ge=0.0)
    consolidation_floor: float = Field(1.0, ge=0.0, description="Combined salience needed to merge a group")
    consolidation_boost: float = Field(0.1, ge=0.0)
    emotion_drift_rate: float = Field(0.01, ge=0.0, description="Per-second pull toward baseline")


class RelationalConfig(BaseModel):
    """Knobs for the Relational phase."""

    contact_radius: float = Field(80.0, gt=0)
    fondness_gain: float = Field(0.05, ge=0.0, description="Strength gained per second in contact")
    trust_gain: float = Field(0.01, ge=0.0)
    familiarity_gain: float = Field(0.02, ge=0.0)
    contagion_rate: float = Field(0.05, ge=0.0, description="Fraction of the emotional gap closed per second")
    contagion_base: float = Field(0.2, ge=0.0, le=1.0, description="Contagion weight for strangers")
    message_radius: float = Field(200.0, gt=0, description="Reach of broadcast messages")
    memory_merge_threshold: float = Field(0.8, ge=0.0, le=1.0, description="Similarity that reinforces instead of duplicating")
    reinforce_boost: float = Field(0.05, ge=0.0)
    share_salience_factor: float = Field(0.5, ge=0.0, description="Salience multiplier for memories received via sync")
    sync_enabled: bool = True
    inbox_size: int = Field(50, ge=1)
    log_max_age: Optional[float] = Field(None, gt=0, description="Prune log entries older than this (seconds)")


class WorldConfig(BaseModel):
    """Complete configuration of a World."""

    seed: int = 42
    tick_seconds: float = Field(1.0, gt=0)
    memory_capacity: int = Field(100, ge=1)
    bond_threshold: float = Field(0.35, ge=0.0, le=1.0)
    physics: PhysicsConfig = Field(default_factory=PhysicsConfig)
    mental: MentalConfig = Field(default_factory=MentalConfig)
    relational: RelationalConfig = Field(default_factory=RelationalConfig)
    decay: DecayConfig = Field(default_factory=DecayConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    crystallizer: CrystallizerConfig = Field(default_factory=CrystallizerConfig)
    snapshot_every: int = Field(0, ge=0, description="Ticks between persisted snapshots during run(); 0 disables")
    verbose: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "WorldConfig":
        """Seed tick duration, seed and verbosity from ``Config``."""
        values: Dict[str, Any] = {
            "seed": Config.DEFAULT_SEED,
            "tick_seconds": Config.TICK_DURATION_SECONDS,
            "verbose": Config.VERBOSE,
        }
        values.update(overrides)
        return cls(**values)


# ============================================================================
# Phase records
# ============================================================================


class MessageKind(str, Enum):
    DIALOGUE = "dialogue"
    SIGNAL = "signal"
    EMOTION = "emotion"
    ACTION = "action"
    THOUGHT = "thought"


class MessagePriority(str, Enum):
    URGENT = "urgent"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_ORDER = {MessagePriority.URGENT: 0, MessagePriority.NORMAL: 1, MessagePriority.LOW: 2}


class Message(BaseModel):
    """A queued communication, delivered during the next Relational phase."""

    id: str
    seq: int = Field(..., ge=1)
    sender: str
    recipient: Optional[str] = Field(None, description="None broadcasts within message_radius")
    kind: MessageKind = MessageKind.DIALOGUE
    priority: MessagePriority = MessagePriority.NORMAL
    content: str = ""
    emotion: Optional[EmotionDelta] = Field(None, description="Delta carried by emotion messages")
    created_tick: int = 0


class WorldField(BaseModel):
    """Stationary, time-limited area that nudges the emotion of entities inside it."""

    id: str
    kind: str = "generic"
    x: float
    y: float
    radius: float = Field(50.0, gt=0)
    duration: float = Field(..., gt=0, description="Lifetime in seconds")
    elapsed: float = Field(0.0, ge=0)
    emotion: EmotionDelta = Field(default_factory=EmotionDelta, description="Delta per second inside")
    visitors: List[str] = Field(default_factory=list)

    @property
    def expired(self) -> bool:
        return self.elapsed >= self.duration

    def contains(self, x: float, y: float) -> bool:
        return (x - self.x) ** 2 + (y - self.y) ** 2 <= self.radius ** 2


class WorldEvent(BaseModel):
    """Something noteworthy that happened during a tick."""

    tick: int
    kind: str
    subject: Optional[str] = None
    target: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


class TickReport(BaseModel):
    tick: int
    time: float
    events: List[WorldEvent] = Field(default_factory=list)
    faults: int = 0
    messages_delivered: int = 0
    utterances: int = 0
    memories_synced: int = 0
    crystallization: Optional[CrystallizationReport] = None

    def events_of(self, kind: str) -> List[WorldEvent]:
        return [e for e in self.events if e.kind == kind]


# ============================================================================
# Declarative entity definitions
# ============================================================================

TriggerEvent = Literal["spawn", "bonded", "unbonded", "message", "field"]


class Trigger(BaseModel):
    """Reaction an entity performs when an event involving it occurs."""

    on: TriggerEvent
    emotion: Optional[EmotionDelta] = None
    say: List[str] = Field(default_factory=list, description="Candidate lines; one is picked")
    dialogue_key: Optional[str] = Field(None, description="Pick a line from the definition's dialogue table")
    chance: float = Field(1.0, ge=0.0, le=1.0)
    learn: Optional[str] = Field(None, description="Action name credited when the trigger fires")
    reward: float = Field(0.0, ge=-1.0, le=1.0)


class Capabilities(BaseModel):
    memory: bool = True
    relationships: bool = True
    learning: bool = False
    memory_log: bool = False


class EntityDefinition(BaseModel):
    """What a loader supplies for one kind of entity."""

    name: str
    essence: Optional[str] = None
    emotion: EmotionalState = Field(default_factory=EmotionalState)
    baseline: Optional[EmotionalState] = None
    capabilities: Capabilities = Field(default_factory=Capabilities)
    memory_capacity: Optional[int] = Field(None, ge=1)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    triggers: List[Trigger] = Field(default_factory=list)
    dialogue: Dict[str, List[str]] = Field(default_factory=dict)

    def triggers_for(self, event: str) -> List[Trigger]:
        return [t for t in self.triggers if t.on == event]
