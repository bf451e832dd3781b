"""
Relationships between entities and how they fade.

Each entity owns a RelationshipTable keyed by peer id. Interactions raise
trust, familiarity and strength; time without contact lowers them again
according to a DecayConfig:

    linear       strength -= rate * dt
    exponential  strength  = floor + (strength - floor) * (1 - rate) ** dt
    logarithmic  linear step scaled by log2(1 + excess), so decay slows
                 as strength approaches the floor
    stepped      a drop of rate * step_interval each time step_interval
                 seconds of decaying time accumulate

A grace period after the last interaction suspends decay. Relationships
whose strength falls below ``min_strength`` are pruned. Bonding is
edge-triggered: crossing ``bond_threshold`` upward reports one "bonded"
transition, and the flag re-arms only after strength drops back below.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


class DecayCurve(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    LOGARITHMIC = "logarithmic"
    STEPPED = "stepped"


class DecayConfig(BaseModel):
    """How relationships fade without interaction."""

    curve: DecayCurve = DecayCurve.LINEAR
    rate: float = Field(0.001, ge=0.0, le=1.0, description="Per-second decay rate")
    floor: float = Field(0.0, ge=0.0, le=1.0, description="Value decay approaches but never passes")
    min_strength: float = Field(0.05, ge=0.0, le=1.0, description="Prune below this strength")
    grace_period: float = Field(60.0, ge=0.0, description="Seconds after interaction with no decay")
    trust_multiplier: float = Field(0.5, ge=0.0, description="Trust decays this much slower/faster")
    max_decay_per_tick: float = Field(0.1, ge=0.0, le=1.0)
    step_interval: float = Field(30.0, gt=0.0, description="Seconds between drops (stepped curve)")


DECAY_PRESETS: Dict[str, DecayConfig] = {
    "casual": DecayConfig(curve=DecayCurve.EXPONENTIAL, rate=0.005, min_strength=0.1, grace_period=30.0),
    "standard": DecayConfig(),
    "deep": DecayConfig(curve=DecayCurve.LOGARITHMIC, rate=0.0005, min_strength=0.02, grace_period=300.0, trust_multiplier=0.2),
    "fragile": DecayConfig(curve=DecayCurve.EXPONENTIAL, rate=0.02, min_strength=0.15, grace_period=10.0, trust_multiplier=1.0),
    "immortal": DecayConfig(rate=0.0, min_strength=0.0),
}


class DecayStats(BaseModel):
    decayed: int = 0
    pruned: int = 0
    total_decay: float = 0.0

    @property
    def average_decay(self) -> float:
        return self.total_decay / self.decayed if self.decayed else 0.0


class RelationshipTransition(BaseModel):
    """A discrete change worth reporting (bonded, unbonded, formed, pruned)."""

    kind: str
    target_id: str
    strength: float


class Relationship(BaseModel):
    target_id: str
    trust: float = Field(0.5, ge=0.0, le=1.0)
    familiarity: float = Field(0.1, ge=0.0, le=1.0)
    strength: float = Field(0.0, ge=0.0, le=1.0)
    interaction_count: int = 0
    positive_count: int = 0
    negative_count: int = 0
    formed_at: float = 0.0
    last_interaction: float = 0.0
    bonded: bool = False
    decay_elapsed: float = Field(0.0, description="Decaying time accumulated toward the next step")

    def _decrement(self, value: float, dt: float, config: DecayConfig, multiplier: float) -> float:
        rate = config.rate * multiplier
        excess = max(0.0, value - config.floor)
        if rate <= 0.0 or excess <= 0.0:
            return 0.0
        if config.curve is DecayCurve.LINEAR:
            amount = rate * dt
        elif config.curve is DecayCurve.EXPONENTIAL:
            amount = excess * (1.0 - (1.0 - min(rate, 1.0)) ** dt)
        elif config.curve is DecayCurve.LOGARITHMIC:
            amount = rate * dt * math.log2(1.0 + excess)
        else:
            steps = int((self.decay_elapsed + dt) // config.step_interval) - int(
                self.decay_elapsed // config.step_interval
            )
            amount = steps * rate * config.step_interval
        return min(amount, excess, config.max_decay_per_tick)

    def apply_decay(self, *, now: float, dt: float, config: DecayConfig) -> float:
        """Decay in place; return the strength lost (0 during grace)."""

        if dt <= 0 or now - self.last_interaction < config.grace_period:
            return 0.0

        lost = self._decrement(self.strength, dt, config, 1.0)
        self.familiarity = _clamp01(
            self.familiarity - self._decrement(self.familiarity, dt, config, 1.0)
        )
        self.trust = _clamp01(
            self.trust - self._decrement(self.trust, dt, config, config.trust_multiplier)
        )
        self.strength = _clamp01(self.strength - lost)
        self.decay_elapsed += dt
        return lost


class RelationshipTable(BaseModel):
    """All relationships of one entity, keyed by peer id."""

    entries: Dict[str, Relationship] = Field(default_factory=dict)
    bond_threshold: float = Field(0.35, ge=0.0, le=1.0)
    initial_trust: float = Field(0.5, ge=0.0, le=1.0)
    initial_familiarity: float = Field(0.1, ge=0.0, le=1.0)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, target_id: str) -> Optional[Relationship]:
        return self.entries.get(target_id)

    def strength_of(self, target_id: str) -> float:
        relationship = self.entries.get(target_id)
        return relationship.strength if relationship else 0.0

    def trust_of(self, target_id: str) -> float:
        relationship = self.entries.get(target_id)
        return relationship.trust if relationship else self.initial_trust

    def interact(
        self,
        target_id: str,
        *,
        now: float,
        strength_delta: float = 0.0,
        trust_delta: float = 0.0,
        familiarity_delta: float = 0.0,
    ) -> List[RelationshipTransition]:
        """Record an interaction; create the relationship on first contact.

        Returns:
            Transitions triggered by this interaction ("formed", "bonded",
            "unbonded")
        """
        transitions: List[RelationshipTransition] = []
        relationship = self.entries.get(target_id)
        if relationship is None:
            relationship = Relationship(
                target_id=target_id,
                trust=self.initial_trust,
                familiarity=self.initial_familiarity,
                formed_at=now,
                last_interaction=now,
            )
            self.entries[target_id] = relationship
            transitions.append(
                RelationshipTransition(kind="formed", target_id=target_id, strength=0.0)
            )

        relationship.strength = _clamp01(relationship.strength + strength_delta)
        relationship.trust = _clamp01(relationship.trust + trust_delta)
        relationship.familiarity = _clamp01(relationship.familiarity + familiarity_delta)
        relationship.interaction_count += 1
        if trust_delta > 0 or strength_delta > 0:
            relationship.positive_count += 1
        elif trust_delta < 0 or strength_delta < 0:
            relationship.negative_count += 1
        relationship.last_interaction = now
        relationship.decay_elapsed = 0.0

        transition = self._check_bond(relationship)
        if transition is not None:
            transitions.append(transition)
        return transitions

    def _check_bond(self, relationship: Relationship) -> Optional[RelationshipTransition]:
        if not relationship.bonded and relationship.strength >= self.bond_threshold:
            relationship.bonded = True
            return RelationshipTransition(
                kind="bonded", target_id=relationship.target_id, strength=relationship.strength
            )
        if relationship.bonded and relationship.strength < self.bond_threshold:
            relationship.bonded = False
            return RelationshipTransition(
                kind="unbonded", target_id=relationship.target_id, strength=relationship.strength
            )
        return None

    def decay_relationships(
        self, *, now: float, dt: float, config: DecayConfig
    ) -> tuple[DecayStats, List[RelationshipTransition]]:
        """Apply the configured curve to every relationship and prune weak ones."""

        stats = DecayStats()
        transitions: List[RelationshipTransition] = []
        for target_id in list(self.entries):
            relationship = self.entries[target_id]
            lost = relationship.apply_decay(now=now, dt=dt, config=config)
            if lost > 0:
                stats.decayed += 1
                stats.total_decay += lost
                transition = self._check_bond(relationship)
                if transition is not None:
                    transitions.append(transition)
            if relationship.strength < config.min_strength and now - relationship.last_interaction >= config.grace_period:
                del self.entries[target_id]
                stats.pruned += 1
                transitions.append(
                    RelationshipTransition(kind="pruned", target_id=target_id, strength=relationship.strength)
                )
        return stats, transitions

    def bonded_with(self) -> List[str]:
        return sorted(t for t, r in self.entries.items() if r.bonded)
