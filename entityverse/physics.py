"""Deterministic motion for the Physical phase.

Forces are accumulated for every unordered pair first and applied
afterwards, so the result does not depend on iteration order.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Sequence, Tuple

from entityverse.entity import Entity
from entityverse.schemas import PhysicsConfig
from entityverse.scoring import SimilarityScorer


Force = Tuple[float, float]


def distance(a: Entity, b: Entity) -> float:
    return math.hypot(b.x - a.x, b.y - a.y)


def pairs_within(entities: Sequence[Entity], radius: float) -> List[Tuple[Entity, Entity, float]]:
    """All unordered pairs closer than ``radius``, in stable index order."""

    pairs: List[Tuple[Entity, Entity, float]] = []
    for i, a in enumerate(entities):
        for b in entities[i + 1:]:
            d = distance(a, b)
            if d <= radius:
                pairs.append((a, b, d))
    return pairs


def essence_similarity(a: Entity, b: Entity, scorer: SimilarityScorer) -> float:
    """Similarity of two entities' essences; 0 when either has none."""

    if not a.essence or not b.essence:
        return 0.0
    score = scorer.similarity(a.essence, b.essence)
    if not math.isfinite(score):
        return 0.0
    return min(1.0, max(0.0, score))


def compute_forces(
    entities: Sequence[Entity],
    config: PhysicsConfig,
    similarity: Callable[[Entity, Entity], float],
) -> Dict[str, Force]:
    """Attraction between similar entities inside the interaction radius."""

    forces: Dict[str, List[float]] = {e.id: [0.0, 0.0] for e in entities}
    for a, b, d in pairs_within(entities, config.interaction_radius):
        if d <= config.personal_space or d == 0.0:
            continue
        magnitude = config.force_constant * similarity(a, b)
        if magnitude == 0.0:
            continue
        ux, uy = (b.x - a.x) / d, (b.y - a.y) / d
        forces[a.id][0] += magnitude * ux
        forces[a.id][1] += magnitude * uy
        forces[b.id][0] -= magnitude * ux
        forces[b.id][1] -= magnitude * uy
    return {entity_id: (f[0], f[1]) for entity_id, f in forces.items()}


def integrate(entity: Entity, force: Force, dt: float, config: PhysicsConfig) -> None:
    """Semi-implicit Euler step with damping, speed cap and bounds."""

    entity.vx = (entity.vx + force[0] * dt) * (config.damping ** dt)
    entity.vy = (entity.vy + force[1] * dt) * (config.damping ** dt)
    speed = math.hypot(entity.vx, entity.vy)
    if speed > config.max_speed:
        scale = config.max_speed / speed
        entity.vx *= scale
        entity.vy *= scale
    entity.x += entity.vx * dt
    entity.y += entity.vy * dt
    apply_bounds(entity, config)


def apply_bounds(entity: Entity, config: PhysicsConfig) -> None:
    if config.bounds == "none":
        return
    for axis, velocity, limit in (("x", "vx", config.width), ("y", "vy", config.height)):
        value = getattr(entity, axis)
        if 0.0 <= value <= limit:
            continue
        clamped = min(limit, max(0.0, value))
        if config.bounds == "bounce":
            # reflect the overshoot back inside
            reflected = -value if value < 0.0 else 2 * limit - value
            setattr(entity, axis, min(limit, max(0.0, reflected)))
            setattr(entity, velocity, -getattr(entity, velocity))
        else:
            setattr(entity, axis, clamped)
            setattr(entity, velocity, 0.0)
