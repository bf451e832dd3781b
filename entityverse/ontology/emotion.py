"""
PAD emotional state for entities.

Three bounded scalars describe how an entity feels:
- valence: unpleasant (-1) to pleasant (+1)
- arousal: calm (0) to excited (1)
- dominance: submissive (0) to in-control (1)

Every mutation goes through ``clamp_axis`` so the state is always inside
its declared bounds. Non-finite inputs leave the axis unchanged instead of
poisoning it with NaN.
"""

from __future__ import annotations

import math
from typing import Dict, Tuple

from pydantic import BaseModel, Field


AXIS_BOUNDS: Dict[str, Tuple[float, float]] = {
    "valence": (-1.0, 1.0),
    "arousal": (0.0, 1.0),
    "dominance": (0.0, 1.0),
}
AXES = tuple(AXIS_BOUNDS)


def clamp_axis(axis: str, value: float, fallback: float) -> float:
    """Clamp ``value`` into the bounds of ``axis``; non-finite values yield ``fallback``."""

    low, high = AXIS_BOUNDS[axis]
    if value is None or not math.isfinite(value):
        value = fallback
    return min(high, max(low, value))


class EmotionDelta(BaseModel):
    """Additive change applied to an EmotionalState."""

    valence: float = 0.0
    arousal: float = 0.0
    dominance: float = 0.0

    def scaled(self, factor: float) -> "EmotionDelta":
        return EmotionDelta(
            valence=self.valence * factor,
            arousal=self.arousal * factor,
            dominance=self.dominance * factor,
        )

    def is_zero(self) -> bool:
        return self.valence == 0.0 and self.arousal == 0.0 and self.dominance == 0.0


class EmotionalState(BaseModel):
    """Current PAD emotion of an entity."""

    valence: float = Field(0.0, ge=-1.0, le=1.0, description="Pleasant (+1) vs unpleasant (-1)")
    arousal: float = Field(0.5, ge=0.0, le=1.0, description="Excited (1) vs calm (0)")
    dominance: float = Field(0.5, ge=0.0, le=1.0, description="In control (1) vs submissive (0)")

    def apply_delta(self, delta: EmotionDelta) -> "EmotionalState":
        """Add ``delta`` in place, clamping every axis. Returns self for chaining."""

        for axis in AXES:
            current = getattr(self, axis)
            proposed = current + getattr(delta, axis)
            setattr(self, axis, clamp_axis(axis, proposed, current))
        return self

    def drift_toward(self, baseline: "EmotionalState", rate: float) -> "EmotionalState":
        """Move a fraction ``rate`` of the way toward ``baseline`` (in place)."""

        rate = min(1.0, max(0.0, rate))
        for axis in AXES:
            current = getattr(self, axis)
            target = getattr(baseline, axis)
            setattr(self, axis, clamp_axis(axis, current + (target - current) * rate, current))
        return self

    def delta_toward(self, other: "EmotionalState", fraction: float) -> EmotionDelta:
        """Delta that would move this state ``fraction`` of the way to ``other``."""

        return EmotionDelta(
            valence=(other.valence - self.valence) * fraction,
            arousal=(other.arousal - self.arousal) * fraction,
            dominance=(other.dominance - self.dominance) * fraction,
        )

    def distance(self, other: "EmotionalState") -> float:
        return emotion_distance(self, other)

    def label(self) -> str:
        """Closest named preset, handy for prompts and logs."""

        return min(
            EMOTION_BASELINES,
            key=lambda name: (emotion_distance(self, EMOTION_BASELINES[name]), name),
        )


def emotion_distance(a: EmotionalState, b: EmotionalState) -> float:
    """Euclidean distance in PAD space."""

    return math.sqrt(
        (a.valence - b.valence) ** 2
        + (a.arousal - b.arousal) ** 2
        + (a.dominance - b.dominance) ** 2
    )


def blend_emotions(a: EmotionalState, b: EmotionalState, t: float) -> EmotionalState:
    """Linear interpolation between two states (``t=0`` gives ``a``)."""

    t = min(1.0, max(0.0, t))
    return EmotionalState(
        valence=a.valence + (b.valence - a.valence) * t,
        arousal=a.arousal + (b.arousal - a.arousal) * t,
        dominance=a.dominance + (b.dominance - a.dominance) * t,
    )


NEUTRAL = EmotionalState(valence=0.0, arousal=0.5, dominance=0.5)

EMOTION_BASELINES: Dict[str, EmotionalState] = {
    "neutral": NEUTRAL,
    "happy": EmotionalState(valence=0.7, arousal=0.6, dominance=0.6),
    "sad": EmotionalState(valence=-0.6, arousal=0.3, dominance=0.3),
    "anxious": EmotionalState(valence=-0.4, arousal=0.8, dominance=0.2),
    "content": EmotionalState(valence=0.5, arousal=0.3, dominance=0.6),
    "angry": EmotionalState(valence=-0.7, arousal=0.8, dominance=0.8),
    "calm": EmotionalState(valence=0.2, arousal=0.1, dominance=0.5),
    "excited": EmotionalState(valence=0.6, arousal=0.9, dominance=0.6),
}


def preset(name: str) -> EmotionalState:
    """Return a fresh copy of a named baseline."""

    try:
        return EMOTION_BASELINES[name].model_copy()
    except KeyError:
        raise ValueError(
            f"Unknown emotion preset '{name}'. Available: {sorted(EMOTION_BASELINES)}"
        ) from None
