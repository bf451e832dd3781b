"""Value estimation from action outcomes.

Outcomes are queued whenever something happens to an entity and drained in
the Mental phase: ``value += learning_rate * (reward - value)``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Outcome(BaseModel):
    action: str
    reward: float = Field(..., ge=-1.0, le=1.0)
    timestamp: float = 0.0
    context: Optional[str] = None


class LearningState(BaseModel):
    action_values: Dict[str, float] = Field(default_factory=dict)
    action_counts: Dict[str, int] = Field(default_factory=dict)
    pending: List[Outcome] = Field(default_factory=list)
    experiences: List[Outcome] = Field(default_factory=list)
    learning_rate: float = Field(0.1, gt=0.0, le=1.0)
    max_experiences: int = Field(200, ge=1)

    def record(self, outcome: Outcome) -> None:
        self.pending.append(outcome)

    def update(self) -> int:
        """Fold pending outcomes into value estimates; return how many were applied."""

        applied = 0
        for outcome in self.pending:
            value = self.action_values.get(outcome.action, 0.0)
            self.action_values[outcome.action] = value + self.learning_rate * (outcome.reward - value)
            self.action_counts[outcome.action] = self.action_counts.get(outcome.action, 0) + 1
            self.experiences.append(outcome)
            applied += 1
        self.pending = []
        if len(self.experiences) > self.max_experiences:
            self.experiences = self.experiences[-self.max_experiences:]
        return applied

    def value_of(self, action: str) -> float:
        return self.action_values.get(action, 0.0)

    def best_action(self, candidates: Optional[List[str]] = None) -> Optional[str]:
        pool = candidates if candidates is not None else sorted(self.action_values)
        if not pool:
            return None
        return max(pool, key=self.value_of)

    def recent_reward(self, window: int = 10) -> float:
        recent = self.experiences[-window:]
        if not recent:
            return 0.0
        return sum(o.reward for o in recent) / len(recent)
