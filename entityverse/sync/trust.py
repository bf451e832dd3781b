"""
Trust gate deciding which private state a pair of entities may exchange.

Each entity carries PrivacySettings mapping a data category to a
SharePolicy:

    never       nothing in the category leaves the entity
    trust       shared once trust in the peer reaches the threshold
    contextual  shared when trusted, otherwise only important items
    public      always shared
"""

from __future__ import annotations

from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field


class SharePolicy(str, Enum):
    NEVER = "never"
    TRUST = "trust"
    CONTEXTUAL = "contextual"
    PUBLIC = "public"


class DataCategory(str, Enum):
    MEMORY = "memory"
    EMOTION = "emotion"


class PrivacySettings(BaseModel):
    policies: Dict[DataCategory, SharePolicy] = Field(
        default_factory=lambda: {
            DataCategory.MEMORY: SharePolicy.TRUST,
            DataCategory.EMOTION: SharePolicy.PUBLIC,
        }
    )

    def policy_for(self, category: DataCategory) -> SharePolicy:
        return self.policies.get(category, SharePolicy.TRUST)


class TrustConfig(BaseModel):
    trust_threshold: float = Field(0.6, ge=0.0, le=1.0)
    contextual_importance: float = Field(0.7, ge=0.0, description="Salience that counts as important")


class GateDecision(str, Enum):
    DENY = "deny"
    IMPORTANT_ONLY = "important_only"
    ALLOW = "allow"


class TrustGate:
    """Evaluates PrivacySettings against trust in a specific peer."""

    def __init__(self, config: TrustConfig | None = None) -> None:
        self.config = config or TrustConfig()

    def decide(self, settings: PrivacySettings, category: DataCategory, trust: float) -> GateDecision:
        policy = settings.policy_for(category)
        if policy is SharePolicy.PUBLIC:
            return GateDecision.ALLOW
        if policy is SharePolicy.NEVER:
            return GateDecision.DENY
        trusted = trust >= self.config.trust_threshold
        if policy is SharePolicy.TRUST:
            return GateDecision.ALLOW if trusted else GateDecision.DENY
        return GateDecision.ALLOW if trusted else GateDecision.IMPORTANT_ONLY

    def permits(self, settings: PrivacySettings, category: DataCategory, trust: float) -> bool:
        """True if anything at all in ``category`` may be shared."""

        return self.decide(settings, category, trust) is not GateDecision.DENY

    def is_important(self, salience: float) -> bool:
        return salience >= self.config.contextual_importance
