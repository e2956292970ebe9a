"""
Scoring Domain Models - Entity features and risk scores.
"""

from dataclasses import dataclass, field

from pulsemax.core.domain.series import RiskTier


@dataclass(frozen=True)
class FeatureVector:
    """
    Raw numeric features for one entity (e.g. a customer).

    Values are in their natural units; the scorer normalizes them.
    """

    entity_id: str
    values: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskFactor:
    """A feature that pushed the entity towards risk."""

    factor: str
    impact: float  # negative; more negative = worse
    description: str


@dataclass(frozen=True)
class ScoreResult:
    """Risk score for a single entity."""

    entity_id: str
    probability: float
    risk_tier: RiskTier
    ranked_factors: list[RiskFactor] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)
    confidence: float = 1.0
    missing_features: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FeatureImportance:
    feature: str
    importance: float
