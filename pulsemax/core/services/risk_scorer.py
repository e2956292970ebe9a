"""
Risk Scorer - Logistic churn model over engineered customer features.

Normalizes raw features against per-feature caps, combines them linearly,
and turns the result into a probability, a tier, ranked risk factors and
suggested interventions.
"""

import logging
import math
import numbers
from dataclasses import dataclass, field, replace
from typing import Sequence

from pulsemax.core.domain.errors import InvalidInputError
from pulsemax.core.domain.scoring import (
    FeatureImportance,
    FeatureVector,
    RiskFactor,
    ScoreResult,
)
from pulsemax.core.domain.series import RiskTier
from pulsemax.core.domain.settings import RiskScorerSettings

logger = logging.getLogger(__name__)

# Probability cutoffs, highest first
RISK_TIER_THRESHOLDS: tuple[tuple[RiskTier, float], ...] = (
    ("critical", 0.70),
    ("high", 0.50),
    ("medium", 0.30),
)

MAX_FACTORS = 5
MAX_RECOMMENDATIONS = 5

# Keeps the sigmoid strictly inside (0, 1) in floating point
PROBABILITY_EPSILON = 1e-6

LOW_HISTORY_SESSIONS = 3
LOW_HISTORY_PENALTY = 0.7
LOW_TENURE_DAYS = 14
LOW_TENURE_PENALTY = 0.8

EARLY_STAGE_SESSIONS = 5
NEW_CUSTOMER_DAYS = 30


@dataclass(frozen=True)
class FeatureSpec:
    """
    How one raw feature enters the model.

    `weight` is per normalized unit. A concern fires when the normalized value
    is below `concern_below` or above `concern_above`.
    """

    name: str
    scale: float
    weight: float
    default: float
    factor: str | None = None
    impact: float = 0.0
    description: str = ""
    concern_below: float | None = None
    concern_above: float | None = None
    actions: tuple[str, ...] = field(default_factory=tuple)

    def normalize(self, raw: float) -> float:
        return min(raw / self.scale, 1.0)

    def is_concerning(self, normalized: float) -> bool:
        if self.factor is None:
            return False
        if self.concern_below is not None and normalized < self.concern_below:
            return True
        if self.concern_above is not None and normalized > self.concern_above:
            return True
        return False


CHURN_FEATURES: tuple[FeatureSpec, ...] = (
    FeatureSpec(
        name="first_session_success_rate", scale=100, weight=-3.0, default=70,
        factor="Low First Session Success", impact=-0.8, concern_below=0.5,
        description="Only {value:.0f}% first session success rate",
        actions=(
            "Offer complimentary follow-up session with success coach",
            "Match with highest-rated tutor in their subject area",
        ),
    ),
    FeatureSpec(
        name="session_velocity", scale=10, weight=-4.0, default=2,
        factor="Low Session Frequency", impact=-0.7, concern_below=0.3,
        description="Only {value:.1f} sessions per week",
        actions=(
            "Send personalized re-engagement email with scheduling link",
            "Offer flexible scheduling options or session package discount",
        ),
    ),
    FeatureSpec(
        name="ib_call_frequency", scale=20, weight=3.0, default=2,
        factor="High Support Call Volume", impact=-0.6, concern_above=0.5,
        description="{value:.0f} support calls per month indicates issues",
        actions=(
            "Assign dedicated account manager for personalized support",
            "Conduct needs assessment call to identify pain points",
        ),
    ),
    FeatureSpec(
        name="goal_completion_rate", scale=100, weight=-2.0, default=60,
        factor="Low Goal Completion", impact=-0.7, concern_below=0.4,
        description="Only {value:.0f}% of goals completed",
        actions=(
            "Schedule goal-setting session with learning advisor",
            "Break down goals into smaller, achievable milestones",
        ),
    ),
    FeatureSpec(
        name="tutor_consistency", scale=100, weight=-1.5, default=60,
        factor="Low Tutor Consistency", impact=-0.5, concern_below=0.5,
        description="Only {value:.0f}% sessions with preferred tutor",
        actions=(
            "Prioritize scheduling with their preferred tutor",
            "Introduce tutor matching quiz to find better fit",
        ),
    ),
    FeatureSpec(
        name="days_since_last_session", scale=30, weight=1.5, default=7,
        factor="Inactive Account", impact=-0.9, concern_above=14 / 30,
        description="{value:.0f} days since last session",
        actions=(
            'Send urgent "We miss you!" campaign with incentive',
            "Make outbound call to check in and offer support",
        ),
    ),
    FeatureSpec(name="total_sessions", scale=100, weight=-1.0, default=0),
    FeatureSpec(
        name="average_rating", scale=5, weight=-2.5, default=4.0,
        factor="Low Satisfaction Ratings", impact=-0.8, concern_below=0.6,
        description="Average rating of {value:.1f}/5.0",
        actions=(
            "Conduct satisfaction survey to understand concerns",
            "Offer tutor change and session credit as goodwill gesture",
        ),
    ),
    FeatureSpec(name="account_age", scale=365, weight=-0.73, default=0),
)


def classify_risk(
    probability: float,
    thresholds: Sequence[tuple[RiskTier, float]] = RISK_TIER_THRESHOLDS,
) -> RiskTier:
    """Tier for a probability; cutoffs are inclusive."""
    for tier, cutoff in thresholds:
        if probability >= cutoff:
            return tier
    return "low"


def sigmoid(z: float) -> float:
    """Logistic function without overflow for large |z|."""
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    exp_z = math.exp(z)
    return exp_z / (1.0 + exp_z)


class RiskScorer:
    """
    Stateless churn scorer. One instance per model configuration.
    """

    def __init__(
        self,
        settings: RiskScorerSettings | None = None,
        features: Sequence[FeatureSpec] = CHURN_FEATURES,
    ):
        self.settings = settings or RiskScorerSettings()
        overrides = self.settings.weights or {}
        unknown = set(overrides) - {f.name for f in features}
        if unknown:
            raise InvalidInputError(f"Weight overrides for unknown features: {sorted(unknown)}")

        self.features: tuple[FeatureSpec, ...] = tuple(
            replace(f, weight=overrides[f.name]) if f.name in overrides else f
            for f in features
        )
        self.thresholds: tuple[tuple[RiskTier, float], ...] = (
            ("critical", self.settings.critical_threshold),
            ("high", self.settings.high_threshold),
            ("medium", self.settings.medium_threshold),
        )

    def score(self, features: FeatureVector) -> ScoreResult:
        """
        Score a single entity.

        Missing declared features fall back to their defaults and lower the
        confidence; malformed values raise InvalidInputError.
        """
        raw, missing = self._resolve(features)
        normalized = {spec.name: spec.normalize(raw[spec.name]) for spec in self.features}

        z = self.settings.intercept + sum(
            spec.weight * normalized[spec.name] for spec in self.features
        )
        probability = min(max(sigmoid(z), PROBABILITY_EPSILON), 1 - PROBABILITY_EPSILON)

        factors = self._risk_factors(raw, normalized)

        return ScoreResult(
            entity_id=features.entity_id,
            probability=probability,
            risk_tier=classify_risk(probability, self.thresholds),
            ranked_factors=factors,
            recommended_actions=self._recommendations(raw, factors),
            confidence=self._confidence(raw, missing),
            missing_features=missing,
        )

    def batch_score(self, batch: Sequence[FeatureVector]) -> list[ScoreResult]:
        """Score each entity independently."""
        return [self.score(features) for features in batch]

    def feature_importance(self) -> list[FeatureImportance]:
        """Absolute weight per feature, largest first."""
        importance = [FeatureImportance(f.name, abs(f.weight)) for f in self.features]
        return sorted(importance, key=lambda item: item.importance, reverse=True)

    def coefficients(self) -> dict[str, float]:
        coefficients = {"intercept": self.settings.intercept}
        coefficients.update({f.name: f.weight for f in self.features})
        return coefficients

    def _resolve(self, features: FeatureVector) -> tuple[dict[str, float], list[str]]:
        if not features.entity_id:
            raise InvalidInputError("Feature vector has no entity id")

        raw: dict[str, float] = {}
        missing: list[str] = []
        for spec in self.features:
            if spec.name not in features.values or features.values[spec.name] is None:
                raw[spec.name] = spec.default
                missing.append(spec.name)
                continue

            value = features.values[spec.name]
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InvalidInputError(
                    f"Feature '{spec.name}' for '{features.entity_id}' is not numeric: {value!r}"
                )
            value = float(value)
            if not math.isfinite(value) or value < 0:
                raise InvalidInputError(
                    f"Feature '{spec.name}' for '{features.entity_id}' is out of range: {value!r}"
                )
            raw[spec.name] = value

        if missing:
            logger.debug(f"Entity '{features.entity_id}' missing features {missing}; using defaults")
        return raw, missing

    def _risk_factors(
        self,
        raw: dict[str, float],
        normalized: dict[str, float],
    ) -> list[RiskFactor]:
        factors = [
            RiskFactor(
                factor=spec.factor,
                impact=spec.impact,
                description=spec.description.format(value=raw[spec.name]),
            )
            for spec in self.features
            if spec.is_concerning(normalized[spec.name])
        ]
        factors.sort(key=lambda f: f.impact)
        return factors[:MAX_FACTORS]

    def _recommendations(
        self,
        raw: dict[str, float],
        factors: list[RiskFactor],
    ) -> list[str]:
        actions_by_factor = {spec.factor: spec.actions for spec in self.features if spec.factor}

        actions: list[str] = []
        for factor in factors:
            actions.extend(actions_by_factor.get(factor.factor, ()))

        if raw.get("total_sessions", 0) < EARLY_STAGE_SESSIONS:
            actions.append("Early-stage customer - provide onboarding success guide")
        if raw.get("account_age", 0) < NEW_CUSTOMER_DAYS:
            actions.append("New customer - schedule welcome call to ensure satisfaction")

        return list(dict.fromkeys(actions))[:MAX_RECOMMENDATIONS]

    def _confidence(self, raw: dict[str, float], missing: list[str]) -> float:
        confidence = 1.0
        if raw.get("total_sessions", 0) < LOW_HISTORY_SESSIONS:
            confidence *= LOW_HISTORY_PENALTY
        if raw.get("account_age", 0) < LOW_TENURE_DAYS:
            confidence *= LOW_TENURE_PENALTY
        confidence *= self.settings.missing_feature_penalty ** len(missing)
        return round(max(0.0, min(1.0, confidence)), 2)
