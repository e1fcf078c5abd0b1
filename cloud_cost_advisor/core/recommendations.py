"""
Recommendation generation.

Applies classification rules to usage patterns and emits ranked,
confidence-scored savings recommendations. Each recommendation type is
its own frozen dataclass carrying only the fields that type needs.

Rules (evaluated independently, a pattern may trigger several):
- Rightsizing: average utilization below 0.4
- Reserved capacity: every weekly bucket above 0.8
- Spot substitution: any hourly bucket below 0.3
"""

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Iterable, List, Optional, Tuple, Union

import structlog

from .confidence import ConfidenceBreakdown, ConfidenceScorer
from .patterns import UsagePattern

logger = structlog.get_logger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7


class RecommendationType(Enum):
    """Kinds of optimization the advisor can recommend."""
    RIGHTSIZING = "rightsizing"
    RESERVED_INSTANCES = "reserved_instances"
    SPOT_INSTANCES = "spot_instances"
    STORAGE_OPTIMIZATION = "storage_optimization"


class Impact(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Complexity(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True)
class RecommendationBase:
    """Fields shared by every recommendation type.

    ``id`` is unique per analysis run; ``key`` identifies the
    (type, provider, resource) the recommendation is about and stays stable
    across runs so that open duplicates can be detected.
    """
    id: str
    key: str
    provider: str
    service: str
    resource_ids: Tuple[str, ...]
    estimated_savings: float
    confidence_score: float
    impact: Impact
    implementation_complexity: Complexity
    explanation: str

    type: ClassVar[RecommendationType]

    def __post_init__(self):
        """Validate confidence is a bounded score."""
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError("confidence_score must be between 0 and 1")


@dataclass(frozen=True)
class RightsizingRecommendation(RecommendationBase):
    """Resize an underutilized resource.

    ``target_capacity_units`` is the smallest size (in units of 80% peak
    headroom) that keeps peak utilization at or below the target.
    """
    target_capacity_units: int

    type: ClassVar[RecommendationType] = RecommendationType.RIGHTSIZING


@dataclass(frozen=True)
class ReservedCapacityRecommendation(RecommendationBase):
    """Buy reserved capacity for sustained high usage."""
    discount_rate: float

    type: ClassVar[RecommendationType] = RecommendationType.RESERVED_INSTANCES


@dataclass(frozen=True)
class SpotRecommendation(RecommendationBase):
    """Move interruptible load to spot capacity."""
    discount_rate: float

    type: ClassVar[RecommendationType] = RecommendationType.SPOT_INSTANCES


@dataclass(frozen=True)
class RuleSettings:
    """Thresholds and discount assumptions used by the rules.

    These are heuristic placeholders kept for compatibility, not derived
    economics.
    """
    rightsizing_max_average: float = 0.4
    rightsizing_target_peak: float = 0.8
    reserved_min_weekly: float = 0.8
    reserved_discount: float = 0.4
    spot_max_daily: float = 0.3
    spot_discount: float = 0.7

    def __post_init__(self):
        """Validate fractions."""
        for name in (
            "rightsizing_max_average",
            "rightsizing_target_peak",
            "reserved_min_weekly",
            "reserved_discount",
            "spot_max_daily",
            "spot_discount",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1")
        if self.rightsizing_target_peak == 0:
            raise ValueError("rightsizing_target_peak must be > 0")


def rightsizing_target_units(pattern: UsagePattern, settings: RuleSettings) -> int:
    return math.ceil(pattern.peak_utilization / settings.rightsizing_target_peak)


def rightsizing_savings(pattern: UsagePattern, settings: RuleSettings) -> float:
    """Current cost minus the cost at the smallest size keeping peak <= 80%.

    ``cost - cost * ceil(peak / 0.8) / 100``
    """
    current_cost = pattern.cost_per_unit
    optimal_cost = (current_cost * rightsizing_target_units(pattern, settings)) / 100
    return current_cost - optimal_cost


def reserved_savings(pattern: UsagePattern, settings: RuleSettings) -> float:
    return pattern.cost_per_unit * settings.reserved_discount


def spot_savings(pattern: UsagePattern, settings: RuleSettings) -> float:
    """Spot discount scaled by how much of the resource is actually used."""
    return pattern.cost_per_unit * settings.spot_discount * pattern.average_utilization


def stability_label(consistency: float) -> str:
    if consistency >= 0.95:
        return "stable"
    if consistency >= 0.8:
        return "moderately variable"
    return "erratic"


def describe_pattern(pattern: UsagePattern, breakdown: ConfidenceBreakdown) -> str:
    """Human-readable summary of the statistics behind a recommendation."""
    return (
        f"Based on {pattern.sample_count} samples with {stability_label(breakdown.consistency)} usage: "
        f"average utilization {pattern.average_utilization:.0%}, "
        f"peak {pattern.peak_utilization:.0%}, "
        f"confidence {breakdown.score:.0%}."
    )


Recommendation = Union[
    RightsizingRecommendation,
    ReservedCapacityRecommendation,
    SpotRecommendation,
]


def recommendation_key(rec_type: RecommendationType, provider: str, resource_id: str) -> str:
    return f"{rec_type.value}:{provider}:{resource_id}"


def sort_recommendations(recommendations: Iterable[RecommendationBase]) -> list:
    """Sort by estimated savings, then confidence, both descending."""
    return sorted(
        recommendations,
        key=lambda r: (r.estimated_savings, r.confidence_score),
        reverse=True,
    )


class RecommendationGenerator:
    """Turns usage patterns into a ranked list of recommendations.

    Patterns with fewer than the scorer's ``min_samples`` records produce
    nothing, and any recommendation scoring below ``min_confidence`` is
    dropped before it is returned.
    """

    def __init__(
        self,
        scorer: Optional[ConfidenceScorer] = None,
        settings: Optional[RuleSettings] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError("min_confidence must be between 0 and 1")
        self.scorer = scorer or ConfidenceScorer()
        self.settings = settings or RuleSettings()
        self.min_confidence = min_confidence

    def generate(self, patterns: Iterable[UsagePattern]) -> List[Recommendation]:
        """Evaluate every rule against every pattern.

        Args:
            patterns: Per-resource usage patterns

        Returns:
            Recommendations at or above the confidence threshold, sorted by
            estimated savings then confidence (both descending)
        """
        recommendations: List[Recommendation] = []
        for pattern in patterns:
            recommendations.extend(self.evaluate(pattern))
        return sort_recommendations(recommendations)

    def evaluate(self, pattern: UsagePattern) -> List[Recommendation]:
        """Apply all rules to one pattern, returning only confident results."""
        if pattern.sample_count < self.scorer.min_samples:
            logger.debug(
                "insufficient_data",
                resource_id=pattern.resource_id,
                provider=pattern.provider,
                sample_count=pattern.sample_count,
                min_samples=self.scorer.min_samples,
            )
            return []

        # every rule reads utilization; cost-only records can't support one
        if not pattern.utilization_samples:
            logger.debug(
                "no_utilization_data",
                resource_id=pattern.resource_id,
                provider=pattern.provider,
            )
            return []

        breakdown = self.scorer.breakdown(pattern)
        if breakdown.score < self.min_confidence:
            logger.debug(
                "low_confidence",
                resource_id=pattern.resource_id,
                provider=pattern.provider,
                confidence=breakdown.score,
                min_confidence=self.min_confidence,
            )
            return []

        results: List[Recommendation] = []
        settings = self.settings
        explanation = describe_pattern(pattern, breakdown)

        if pattern.average_utilization < settings.rightsizing_max_average:
            results.append(RightsizingRecommendation(
                **self._common_fields(pattern, RecommendationType.RIGHTSIZING, breakdown),
                estimated_savings=rightsizing_savings(pattern, settings),
                impact=Impact.HIGH,
                implementation_complexity=Complexity.MEDIUM,
                explanation=f"Right-size {pattern.service} resource {pattern.resource_id}: "
                            f"consistently underutilized. {explanation}",
                target_capacity_units=rightsizing_target_units(pattern, settings),
            ))

        if all(value > settings.reserved_min_weekly for value in pattern.seasonal.weekly):
            results.append(ReservedCapacityRecommendation(
                **self._common_fields(pattern, RecommendationType.RESERVED_INSTANCES, breakdown),
                estimated_savings=reserved_savings(pattern, settings),
                impact=Impact.HIGH,
                implementation_complexity=Complexity.EASY,
                explanation=f"Reserve capacity for {pattern.service} resource {pattern.resource_id}: "
                            f"high utilization every day of the week. {explanation}",
                discount_rate=settings.reserved_discount,
            ))

        if any(value < settings.spot_max_daily for value in pattern.seasonal.daily):
            results.append(SpotRecommendation(
                **self._common_fields(pattern, RecommendationType.SPOT_INSTANCES, breakdown),
                estimated_savings=spot_savings(pattern, settings),
                impact=Impact.MEDIUM,
                implementation_complexity=Complexity.HARD,
                explanation=f"Use spot capacity for {pattern.service} resource {pattern.resource_id}: "
                            f"daily low-usage windows. {explanation}",
                discount_rate=settings.spot_discount,
            ))

        return results

    @staticmethod
    def _common_fields(
        pattern: UsagePattern,
        rec_type: RecommendationType,
        breakdown: ConfidenceBreakdown,
    ) -> dict:
        return {
            "id": str(uuid.uuid4()),
            "key": recommendation_key(rec_type, pattern.provider, pattern.resource_id),
            "provider": pattern.provider,
            "service": pattern.service,
            "resource_ids": (pattern.resource_id,),
            "confidence_score": breakdown.score,
        }
