"""
Reserved-capacity commitment planning.

Works on per-service aggregated usage patterns and proposes multi-month
commitments: reserved instances or savings plans, with term, payment
option, quantity and the risks that could make the commitment a poor fit.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Iterable, List, Optional, Tuple

import structlog

from .confidence import ConfidenceScorer
from .patterns import UsagePattern
from .recommendations import (
    DEFAULT_MIN_CONFIDENCE,
    Complexity,
    Impact,
    RecommendationBase,
    RecommendationType,
    sort_recommendations,
)

logger = structlog.get_logger(__name__)

HOURS_PER_MONTH = 730

RISK_BURST_CAPACITY = "High peak utilization may need on-demand burst capacity"
RISK_OVER_PROVISIONING = "Low average utilization suggests possible over-provisioning"
RISK_LOW_FORECAST_CONFIDENCE = "No seasonal pattern data; low forecast confidence"


class CommitmentType(Enum):
    RESERVED = "reserved"
    SAVINGS_PLAN = "savings_plan"


class PaymentOption(Enum):
    ALL_UPFRONT = "all_upfront"
    PARTIAL_UPFRONT = "partial_upfront"
    NO_UPFRONT = "no_upfront"


@dataclass(frozen=True)
class CommitmentRecommendation(RecommendationBase):
    """A proposed reserved-capacity purchase for one service."""
    commitment_type: CommitmentType
    term_months: int
    payment_option: PaymentOption
    quantity: int
    risk_factors: Tuple[str, ...]

    type: ClassVar[RecommendationType] = RecommendationType.RESERVED_INSTANCES


@dataclass(frozen=True)
class CommitmentSettings:
    """Thresholds for commitment planning."""
    reserved_min_peak: float = 0.8
    long_term_min_hours: int = 2000
    hours_per_month: int = HOURS_PER_MONTH
    base_savings_rate: float = 0.3
    burst_risk_peak: float = 0.9
    over_provisioning_max_average: float = 0.4

    def __post_init__(self):
        """Validate settings."""
        if self.hours_per_month <= 0:
            raise ValueError("hours_per_month must be > 0")
        if self.long_term_min_hours < 0:
            raise ValueError("long_term_min_hours must be >= 0")
        for name in (
            "reserved_min_peak",
            "base_savings_rate",
            "burst_risk_peak",
            "over_provisioning_max_average",
        ):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1")


@dataclass(frozen=True)
class CommitmentForecast:
    """Commitment proposals for an analysis window."""
    start: Optional[datetime]
    end: Optional[datetime]
    recommendations: Tuple[CommitmentRecommendation, ...]
    total_potential_savings: float
    average_confidence: float


class CommitmentPlanner:
    """Plans reserved-capacity commitments from service-level patterns.

    ``usage_hours`` is the number of hourly samples behind a pattern.
    """

    def __init__(
        self,
        scorer: Optional[ConfidenceScorer] = None,
        settings: Optional[CommitmentSettings] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError("min_confidence must be between 0 and 1")
        self.scorer = scorer or ConfidenceScorer()
        self.settings = settings or CommitmentSettings()
        self.min_confidence = min_confidence

    def plan(
        self,
        patterns: Iterable[UsagePattern],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CommitmentForecast:
        """Propose commitments for each service pattern.

        Args:
            patterns: Per-service aggregated usage patterns
            start: Start of the analysis window, for reporting
            end: End of the analysis window, for reporting

        Returns:
            CommitmentForecast with proposals at or above the confidence
            threshold, highest savings first
        """
        recommendations = []
        for pattern in patterns:
            recommendation = self.recommend(pattern)
            if recommendation is not None:
                recommendations.append(recommendation)

        recommendations = sort_recommendations(recommendations)
        total_savings = sum(r.estimated_savings for r in recommendations)
        average_confidence = (
            sum(r.confidence_score for r in recommendations) / len(recommendations)
            if recommendations else 0.0
        )

        return CommitmentForecast(
            start=start,
            end=end,
            recommendations=tuple(recommendations),
            total_potential_savings=total_savings,
            average_confidence=average_confidence,
        )

    def recommend(self, pattern: UsagePattern) -> Optional[CommitmentRecommendation]:
        """Build one commitment proposal, or None below the confidence threshold."""
        confidence = self.scorer.score(pattern)
        if confidence < self.min_confidence:
            logger.debug(
                "commitment_skipped_low_confidence",
                provider=pattern.provider,
                service=pattern.service,
                confidence=confidence,
            )
            return None

        usage_hours = pattern.sample_count
        long_term = usage_hours > self.settings.long_term_min_hours

        return CommitmentRecommendation(
            id=str(uuid.uuid4()),
            key=f"commitment:{pattern.provider}:{pattern.service}",
            provider=pattern.provider,
            service=pattern.service,
            resource_ids=(pattern.resource_id,),
            estimated_savings=self.estimated_savings(pattern),
            confidence_score=confidence,
            impact=Impact.HIGH,
            implementation_complexity=Complexity.EASY,
            explanation=self.explain(pattern, confidence),
            commitment_type=self.commitment_type(pattern),
            term_months=36 if long_term else 12,
            payment_option=PaymentOption.ALL_UPFRONT if long_term else PaymentOption.PARTIAL_UPFRONT,
            quantity=self.quantity(pattern),
            risk_factors=tuple(self.risk_factors(pattern)),
        )

    def commitment_type(self, pattern: UsagePattern) -> CommitmentType:
        if pattern.peak_utilization > self.settings.reserved_min_peak:
            return CommitmentType.RESERVED
        return CommitmentType.SAVINGS_PLAN

    def quantity(self, pattern: UsagePattern) -> int:
        """Committed units: ``ceil(average * usage_hours / hours_per_month)``."""
        return math.ceil(
            pattern.average_utilization * pattern.sample_count / self.settings.hours_per_month
        )

    def estimated_savings(self, pattern: UsagePattern) -> float:
        """Base savings rate on total cost, scaled by months of usage."""
        months = pattern.sample_count / self.settings.hours_per_month
        return pattern.total_cost * self.settings.base_savings_rate * months

    def risk_factors(self, pattern: UsagePattern) -> List[str]:
        """Every risk that applies; they are not mutually exclusive."""
        risks = []
        if pattern.peak_utilization > self.settings.burst_risk_peak:
            risks.append(RISK_BURST_CAPACITY)
        if pattern.average_utilization < self.settings.over_provisioning_max_average:
            risks.append(RISK_OVER_PROVISIONING)
        if not pattern.seasonal.has_signal:
            risks.append(RISK_LOW_FORECAST_CONFIDENCE)
        return risks

    @staticmethod
    def explain(pattern: UsagePattern, confidence: float) -> str:
        return (
            f"Recommendation based on {confidence:.0%} confidence in usage patterns "
            f"over {pattern.sample_count} hours of {pattern.service} usage. "
            f"Average utilization: {pattern.average_utilization:.0%}, "
            f"peak utilization: {pattern.peak_utilization:.0%}."
        )
