"""
Confidence scoring for usage patterns.

The score is a heuristic, not a trained model: the mean of three clamped
sub-scores for usage consistency, data volume and seasonal shape.
"""

import math
from dataclasses import dataclass

from . import statistics
from .patterns import UsagePattern

DEFAULT_MIN_SAMPLES = 30
SEASONAL_SIGNAL_SCORE = 0.9
NO_SEASONAL_SIGNAL_SCORE = 0.5


@dataclass(frozen=True)
class ConfidenceBreakdown:
    """Sub-scores and combined score, each in [0, 1]."""
    consistency: float
    data_volume: float
    seasonal_quality: float
    score: float


def clamp_unit(value: float) -> float:
    """Clamp a value to [0, 1]; NaN becomes 0."""
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


class ConfidenceScorer:
    """Scores how far a pattern's savings estimate can be trusted."""

    def __init__(self, min_samples: int = DEFAULT_MIN_SAMPLES):
        if min_samples <= 0:
            raise ValueError("min_samples must be > 0")
        self.min_samples = min_samples

    def breakdown(self, pattern: UsagePattern) -> ConfidenceBreakdown:
        """Compute each sub-score and their mean.

        - consistency: 1 - variance of utilization samples (erratic usage
          scores lower)
        - data_volume: sample count relative to ``min_samples``
        - seasonal_quality: 0.9 with any non-zero seasonal bucket, else 0.5
        """
        consistency = clamp_unit(1 - statistics.variance(pattern.utilization_samples))
        data_volume = clamp_unit(pattern.sample_count / self.min_samples)
        seasonal_quality = clamp_unit(
            SEASONAL_SIGNAL_SCORE if pattern.seasonal.has_signal else NO_SEASONAL_SIGNAL_SCORE
        )
        score = clamp_unit((consistency + data_volume + seasonal_quality) / 3)
        return ConfidenceBreakdown(
            consistency=consistency,
            data_volume=data_volume,
            seasonal_quality=seasonal_quality,
            score=score,
        )

    def score(self, pattern: UsagePattern) -> float:
        return self.breakdown(pattern).score
