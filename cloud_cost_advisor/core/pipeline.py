"""
Analysis pipeline: usage records to patterns to recommendations.

Stateless apart from the optional injected cache, so one service can fan
analysis out over a thread pool.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Hashable, Iterable, List, Optional, Sequence, Tuple

import structlog

from .cache import TTLCache
from .commitments import CommitmentForecast, CommitmentPlanner
from .patterns import (
    UsagePattern,
    analyze_resource,
    group_by_resource,
    group_by_service,
    record_order_key,
)
from .recommendations import Recommendation, RecommendationGenerator
from cloud_cost_advisor.storage.models import UsageRecord

logger = structlog.get_logger(__name__)


class AnalysisService:
    """Runs the analysis pipeline over a batch of usage records.

    Args:
        generator: Produces per-resource recommendations
        planner: Produces per-service commitment plans
        cache: Optional pattern cache; entries are keyed by the exact
            record content so a changed record set is never served stale
        max_workers: Analyze groups on this many threads; None or 1 runs
            sequentially
    """

    def __init__(
        self,
        generator: Optional[RecommendationGenerator] = None,
        planner: Optional[CommitmentPlanner] = None,
        cache: Optional[TTLCache] = None,
        max_workers: Optional[int] = None,
    ):
        self.generator = generator or RecommendationGenerator()
        self.planner = planner or CommitmentPlanner()
        self.cache = cache
        self.max_workers = max_workers

    def resource_patterns(self, records: Iterable[UsageRecord]) -> List[UsagePattern]:
        """One pattern per (provider, resource), sorted by that key."""
        groups = group_by_resource(records)
        jobs = [(("resource",) + key, groups[key], None) for key in sorted(groups)]
        return self._analyze(jobs)

    def service_patterns(self, records: Iterable[UsageRecord]) -> List[UsagePattern]:
        """One pattern per (provider, service), sorted by that key."""
        groups = group_by_service(records)
        jobs = [(("service",) + key, groups[key], key[1]) for key in sorted(groups)]
        return self._analyze(jobs)

    def recommend(self, records: Iterable[UsageRecord]) -> List[Recommendation]:
        """Ranked recommendations for every resource in the records."""
        patterns = self.resource_patterns(records)
        recommendations = self.generator.generate(patterns)
        logger.info(
            "analysis_completed",
            patterns=len(patterns),
            recommendations=len(recommendations),
        )
        return recommendations

    def plan_commitments(self, records: Sequence[UsageRecord]) -> CommitmentForecast:
        """Commitment plan per service over the window the records cover."""
        records = list(records)
        start = min((r.timestamp for r in records), default=None)
        end = max((r.timestamp for r in records), default=None)
        forecast = self.planner.plan(self.service_patterns(records), start=start, end=end)
        logger.info(
            "commitment_plan_completed",
            commitments=len(forecast.recommendations),
            total_potential_savings=forecast.total_potential_savings,
        )
        return forecast

    def _analyze(
        self,
        jobs: List[Tuple[Tuple[str, ...], List[UsageRecord], Optional[str]]],
    ) -> List[UsagePattern]:
        if self.max_workers and self.max_workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                return list(executor.map(lambda job: self._analyze_group(*job), jobs))
        return [self._analyze_group(*job) for job in jobs]

    def _analyze_group(
        self,
        group_key: Tuple[str, ...],
        records: List[UsageRecord],
        resource_id: Optional[str],
    ) -> UsagePattern:
        if self.cache is None:
            return analyze_resource(records, resource_id=resource_id)
        ordered = tuple(sorted(records, key=record_order_key))
        cache_key: Hashable = group_key + (ordered,)
        return self.cache.get_or_compute(
            cache_key,
            lambda: analyze_resource(ordered, resource_id=resource_id),
        )
