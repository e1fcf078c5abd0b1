"""
Usage pattern analysis.

Summarizes the raw usage records of a resource (or of a whole service)
into utilization statistics and an hour-of-day / day-of-week shape.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import statistics
from cloud_cost_advisor.storage.models import UsageRecord

HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class SeasonalProfile:
    """Average utilization per hour of day and per day of week.

    ``weekly`` follows ``datetime.weekday()`` order (Monday = 0).
    """
    daily: Tuple[float, ...]
    weekly: Tuple[float, ...]

    def __post_init__(self):
        """Validate bucket counts."""
        if len(self.daily) != HOURS_PER_DAY:
            raise ValueError(f"daily profile must have {HOURS_PER_DAY} buckets")
        if len(self.weekly) != DAYS_PER_WEEK:
            raise ValueError(f"weekly profile must have {DAYS_PER_WEEK} buckets")

    @classmethod
    def empty(cls) -> "SeasonalProfile":
        return cls(daily=(0.0,) * HOURS_PER_DAY, weekly=(0.0,) * DAYS_PER_WEEK)

    @property
    def has_signal(self) -> bool:
        """True if any bucket holds a non-zero average."""
        return any(self.daily) or any(self.weekly)


@dataclass(frozen=True)
class UsagePattern:
    """Utilization and cost summary of one resource over an analysis window.

    Utilization values are fractions (0-1). ``cost_per_unit`` is the total
    cost divided by the number of records. ``sample_count`` counts every
    record, ``utilization_samples`` only those that reported utilization.
    """
    resource_id: str
    provider: str
    service: str
    average_utilization: float
    peak_utilization: float
    cost_per_unit: float
    seasonal: SeasonalProfile
    sample_count: int
    total_cost: float
    utilization_samples: Tuple[float, ...] = ()


def analyze_resource(
    records: Sequence[UsageRecord],
    resource_id: Optional[str] = None,
) -> UsagePattern:
    """Build a usage pattern from the records of a single resource.

    Records are ordered by timestamp first, so the same record set always
    produces an identical pattern regardless of input order.

    Args:
        records: All records for one (provider, resource) pair
        resource_id: Override for the pattern's resource id, used when the
            records of a whole service are aggregated

    Returns:
        UsagePattern for the window covered by the records

    Raises:
        ValueError: If records is empty
    """
    if not records:
        raise ValueError("Records list cannot be empty")

    ordered = sorted(records, key=record_order_key)
    first = ordered[0]

    utilizations = tuple(
        r.utilization for r in ordered if r.utilization is not None
    )
    total_cost = sum(r.cost for r in ordered)

    return UsagePattern(
        resource_id=resource_id if resource_id is not None else first.resource_id,
        provider=first.provider,
        service=first.service,
        average_utilization=statistics.mean(utilizations),
        peak_utilization=max(utilizations) if utilizations else 0.0,
        cost_per_unit=total_cost / len(ordered),
        seasonal=_seasonal_profile(ordered),
        sample_count=len(ordered),
        total_cost=total_cost,
        utilization_samples=utilizations,
    )


def group_by_resource(
    records: Iterable[UsageRecord],
) -> Dict[Tuple[str, str], List[UsageRecord]]:
    """Group records by (provider, resource_id)."""
    groups: Dict[Tuple[str, str], List[UsageRecord]] = {}
    for record in records:
        groups.setdefault((record.provider, record.resource_id), []).append(record)
    return groups


def group_by_service(
    records: Iterable[UsageRecord],
) -> Dict[Tuple[str, str], List[UsageRecord]]:
    """Group records by (provider, service)."""
    groups: Dict[Tuple[str, str], List[UsageRecord]] = {}
    for record in records:
        groups.setdefault((record.provider, record.service), []).append(record)
    return groups


def analyze_usage_patterns(records: Iterable[UsageRecord]) -> List[UsagePattern]:
    """Analyze a mixed record stream, one pattern per (provider, resource).

    Patterns are returned sorted by provider then resource id.
    """
    groups = group_by_resource(records)
    return [analyze_resource(groups[key]) for key in sorted(groups)]


def aggregate_service_patterns(records: Iterable[UsageRecord]) -> List[UsagePattern]:
    """Analyze records per (provider, service) for commitment planning.

    Each pattern's resource_id is the service name.
    """
    groups = group_by_service(records)
    return [
        analyze_resource(groups[key], resource_id=key[1])
        for key in sorted(groups)
    ]


def record_order_key(record: UsageRecord):
    utilization = record.utilization if record.utilization is not None else -1.0
    return (record.timestamp, record.resource_id, record.cost, utilization)


def _seasonal_profile(records: Sequence[UsageRecord]) -> SeasonalProfile:
    """Average utilization per bucket over the samples in that bucket.

    Empty buckets stay at zero; the denominator is the bucket's own sample
    count, not the window length.
    """
    hourly_sums = [0.0] * HOURS_PER_DAY
    hourly_counts = [0] * HOURS_PER_DAY
    weekday_sums = [0.0] * DAYS_PER_WEEK
    weekday_counts = [0] * DAYS_PER_WEEK

    for record in records:
        if record.utilization is None:
            continue
        hour = record.timestamp.hour
        day = record.timestamp.weekday()
        hourly_sums[hour] += record.utilization
        hourly_counts[hour] += 1
        weekday_sums[day] += record.utilization
        weekday_counts[day] += 1

    return SeasonalProfile(
        daily=tuple(_bucket_means(hourly_sums, hourly_counts)),
        weekly=tuple(_bucket_means(weekday_sums, weekday_counts)),
    )


def _bucket_means(sums: List[float], counts: List[int]) -> List[float]:
    return [total / count if count else 0.0 for total, count in zip(sums, counts)]
