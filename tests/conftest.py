"""
Shared fixtures for Cloud Cost Advisor tests.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest
import structlog

from cloud_cost_advisor.core.patterns import SeasonalProfile, UsagePattern
from cloud_cost_advisor.storage.models import UsageRecord
from cloud_cost_advisor.storage.repository import WorkflowRepository

# 2024-01-01 is a Monday
START = datetime(2024, 1, 1, 0, 0, 0)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo any structlog configuration a test (or the CLI) installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def db_path():
    """Path to a fresh, empty SQLite file."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield os.path.join(temp_dir, "advisor.db")


@pytest.fixture
def repository(db_path):
    """Repository with the schema created."""
    repo = WorkflowRepository(db_path)
    repo.initialize_schema()
    return repo


@pytest.fixture
def make_records():
    """Factory for hourly usage records of one resource."""
    def _make(
        utilizations,
        resource_id="i-web-1",
        provider="aws",
        service="ec2",
        cost=1.0,
        start=START,
    ):
        return [
            UsageRecord(
                resource_id=resource_id,
                provider=provider,
                service=service,
                timestamp=start + timedelta(hours=i),
                cost=cost,
                utilization=value,
            )
            for i, value in enumerate(utilizations)
        ]
    return _make


@pytest.fixture
def make_pattern():
    """Factory for usage patterns with explicit statistics."""
    def _make(
        resource_id="i-web-1",
        provider="aws",
        service="ec2",
        average=0.5,
        peak=0.6,
        cost_per_unit=10.0,
        seasonal=None,
        sample_count=48,
        total_cost=None,
        samples=None,
    ):
        if seasonal is None:
            seasonal = SeasonalProfile(daily=(average,) * 24, weekly=(average,) * 7)
        if samples is None:
            samples = (average,) * sample_count
        return UsagePattern(
            resource_id=resource_id,
            provider=provider,
            service=service,
            average_utilization=average,
            peak_utilization=peak,
            cost_per_unit=cost_per_unit,
            seasonal=seasonal,
            sample_count=sample_count,
            total_cost=total_cost if total_cost is not None else cost_per_unit * sample_count,
            utilization_samples=tuple(samples),
        )
    return _make
