# cloud_cost_advisor/demo/seed_demo_data.py

import random
import sys
from datetime import datetime, timedelta

from cloud_cost_advisor.storage.db import DEFAULT_DB_PATH
from cloud_cost_advisor.storage.models import UsageRecord
from cloud_cost_advisor.storage.repository import WorkflowRepository

DAYS = 14

# (provider, service, resource_id, hourly cost, utilization profile)
RESOURCES = [
    ("aws", "ec2", "i-idle-web", 0.40, "idle"),
    ("aws", "ec2", "i-busy-db", 1.20, "busy"),
    ("aws", "ec2", "i-batch", 0.80, "office_hours"),
    ("gcp", "compute", "vm-reporting", 0.60, "office_hours"),
]


def utilization_for(profile: str, ts: datetime, rng: random.Random) -> float:
    if profile == "idle":
        value = 0.2 + rng.uniform(-0.02, 0.02)
    elif profile == "busy":
        value = 0.9 + rng.uniform(-0.02, 0.02)
    else:
        working = ts.weekday() < 5 and 8 <= ts.hour < 18
        value = (0.85 if working else 0.1) + rng.uniform(-0.03, 0.03)
    return round(min(max(value, 0.0), 1.0), 4)


def build_records(start: datetime, seed: int = 7):
    rng = random.Random(seed)
    records = []
    for provider, service, resource_id, hourly_cost, profile in RESOURCES:
        for hour in range(DAYS * 24):
            ts = start + timedelta(hours=hour)
            records.append(UsageRecord(
                resource_id=resource_id,
                provider=provider,
                service=service,
                timestamp=ts,
                cost=hourly_cost,
                utilization=utilization_for(profile, ts, rng),
            ))
    return records


def main(db_path: str = DEFAULT_DB_PATH) -> int:
    repository = WorkflowRepository(db_path)
    repository.initialize_schema()
    start = datetime.now().replace(minute=0, second=0, microsecond=0) - timedelta(days=DAYS)
    return repository.insert_usage_records(build_records(start))


if __name__ == "__main__":
    inserted = main(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_DB_PATH)
    print(f"Demo usage data inserted: {inserted} records")
