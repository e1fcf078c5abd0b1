"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class WorkflowStatus(Enum):
    """Lifecycle status of a recommendation, commitment or action."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"
    FAILED = "failed"


class ItemKind(Enum):
    """What a workflow item's payload holds."""
    RECOMMENDATION = "recommendation"
    COMMITMENT = "commitment"
    ACTION = "action"


class AuditStatus(Enum):
    """Orchestrator transitions recorded in the audit log."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass(frozen=True)
class UsageRecord:
    """Immutable cost and utilization sample for one resource.

    Utilization is a fraction of provisioned capacity (0-1) and may be
    missing when the provider only reports cost.
    Offset-aware timestamps are converted to naive UTC so records from
    mixed sources stay comparable.
    """
    resource_id: str
    provider: str
    service: str
    timestamp: datetime
    cost: float
    utilization: Optional[float] = None

    def __post_init__(self):
        """Normalize the timestamp and check utilization is a fraction."""
        if self.timestamp.tzinfo is not None:
            utc = self.timestamp.astimezone(timezone.utc).replace(tzinfo=None)
            object.__setattr__(self, "timestamp", utc)
        if self.utilization is not None and not 0.0 <= self.utilization <= 1.0:
            raise ValueError(
                f"utilization must be between 0 and 1, got {self.utilization}"
            )


@dataclass(frozen=True)
class WorkflowItem:
    """Persisted recommendation, commitment or action with its status.

    The payload is the serialized value; status changes never rewrite it.
    """
    id: str
    kind: ItemKind
    key: str
    status: WorkflowStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    decided_by: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class StatusTransition:
    """Append-only record of a single status change."""
    item_id: str
    from_status: Optional[WorkflowStatus]
    to_status: WorkflowStatus
    actor: str
    timestamp: datetime
    reason: Optional[str] = None


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one orchestrator transition.

    Once written, these records must never be modified.
    """
    action_id: str
    status: AuditStatus
    detail: str
    timestamp: datetime
