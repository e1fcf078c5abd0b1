"""
Workflow actions.

An action is one externally effectful change to exactly one resource.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .commitments import CommitmentRecommendation, CommitmentType
from .errors import WorkflowError
from .recommendations import (
    RecommendationBase,
    ReservedCapacityRecommendation,
    RightsizingRecommendation,
)


class ActionType(Enum):
    """Kinds of change the orchestrator can apply to a resource."""
    RESIZE = "resize"
    COMMITMENT = "commitment"
    CLEANUP = "cleanup"
    SECURITY = "security"


@dataclass(frozen=True)
class WorkflowAction:
    """A change to apply to one resource once approved.

    ``recommendation_id`` links the action to the recommendation or
    commitment it implements, if any.
    """
    id: str
    type: ActionType
    provider: str
    resource_id: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    requires_approval: bool = True
    recommendation_id: Optional[str] = None

    def __post_init__(self):
        """Validate the target resource."""
        if not self.resource_id:
            raise ValueError("resource_id is required")
        if not self.provider:
            raise ValueError("provider is required")

    @property
    def key(self) -> str:
        """One open action per recommendation; otherwise one per action."""
        return f"action:{self.recommendation_id or self.id}"

    @classmethod
    def create(
        cls,
        action_type: ActionType,
        provider: str,
        resource_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        requires_approval: bool = True,
        recommendation_id: Optional[str] = None,
    ) -> "WorkflowAction":
        """Build an action with a fresh id."""
        return cls(
            id=str(uuid.uuid4()),
            type=action_type,
            provider=provider,
            resource_id=resource_id,
            parameters=dict(parameters or {}),
            requires_approval=requires_approval,
            recommendation_id=recommendation_id,
        )


def action_for_recommendation(recommendation: RecommendationBase) -> WorkflowAction:
    """Build the action that applies an approved recommendation.

    The recommendation's own approval covers the action, so it is created
    already approved and linked back through ``recommendation_id``.

    Raises:
        WorkflowError: If the recommendation type has no executable action
    """
    parameters: Dict[str, Any]
    if isinstance(recommendation, CommitmentRecommendation):
        action_type = ActionType.COMMITMENT
        parameters = {
            "commitment_type": recommendation.commitment_type.value,
            "term_months": recommendation.term_months,
            "payment_option": recommendation.payment_option.value,
            "quantity": recommendation.quantity,
        }
    elif isinstance(recommendation, RightsizingRecommendation):
        action_type = ActionType.RESIZE
        parameters = {"target_capacity_units": recommendation.target_capacity_units}
    elif isinstance(recommendation, ReservedCapacityRecommendation):
        action_type = ActionType.COMMITMENT
        parameters = {
            "commitment_type": CommitmentType.RESERVED.value,
            "quantity": 1,
            "discount_rate": recommendation.discount_rate,
        }
    else:
        raise WorkflowError(
            f"{recommendation.type.value} recommendations have no executable action"
        )

    return WorkflowAction.create(
        action_type,
        recommendation.provider,
        recommendation.resource_ids[0],
        parameters,
        requires_approval=False,
        recommendation_id=recommendation.id,
    )
