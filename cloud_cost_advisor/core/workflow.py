"""
Workflow state machine for recommendations, commitments and actions.

    pending_approval --(approver)--> approved | rejected
    approved         --(executor)--> applied  | failed

rejected, applied and failed are terminal; a new cycle needs a new item.
Invalid transitions are refused before anything is written.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

import structlog

from .actions import WorkflowAction, action_for_recommendation
from .commitments import CommitmentRecommendation
from .errors import InvalidTransition, ItemNotFound, UnauthorizedActor, WorkflowError
from .recommendations import DEFAULT_MIN_CONFIDENCE, RecommendationBase
from .serialization import (
    action_to_payload,
    recommendation_from_payload,
    recommendation_to_payload,
)
from cloud_cost_advisor.storage.models import (
    ItemKind,
    StatusTransition,
    WorkflowItem,
    WorkflowStatus,
)

logger = structlog.get_logger(__name__)


class Role(Enum):
    """Who may drive a transition."""
    SYSTEM = "system"
    APPROVER = "approver"
    EXECUTOR = "executor"


@dataclass(frozen=True)
class Actor:
    name: str
    role: Role


SYSTEM_ACTOR = Actor("system", Role.SYSTEM)
ORCHESTRATOR_ACTOR = Actor("orchestrator", Role.EXECUTOR)

TRANSITIONS: Dict[Tuple[WorkflowStatus, WorkflowStatus], Role] = {
    (WorkflowStatus.PENDING_APPROVAL, WorkflowStatus.APPROVED): Role.APPROVER,
    (WorkflowStatus.PENDING_APPROVAL, WorkflowStatus.REJECTED): Role.APPROVER,
    (WorkflowStatus.APPROVED, WorkflowStatus.APPLIED): Role.EXECUTOR,
    (WorkflowStatus.APPROVED, WorkflowStatus.FAILED): Role.EXECUTOR,
}

TERMINAL_STATUSES = frozenset({
    WorkflowStatus.REJECTED,
    WorkflowStatus.APPLIED,
    WorkflowStatus.FAILED,
})


class WorkflowStore(Protocol):
    """Persistence the state machine needs; see WorkflowRepository."""

    def add_item(self, item: WorkflowItem, actor: str) -> bool:
        ...

    def get_item(self, item_id: str) -> Optional[WorkflowItem]:
        ...

    def list_items(
        self,
        kind: Optional[ItemKind] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> List[WorkflowItem]:
        ...

    def update_status(
        self,
        item_id: str,
        expected: WorkflowStatus,
        new: WorkflowStatus,
        actor: str,
        reason: Optional[str] = None,
        record_decision: bool = False,
    ) -> bool:
        ...

    def list_transitions(self, item_id: str) -> List[StatusTransition]:
        ...


class WorkflowStateMachine:
    """Owns every status change of persisted workflow items.

    Args:
        store: Persistence for items and their transition history
        approvers: Names allowed to approve or reject; None allows anyone
            acting in the approver role
        min_confidence: Recommendations below this score are never queued
    """

    def __init__(
        self,
        store: WorkflowStore,
        approvers: Optional[Iterable[str]] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        self.store = store
        self.approvers: Optional[FrozenSet[str]] = (
            frozenset(approvers) if approvers is not None else None
        )
        self.min_confidence = min_confidence

    # Submission

    def submit_recommendation(
        self,
        recommendation: RecommendationBase,
    ) -> Optional[WorkflowItem]:
        """Queue a recommendation or commitment for approval.

        Returns:
            The stored item, or None if it was below the confidence
            threshold or an open item with the same key already exists
        """
        if recommendation.confidence_score < self.min_confidence:
            logger.info(
                "recommendation_below_threshold",
                recommendation_id=recommendation.id,
                confidence=recommendation.confidence_score,
                min_confidence=self.min_confidence,
            )
            return None

        kind = (
            ItemKind.COMMITMENT
            if isinstance(recommendation, CommitmentRecommendation)
            else ItemKind.RECOMMENDATION
        )
        item = WorkflowItem(
            id=recommendation.id,
            kind=kind,
            key=recommendation.key,
            status=WorkflowStatus.PENDING_APPROVAL,
            payload=recommendation_to_payload(recommendation),
        )
        return self._add(item)

    def submit_action(self, action: WorkflowAction) -> Optional[WorkflowItem]:
        """Store an action; it starts approved when no approval is required."""
        status = (
            WorkflowStatus.PENDING_APPROVAL
            if action.requires_approval
            else WorkflowStatus.APPROVED
        )
        item = WorkflowItem(
            id=action.id,
            kind=ItemKind.ACTION,
            key=action.key,
            status=status,
            payload=action_to_payload(action),
        )
        return self._add(item)

    def create_action_for(self, item_id: str) -> WorkflowItem:
        """Create the executable action for an approved recommendation.

        Raises:
            ItemNotFound: If the item doesn't exist
            InvalidTransition: If the item isn't approved
            WorkflowError: If the item is itself an action, its type has no
                executable action, or an open action for it already exists
        """
        item = self.get(item_id)
        if item.kind == ItemKind.ACTION:
            raise WorkflowError(f"{item_id} is already an action")
        if item.status != WorkflowStatus.APPROVED:
            raise InvalidTransition(item_id, item.status, WorkflowStatus.APPLIED)

        action = action_for_recommendation(recommendation_from_payload(item.payload))
        created = self.submit_action(action)
        if created is None:
            raise WorkflowError(f"An open action for {item_id} already exists")
        return created

    def _add(self, item: WorkflowItem) -> Optional[WorkflowItem]:
        if not self.store.add_item(item, actor=SYSTEM_ACTOR.name):
            logger.info("duplicate_open_item", key=item.key, item_id=item.id)
            return None
        logger.info(
            "workflow_item_created",
            item_id=item.id,
            kind=item.kind.value,
            status=item.status.value,
        )
        return self.store.get_item(item.id)

    # Decisions

    def approve(self, item_id: str, approver: str) -> WorkflowItem:
        """Approve a pending item.

        Raises:
            ItemNotFound: If the item doesn't exist
            UnauthorizedActor: If the approver isn't allowed to decide
            InvalidTransition: If the item isn't pending approval
        """
        actor = self._approver(approver)
        return self.transition(item_id, WorkflowStatus.APPROVED, actor)

    def reject(self, item_id: str, approver: str, reason: str) -> WorkflowItem:
        """Reject a pending item; the reason is stored with the decision.

        Raises:
            ValueError: If reason is blank
            ItemNotFound, UnauthorizedActor, InvalidTransition: As for approve
        """
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")
        actor = self._approver(approver)
        return self.transition(item_id, WorkflowStatus.REJECTED, actor, reason=reason.strip())

    def mark_applied(self, item_id: str, actor: Actor = ORCHESTRATOR_ACTOR) -> WorkflowItem:
        return self.transition(item_id, WorkflowStatus.APPLIED, actor)

    def mark_failed(
        self,
        item_id: str,
        detail: str,
        actor: Actor = ORCHESTRATOR_ACTOR,
    ) -> WorkflowItem:
        return self.transition(item_id, WorkflowStatus.FAILED, actor, reason=detail)

    def transition(
        self,
        item_id: str,
        target: WorkflowStatus,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> WorkflowItem:
        """Move an item to ``target`` if the transition and role allow it.

        The update is a compare-and-set on the current status, so two
        concurrent decisions cannot both succeed.
        """
        item = self.get(item_id)
        required_role = TRANSITIONS.get((item.status, target))
        if required_role is None:
            raise InvalidTransition(item_id, item.status, target)
        if actor.role != required_role:
            raise UnauthorizedActor(
                f"{actor.name} ({actor.role.value}) cannot move {item_id} "
                f"to {target.value}; requires {required_role.value}"
            )

        updated = self.store.update_status(
            item_id,
            expected=item.status,
            new=target,
            actor=actor.name,
            reason=reason,
            record_decision=required_role == Role.APPROVER,
        )
        if not updated:
            current = self.get(item_id)
            raise InvalidTransition(item_id, current.status, target)

        logger.info(
            "workflow_transition",
            item_id=item_id,
            from_status=item.status.value,
            to_status=target.value,
            actor=actor.name,
        )
        return self.get(item_id)

    # Queries

    def get(self, item_id: str) -> WorkflowItem:
        item = self.store.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    def pending(self, kind: Optional[ItemKind] = None) -> List[WorkflowItem]:
        """Items awaiting an approval decision."""
        return self.store.list_items(kind=kind, status=WorkflowStatus.PENDING_APPROVAL)

    def history(self, item_id: str) -> List[StatusTransition]:
        self.get(item_id)
        return self.store.list_transitions(item_id)

    def _approver(self, name: str) -> Actor:
        if not name:
            raise UnauthorizedActor("An approver name is required")
        if self.approvers is not None and name not in self.approvers:
            raise UnauthorizedActor(f"{name} is not an authorized approver")
        return Actor(name, Role.APPROVER)
