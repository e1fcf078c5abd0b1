"""
Unit tests for the workflow state machine.

Uses a real SQLite repository so compare-and-set and history are covered.
"""

import threading

import pytest

from cloud_cost_advisor.core.actions import ActionType, WorkflowAction, action_for_recommendation
from cloud_cost_advisor.core.commitments import CommitmentPlanner
from cloud_cost_advisor.core.errors import (
    InvalidTransition,
    ItemNotFound,
    UnauthorizedActor,
    WorkflowError,
)
from cloud_cost_advisor.core.recommendations import (
    Complexity,
    Impact,
    RecommendationType,
    RightsizingRecommendation,
    SpotRecommendation,
    recommendation_key,
)
from cloud_cost_advisor.core.serialization import action_from_payload, recommendation_from_payload
from cloud_cost_advisor.core.workflow import (
    ORCHESTRATOR_ACTOR,
    SYSTEM_ACTOR,
    Actor,
    Role,
    WorkflowStateMachine,
)
from cloud_cost_advisor.storage.models import ItemKind, WorkflowStatus


def _recommendation(rec_id="rec-1", confidence=0.9, resource_id="i-1"):
    return RightsizingRecommendation(
        id=rec_id,
        key=recommendation_key(RecommendationType.RIGHTSIZING, "aws", resource_id),
        provider="aws",
        service="ec2",
        resource_ids=(resource_id,),
        estimated_savings=42.5,
        confidence_score=confidence,
        impact=Impact.HIGH,
        implementation_complexity=Complexity.MEDIUM,
        explanation="Consistently underutilized",
        target_capacity_units=1,
    )


@pytest.fixture
def workflow(repository):
    return WorkflowStateMachine(repository)


class TestSubmission:
    """Test queuing items for approval."""

    def test_recommendation_starts_pending(self, workflow):
        item = workflow.submit_recommendation(_recommendation())

        assert item.status == WorkflowStatus.PENDING_APPROVAL
        assert item.kind == ItemKind.RECOMMENDATION
        assert item.key == "rightsizing:aws:i-1"
        assert recommendation_from_payload(item.payload) == _recommendation()

    def test_low_confidence_is_never_queued(self, workflow, repository):
        assert workflow.submit_recommendation(_recommendation(confidence=0.65)) is None
        assert repository.list_items() == []

    def test_commitment_kind(self, workflow, make_pattern):
        pattern = make_pattern(resource_id="ec2", average=0.85, peak=0.9)
        commitment = CommitmentPlanner().recommend(pattern)

        item = workflow.submit_recommendation(commitment)
        assert item.kind == ItemKind.COMMITMENT

    def test_duplicate_open_key_is_refused(self, workflow, repository):
        assert workflow.submit_recommendation(_recommendation("rec-1")) is not None
        assert workflow.submit_recommendation(_recommendation("rec-2")) is None
        assert len(repository.list_items()) == 1

    def test_resubmit_after_terminal_status(self, workflow):
        workflow.submit_recommendation(_recommendation("rec-1"))
        workflow.reject("rec-1", "alice", "Not now")

        item = workflow.submit_recommendation(_recommendation("rec-2"))
        assert item is not None
        assert item.status == WorkflowStatus.PENDING_APPROVAL

    def test_action_without_approval_starts_approved(self, workflow):
        action = WorkflowAction.create(ActionType.CLEANUP, "aws", "vol-1", requires_approval=False)
        item = workflow.submit_action(action)

        assert item.kind == ItemKind.ACTION
        assert item.status == WorkflowStatus.APPROVED
        assert item.key == f"action:{action.id}"

    def test_pending_lists_only_pending(self, workflow):
        workflow.submit_recommendation(_recommendation("rec-1", resource_id="i-1"))
        workflow.submit_recommendation(_recommendation("rec-2", resource_id="i-2"))
        workflow.approve("rec-2", "alice")

        assert [item.id for item in workflow.pending()] == ["rec-1"]
        assert workflow.pending(ItemKind.ACTION) == []


class TestDecisions:
    """Test approval and rejection."""

    def test_approve(self, workflow):
        workflow.submit_recommendation(_recommendation())
        item = workflow.approve("rec-1", "alice")

        assert item.status == WorkflowStatus.APPROVED
        assert item.decided_by == "alice"

        history = workflow.history("rec-1")
        assert [(t.from_status, t.to_status) for t in history] == [
            (None, WorkflowStatus.PENDING_APPROVAL),
            (WorkflowStatus.PENDING_APPROVAL, WorkflowStatus.APPROVED),
        ]
        assert history[0].actor == SYSTEM_ACTOR.name
        assert history[1].actor == "alice"

    def test_reject_records_reason(self, workflow):
        workflow.submit_recommendation(_recommendation())
        item = workflow.reject("rec-1", "bob", "  Too risky  ")

        assert item.status == WorkflowStatus.REJECTED
        assert item.reason == "Too risky"
        assert workflow.history("rec-1")[-1].reason == "Too risky"

    def test_reject_requires_reason(self, workflow):
        workflow.submit_recommendation(_recommendation())
        with pytest.raises(ValueError):
            workflow.reject("rec-1", "bob", "   ")
        assert workflow.get("rec-1").status == WorkflowStatus.PENDING_APPROVAL

    def test_cannot_decide_twice(self, workflow):
        workflow.submit_recommendation(_recommendation())
        workflow.approve("rec-1", "alice")

        with pytest.raises(InvalidTransition):
            workflow.approve("rec-1", "alice")
        with pytest.raises(InvalidTransition):
            workflow.reject("rec-1", "alice", "changed my mind")

    def test_approver_allow_list(self, repository):
        workflow = WorkflowStateMachine(repository, approvers=["alice"])
        workflow.submit_recommendation(_recommendation())

        with pytest.raises(UnauthorizedActor):
            workflow.approve("rec-1", "mallory")
        with pytest.raises(UnauthorizedActor):
            workflow.approve("rec-1", "")
        assert workflow.approve("rec-1", "alice").status == WorkflowStatus.APPROVED

    def test_unknown_item(self, workflow):
        with pytest.raises(ItemNotFound):
            workflow.approve("missing", "alice")
        with pytest.raises(ItemNotFound):
            workflow.history("missing")


class TestTransitions:
    """Test the transition table and roles."""

    def test_full_lifecycle(self, workflow):
        workflow.submit_recommendation(_recommendation())
        workflow.approve("rec-1", "alice")
        item = workflow.mark_applied("rec-1")

        assert item.status == WorkflowStatus.APPLIED
        # the approval decision is kept after execution
        assert item.decided_by == "alice"

    def test_cannot_apply_pending_item(self, workflow):
        workflow.submit_recommendation(_recommendation())
        with pytest.raises(InvalidTransition):
            workflow.mark_applied("rec-1")

    def test_terminal_statuses_are_final(self, workflow):
        workflow.submit_recommendation(_recommendation())
        workflow.approve("rec-1", "alice")
        workflow.mark_failed("rec-1", "provider error")

        for target in WorkflowStatus:
            for actor in (ORCHESTRATOR_ACTOR, Actor("alice", Role.APPROVER)):
                with pytest.raises((InvalidTransition, UnauthorizedActor)):
                    workflow.transition("rec-1", target, actor)
        assert workflow.get("rec-1").status == WorkflowStatus.FAILED

    def test_roles_are_enforced(self, workflow):
        workflow.submit_recommendation(_recommendation())
        with pytest.raises(UnauthorizedActor):
            workflow.transition("rec-1", WorkflowStatus.APPROVED, ORCHESTRATOR_ACTOR)

        workflow.approve("rec-1", "alice")
        with pytest.raises(UnauthorizedActor):
            workflow.transition("rec-1", WorkflowStatus.APPLIED, Actor("alice", Role.APPROVER))

    def test_concurrent_decisions_only_one_wins(self, workflow):
        """Racing approvals produce exactly one approved transition."""
        workflow.submit_recommendation(_recommendation())
        barrier = threading.Barrier(4)
        outcomes = []

        def decide(name):
            barrier.wait()
            try:
                workflow.approve("rec-1", name)
                outcomes.append("ok")
            except InvalidTransition:
                outcomes.append("refused")

        threads = [threading.Thread(target=decide, args=(f"user-{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        approvals = [
            t for t in workflow.history("rec-1")
            if t.to_status == WorkflowStatus.APPROVED
        ]
        assert len(approvals) == 1


class TestActionCreation:
    """Test turning approved recommendations into executable actions."""

    def test_rightsizing_becomes_resize(self, workflow):
        workflow.submit_recommendation(_recommendation())
        workflow.approve("rec-1", "alice")

        item = workflow.create_action_for("rec-1")

        assert item.kind == ItemKind.ACTION
        assert item.status == WorkflowStatus.APPROVED
        assert item.key == "action:rec-1"
        action = action_from_payload(item.payload)
        assert action.type == ActionType.RESIZE
        assert action.resource_id == "i-1"
        assert action.parameters == {"target_capacity_units": 1}
        assert action.recommendation_id == "rec-1"

    def test_commitment_becomes_commitment_action(self, make_pattern):
        pattern = make_pattern(resource_id="ec2", average=0.85, peak=0.9)
        commitment = CommitmentPlanner().recommend(pattern)

        action = action_for_recommendation(commitment)

        assert action.type == ActionType.COMMITMENT
        assert action.resource_id == "ec2"
        assert action.parameters == {
            "commitment_type": commitment.commitment_type.value,
            "term_months": commitment.term_months,
            "payment_option": commitment.payment_option.value,
            "quantity": commitment.quantity,
        }
        assert not action.requires_approval

    def test_spot_has_no_action(self):
        spot = SpotRecommendation(
            id="rec-spot",
            key=recommendation_key(RecommendationType.SPOT_INSTANCES, "aws", "i-1"),
            provider="aws",
            service="ec2",
            resource_ids=("i-1",),
            estimated_savings=10.0,
            confidence_score=0.9,
            impact=Impact.MEDIUM,
            implementation_complexity=Complexity.HARD,
            explanation="Interruptible load",
            discount_rate=0.7,
        )
        with pytest.raises(WorkflowError, match="no executable action"):
            action_for_recommendation(spot)

    def test_only_approved_items(self, workflow):
        workflow.submit_recommendation(_recommendation())

        with pytest.raises(InvalidTransition):
            workflow.create_action_for("rec-1")

        workflow.reject("rec-1", "alice", "Needed for month end")
        with pytest.raises(InvalidTransition):
            workflow.create_action_for("rec-1")

    def test_one_open_action_per_recommendation(self, workflow, repository):
        workflow.submit_recommendation(_recommendation())
        workflow.approve("rec-1", "alice")
        workflow.create_action_for("rec-1")

        with pytest.raises(WorkflowError, match="already exists"):
            workflow.create_action_for("rec-1")
        assert len(repository.list_items(kind=ItemKind.ACTION)) == 1

    def test_action_item_refused(self, workflow):
        action = WorkflowAction.create(ActionType.CLEANUP, "aws", "vol-1", requires_approval=False)
        workflow.submit_action(action)

        with pytest.raises(WorkflowError, match="already an action"):
            workflow.create_action_for(action.id)
