"""
Exception hierarchy for workflow and execution failures.

Insufficient data and low confidence are not errors: the analysis layer
suppresses that output instead of raising.
"""


class AdvisorError(Exception):
    """Base class for errors raised by Cloud Cost Advisor."""


class WorkflowError(AdvisorError):
    """A workflow command was refused before any external call was made."""


class ItemNotFound(WorkflowError):
    """No workflow item exists with the given id."""
    def __init__(self, item_id: str):
        super().__init__(f"Workflow item not found: {item_id}")
        self.item_id = item_id


class InvalidTransition(WorkflowError):
    """The requested status change is not allowed from the current status."""
    def __init__(self, item_id: str, current, target):
        super().__init__(
            f"Cannot move {item_id} from {current.value} to {target.value}"
        )
        self.item_id = item_id
        self.current = current
        self.target = target


class UnauthorizedActor(WorkflowError):
    """The actor is not allowed to make this transition."""


class ExecutionError(AdvisorError):
    """Base class for orchestrator failures that are not provider errors."""


class UnsupportedProvider(ExecutionError):
    """No adapter is registered for the action's provider."""


class UnsupportedAction(ExecutionError):
    """The provider adapter has no handler for the action type."""


class ResourceBusy(ExecutionError):
    """Another action is already in flight on the same resource."""
    def __init__(self, resource_id: str):
        super().__init__(f"Resource {resource_id} has an action in progress")
        self.resource_id = resource_id


class ProviderTimeout(ExecutionError, TimeoutError):
    """A provider call did not return within the configured timeout."""
