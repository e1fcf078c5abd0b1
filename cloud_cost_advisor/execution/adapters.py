"""
Provider adapter contract.

One adapter per cloud provider wraps that provider's SDK. Every method may
raise on failure; the orchestrator handles rollback.
"""

from typing import Any, Callable, Dict, Mapping, Protocol, runtime_checkable

from cloud_cost_advisor.core.actions import ActionType
from cloud_cost_advisor.core.errors import UnsupportedAction

# action type -> adapter method name
HANDLER_NAMES: Dict[ActionType, str] = {
    ActionType.RESIZE: "resize",
    ActionType.COMMITMENT: "adjust_commitment",
    ActionType.CLEANUP: "cleanup",
    ActionType.SECURITY: "remediate",
}


@runtime_checkable
class ProviderAdapter(Protocol):
    """State capture and restore for one provider.

    Adapters also expose one dispatch method per supported action type,
    named in HANDLER_NAMES, with the signature
    ``(resource_id: str, parameters: Mapping[str, Any]) -> Any``.
    """

    def get_resource_state(self, resource_id: str) -> Any:
        """Return a snapshot sufficient to restore the resource later."""
        ...

    def restore_state(self, resource_id: str, snapshot: Any) -> None:
        """Put the resource back into the snapshotted state."""
        ...


ActionHandler = Callable[[str, Mapping[str, Any]], Any]


def resolve_handler(adapter: ProviderAdapter, action_type: ActionType) -> ActionHandler:
    """Look up the adapter method that performs an action type.

    Raises:
        UnsupportedAction: If the adapter doesn't implement it
    """
    name = HANDLER_NAMES[action_type]
    handler = getattr(adapter, name, None)
    if not callable(handler):
        raise UnsupportedAction(
            f"{type(adapter).__name__} does not support {action_type.value} actions"
        )
    return handler
