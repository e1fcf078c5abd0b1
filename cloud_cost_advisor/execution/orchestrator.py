"""
Execution of approved workflow actions with rollback on failure.

Protocol for one action, strictly ordered and serialized per resource:

1. Audit ``started``
2. Snapshot the resource with ``get_resource_state``
3. Dispatch to the adapter handler for the action type
4. Success: audit ``completed``, notify, mark applied
5. Failure: audit ``failed``, notify, ``restore_state`` with the snapshot,
   audit ``rolled_back`` or ``rollback_failed``, mark failed

The snapshot is always taken before the mutating call. A failed rollback is
never retried; it is logged as needing manual intervention.

A dispatch that times out may still be running. Its rollback waits for it
to finish, up to ``rollback_grace``; past that the rollback is skipped as
failed and the resource stays locked until the call returns.
"""

import json
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Protocol

import structlog

from .adapters import ProviderAdapter, resolve_handler
from .locks import Lease, ResourceLocks
from cloud_cost_advisor.config.loader import ExecutionConfig
from cloud_cost_advisor.core.actions import WorkflowAction
from cloud_cost_advisor.core.errors import (
    InvalidTransition,
    ProviderTimeout,
    UnsupportedProvider,
    WorkflowError,
)
from cloud_cost_advisor.core.serialization import action_from_payload
from cloud_cost_advisor.core.workflow import ORCHESTRATOR_ACTOR, WorkflowStateMachine
from cloud_cost_advisor.notifications import Notification
from cloud_cost_advisor.storage.models import (
    AuditLogEntry,
    AuditStatus,
    ItemKind,
    WorkflowStatus,
)

logger = structlog.get_logger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_ROLLBACK_GRACE = 30.0
DETAIL_MAX_LENGTH = 2000


class ExecutionOutcome(Enum):
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    # snapshot failed, nothing was changed
    ABORTED = "aborted"


@dataclass(frozen=True)
class ExecutionResult:
    """What happened to one action."""
    action_id: str
    outcome: ExecutionOutcome
    result: Any = None
    error: Optional[BaseException] = None
    rollback_error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == ExecutionOutcome.SUCCEEDED

    @property
    def requires_manual_intervention(self) -> bool:
        return self.outcome == ExecutionOutcome.ROLLBACK_FAILED


class AuditLog(Protocol):
    """Durable append-only audit trail; see WorkflowRepository."""

    def append_audit_entry(self, entry: AuditLogEntry) -> None:
        ...

    def list_audit_entries(self, action_id: str) -> List[AuditLogEntry]:
        ...


class Notifier(Protocol):
    def send(self, notification: Notification) -> Any:
        ...


class ExecutionOrchestrator:
    """Runs approved actions against provider adapters.

    Args:
        audit_log: Where every orchestrator transition is written
        workflow: State machine that owns item statuses
        adapters: Provider name -> adapter
        notifier: Receives success and failure notifications
        locks: Per-resource locks; defaults to rejecting busy resources
        call_timeout: Seconds each provider call may take; None disables
        max_workers: Threads available for provider calls
        rollback_grace: Seconds a timed-out dispatch may keep running before
            its rollback is abandoned; None waits for it to finish
    """

    def __init__(
        self,
        audit_log: AuditLog,
        workflow: WorkflowStateMachine,
        adapters: Mapping[str, ProviderAdapter],
        notifier: Optional[Notifier] = None,
        locks: Optional[ResourceLocks] = None,
        call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT,
        max_workers: int = 4,
        rollback_grace: Optional[float] = DEFAULT_ROLLBACK_GRACE,
    ):
        self.audit_log = audit_log
        self.workflow = workflow
        self.adapters = dict(adapters)
        self.notifier = notifier
        self.locks = locks or ResourceLocks()
        self.call_timeout = call_timeout
        self.rollback_grace = rollback_grace
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="provider-call",
        )

    @classmethod
    def from_config(
        cls,
        config: ExecutionConfig,
        audit_log: AuditLog,
        workflow: WorkflowStateMachine,
        adapters: Mapping[str, ProviderAdapter],
        notifier: Optional[Notifier] = None,
    ) -> "ExecutionOrchestrator":
        """Build an orchestrator from the execution section of the config."""
        return cls(
            audit_log,
            workflow,
            adapters,
            notifier=notifier,
            locks=ResourceLocks(wait_timeout=config.lock_wait_seconds),
            call_timeout=config.call_timeout_seconds,
            max_workers=config.max_workers,
            rollback_grace=config.rollback_grace_seconds,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown()

    def shutdown(self, wait: bool = False) -> None:
        """Release worker threads. A timed-out call may still be running."""
        self._executor.shutdown(wait=wait)

    def execute(self, action_id: str) -> Any:
        """Execute an approved action and return the provider's result.

        Raises:
            WorkflowError: If the action can't be executed (checked before
                any external call)
            ExecutionError: If the provider or handler is unsupported, or
                the resource is busy
            Exception: The original provider error, re-raised after the
                rollback attempt whatever its outcome
        """
        result = self.attempt(action_id)
        if result.error is not None:
            raise result.error
        return result.result

    def attempt(self, action_id: str) -> ExecutionResult:
        """Execute an approved action and report the outcome.

        Provider failures are captured in the returned ExecutionResult
        rather than raised. Pre-check failures still raise.
        """
        action = self._load_approved(action_id)
        adapter = self.adapters.get(action.provider)
        if adapter is None:
            raise UnsupportedProvider(f"No adapter registered for provider {action.provider!r}")
        handler = resolve_handler(adapter, action.type)

        with self.locks.hold(action.resource_id) as lease:
            # another thread may have run it while we waited for the lock
            action = self._load_approved(action_id)
            return self._run(action, adapter, handler, lease)

    def _load_approved(self, action_id: str) -> WorkflowAction:
        item = self.workflow.get(action_id)
        if item.kind != ItemKind.ACTION:
            raise WorkflowError(f"{action_id} is a {item.kind.value}, not an action")
        if item.status != WorkflowStatus.APPROVED:
            raise InvalidTransition(action_id, item.status, WorkflowStatus.APPLIED)
        return action_from_payload(item.payload)

    def _run(
        self,
        action: WorkflowAction,
        adapter: ProviderAdapter,
        handler: Callable[[str, Mapping[str, Any]], Any],
        lease: Lease,
    ) -> ExecutionResult:
        log = logger.bind(
            action_id=action.id,
            action_type=action.type.value,
            provider=action.provider,
            resource_id=action.resource_id,
        )
        self._audit(action.id, AuditStatus.STARTED, _describe({
            "type": action.type.value,
            "provider": action.provider,
            "resource_id": action.resource_id,
            "parameters": dict(action.parameters),
        }))
        log.info("action_started")

        try:
            snapshot = self._wait(
                self._submit(adapter.get_resource_state, action.resource_id),
                "get_resource_state",
            )
        except Exception as exc:
            detail = f"State capture failed: {_error_text(exc)}"
            self._audit(action.id, AuditStatus.FAILED, detail)
            log.error("state_capture_failed", error=_error_text(exc))
            self._notify_failure(action, exc)
            self._finish(action, WorkflowStatus.FAILED, detail)
            return ExecutionResult(action.id, ExecutionOutcome.ABORTED, error=exc)

        dispatch = self._submit(handler, action.resource_id, dict(action.parameters))
        try:
            result = self._wait(dispatch, action.type.value)
        except Exception as exc:
            return self._compensate(action, adapter, snapshot, exc, dispatch, lease, log)

        self._audit(action.id, AuditStatus.COMPLETED, _describe(result))
        log.info("action_completed")
        self._notify_success(action, result)
        self._finish(action, WorkflowStatus.APPLIED)
        return ExecutionResult(action.id, ExecutionOutcome.SUCCEEDED, result=result)

    def _compensate(
        self,
        action: WorkflowAction,
        adapter: ProviderAdapter,
        snapshot: Any,
        error: Exception,
        dispatch: Future,
        lease: Lease,
        log,
    ) -> ExecutionResult:
        self._audit(action.id, AuditStatus.FAILED, _error_text(error))
        log.warning("action_failed", error=_error_text(error))
        self._notify_failure(action, error)

        rollback_error = None
        if not self._settled(dispatch):
            # restoring now would race the running dispatch
            rollback_error = ProviderTimeout(
                f"dispatch still running after {self.rollback_grace}s grace; rollback skipped"
            )
            lease.release_after(dispatch)
        else:
            restore = self._submit(adapter.restore_state, action.resource_id, snapshot)
            try:
                self._wait(restore, "restore_state")
            except Exception as exc:
                rollback_error = exc
                if not restore.done():
                    lease.release_after(restore)

        if rollback_error is not None:
            self._audit(action.id, AuditStatus.ROLLBACK_FAILED, _error_text(rollback_error))
            log.error(
                "rollback_failed",
                error=_error_text(rollback_error),
                manual_intervention_required=True,
                resource_locked=lease.pending is not None,
            )
            outcome = ExecutionOutcome.ROLLBACK_FAILED
        else:
            self._audit(action.id, AuditStatus.ROLLED_BACK, _describe({"restored_state": snapshot}))
            log.info("action_rolled_back")
            outcome = ExecutionOutcome.ROLLED_BACK

        self._finish(action, WorkflowStatus.FAILED, _error_text(error))
        return ExecutionResult(
            action.id,
            outcome,
            error=error,
            rollback_error=rollback_error,
        )

    def _submit(self, fn: Callable, *args) -> Future:
        return self._executor.submit(fn, *args)

    def _wait(self, future: Future, name: str) -> Any:
        """Wait for a provider call, bounded by call_timeout.

        On timeout the call may keep running on its worker thread.
        """
        try:
            return future.result(timeout=self.call_timeout)
        except FutureTimeoutError:
            if not future.done():
                future.cancel()
                raise ProviderTimeout(
                    f"{name} did not return within {self.call_timeout}s"
                )
            raise

    def _settled(self, future: Future) -> bool:
        """Give a timed-out call up to rollback_grace to finish."""
        if future.done():
            return True
        try:
            future.exception(timeout=self.rollback_grace)
        except FutureTimeoutError:
            return False
        return True

    def _audit(self, action_id: str, status: AuditStatus, detail: str) -> None:
        self.audit_log.append_audit_entry(AuditLogEntry(
            action_id=action_id,
            status=status,
            detail=detail,
            timestamp=datetime.now(timezone.utc),
        ))

    def _finish(
        self,
        action: WorkflowAction,
        status: WorkflowStatus,
        detail: Optional[str] = None,
    ) -> None:
        """Record the outcome on the action and its approved recommendation."""
        if status == WorkflowStatus.APPLIED:
            self.workflow.mark_applied(action.id, ORCHESTRATOR_ACTOR)
        else:
            self.workflow.mark_failed(action.id, detail or "", ORCHESTRATOR_ACTOR)

        if not action.recommendation_id:
            return
        try:
            linked = self.workflow.get(action.recommendation_id)
            if linked.status != WorkflowStatus.APPROVED:
                logger.warning(
                    "linked_item_not_approved",
                    action_id=action.id,
                    item_id=linked.id,
                    status=linked.status.value,
                )
                return
            self.workflow.transition(linked.id, status, ORCHESTRATOR_ACTOR, reason=detail)
        except WorkflowError as exc:
            logger.warning(
                "linked_item_update_failed",
                action_id=action.id,
                item_id=action.recommendation_id,
                error=str(exc),
            )

    def _notify_success(self, action: WorkflowAction, result: Any) -> None:
        self._notify(Notification(
            subject="Workflow Action Completed",
            body=(
                "Workflow action completed successfully:\n"
                f"Action: {action.type.value}\n"
                f"Provider: {action.provider}\n"
                f"Resource: {action.resource_id}\n"
                f"Result: {_describe(result)}"
            ),
        ))

    def _notify_failure(self, action: WorkflowAction, error: BaseException) -> None:
        self._notify(Notification(
            subject="Workflow Action Failed",
            body=(
                "Workflow action failed:\n"
                f"Action: {action.type.value}\n"
                f"Provider: {action.provider}\n"
                f"Resource: {action.resource_id}\n"
                f"Error: {_error_text(error)}"
            ),
        ))

    def _notify(self, notification: Notification) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send(notification)
        except Exception as exc:
            logger.warning(
                "notification_failed",
                subject=notification.subject,
                error=str(exc),
            )


def _describe(value: Any) -> str:
    text = json.dumps(value, default=str, sort_keys=True)
    if len(text) > DETAIL_MAX_LENGTH:
        text = text[:DETAIL_MAX_LENGTH] + "..."
    return text


def _error_text(error: BaseException) -> str:
    message = str(error)
    name = type(error).__name__
    return f"{name}: {message}" if message else name
