"""Typed, recoverable failures raised by the stepwise engine.

Every error carries a ``details`` mapping with enough structured context
for a caller to decide what to do next: retry after re-reading
(:class:`Conflict`), re-authorize (:class:`Forbidden`) or surface a terminal
business message (:class:`NotRejectable`, :class:`InvalidTransition`).
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class StepwiseError(Exception):
    """Base class for all engine failures."""

    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class NotFound(StepwiseError):
    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} {entity_id} not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )


class InvalidTransition(StepwiseError):
    """An illegal state change was attempted."""

    def __init__(
        self,
        step_run_id: str,
        current: str,
        target: str,
        run_status: Optional[str] = None,
    ) -> None:
        if run_status is not None:
            message = (
                f"Step run {step_run_id} cannot move to {target}: run is {run_status}"
            )
        else:
            message = f"Step run {step_run_id} cannot move from {current} to {target}"
        super().__init__(
            message,
            step_run_id=step_run_id,
            current=current,
            target=target,
            run_status=run_status,
        )


class Conflict(StepwiseError):
    """Optimistic concurrency version mismatch. Re-read and retry."""

    retryable = True

    def __init__(
        self, entity_type: str, entity_id: str, expected: int, actual: Optional[int]
    ) -> None:
        super().__init__(
            f"{entity_type} {entity_id} version mismatch: expected {expected}, found {actual}",
            entity_type=entity_type,
            entity_id=entity_id,
            expected_version=expected,
            actual_version=actual,
        )


class Locked(StepwiseError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} is locked", workflow_id=workflow_id)


class FieldNotEditable(StepwiseError):
    def __init__(self, workflow_id: str, fields: Iterable[str]) -> None:
        fields = sorted(fields)
        super().__init__(
            f"Workflow {workflow_id} does not allow editing {', '.join(fields)}",
            workflow_id=workflow_id,
            fields=fields,
        )


class InvalidTemplate(StepwiseError):
    def __init__(self, reason: str, workflow_id: Optional[str] = None) -> None:
        super().__init__(reason, workflow_id=workflow_id)


class Forbidden(StepwiseError):
    def __init__(self, actor_id: Optional[str], action: str, org_id: str) -> None:
        super().__init__(
            f"Actor {actor_id} may not {action} in org {org_id}",
            actor_id=actor_id,
            action=action,
            org_id=org_id,
        )


class WorkflowInactive(StepwiseError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} is inactive", workflow_id=workflow_id)


class EmptyWorkflow(StepwiseError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} has no steps", workflow_id=workflow_id)


class PredecessorIncomplete(StepwiseError):
    def __init__(self, step_run_id: str, blocking: Iterable[str]) -> None:
        blocking = list(blocking)
        super().__init__(
            f"Step run {step_run_id} is waiting on {len(blocking)} earlier step(s)",
            step_run_id=step_run_id,
            blocking_step_run_ids=blocking,
        )


class NotRejectable(StepwiseError):
    def __init__(self, step_run_id: str, step_type: str) -> None:
        super().__init__(
            f"Step run {step_run_id} of type {step_type} cannot be rejected",
            step_run_id=step_run_id,
            step_type=step_type,
        )


class NotesRequired(StepwiseError):
    def __init__(self, step_run_id: str, operation: str) -> None:
        super().__init__(
            f"{operation} of step run {step_run_id} requires notes",
            step_run_id=step_run_id,
            operation=operation,
        )


class AlreadyTerminal(StepwiseError):
    def __init__(self, run_id: str, status: str) -> None:
        super().__init__(
            f"Run {run_id} is already {status}", run_id=run_id, status=status
        )


class NotRestorable(StepwiseError):
    def __init__(self, workflow_id: str, reason: str) -> None:
        super().__init__(
            f"Workflow {workflow_id} cannot be restored: {reason}",
            workflow_id=workflow_id,
            reason=reason,
        )


__all__ = [
    "StepwiseError",
    "NotFound",
    "InvalidTransition",
    "Conflict",
    "Locked",
    "FieldNotEditable",
    "InvalidTemplate",
    "Forbidden",
    "WorkflowInactive",
    "EmptyWorkflow",
    "PredecessorIncomplete",
    "NotRejectable",
    "NotesRequired",
    "AlreadyTerminal",
    "NotRestorable",
]
