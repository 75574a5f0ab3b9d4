"""Step-run transition table and run status derivation."""

from __future__ import annotations

from typing import Iterable

from .contracts import RunStatus, StepRunStatus

TERMINAL_STEP_STATUSES = frozenset(
    {
        StepRunStatus.COMPLETED,
        StepRunStatus.REJECTED,
        StepRunStatus.SKIPPED,
        StepRunStatus.FAILED,
    }
)

ACTIVE_STEP_STATUSES = frozenset({StepRunStatus.PENDING, StepRunStatus.IN_PROGRESS})

ALLOWED_TRANSITIONS: dict[StepRunStatus, frozenset[StepRunStatus]] = {
    StepRunStatus.PENDING: frozenset(
        {StepRunStatus.IN_PROGRESS, StepRunStatus.SKIPPED, StepRunStatus.FAILED}
    ),
    StepRunStatus.IN_PROGRESS: frozenset(
        {StepRunStatus.COMPLETED, StepRunStatus.REJECTED, StepRunStatus.FAILED}
    ),
}


def is_terminal(status: StepRunStatus) -> bool:
    return status in TERMINAL_STEP_STATUSES


def can_transition(current: StepRunStatus, target: StepRunStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def derive_run_status(statuses: Iterable[StepRunStatus]) -> RunStatus:
    """Compute the aggregate run status from its step-run statuses.

    A rejection halts the run, so any rejected step makes the run ``failed``
    even while later steps are still pending. Otherwise the run keeps
    running until every step is terminal and then fails if any step failed.
    ``cancelled`` is never derived; it is only set by an explicit cancel.
    """
    statuses = list(statuses)
    if StepRunStatus.REJECTED in statuses:
        return RunStatus.FAILED
    if any(not is_terminal(s) for s in statuses):
        return RunStatus.RUNNING
    if StepRunStatus.FAILED in statuses:
        return RunStatus.FAILED
    return RunStatus.COMPLETED
