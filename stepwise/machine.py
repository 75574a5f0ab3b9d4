"""Step-run lifecycle: guarded transitions, gating and cancellation."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Union

from .config import GatingConfig, GatingPolicy
from .constants import DEFAULT_APPROVAL_STEP_TYPES
from .contracts import (
    EngineEvent,
    OutputLink,
    RunStatus,
    StepRun,
    StepRunStatus,
    WorkflowRun,
    utcnow,
)
from .errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    NotRejectable,
    NotesRequired,
    PredecessorIncomplete,
)
from .events import EventEmitter, publish_event
from .persistence import WorkflowRepository
from .security import AuthorizationPolicy
from .status import can_transition, is_terminal

logger = logging.getLogger(__name__)

LinkLike = Union[OutputLink, Mapping[str, Any]]


class StepRunStateMachine:
    """Apply transitions to step runs under optimistic concurrency.

    Every transition takes the ``expected_version`` the caller last read; a
    stale version is rejected with :class:`Conflict` before any other rule
    is checked. The repository writes the step run and recomputes the run
    status in one transaction, and events go out only after that commit.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        emitter: EventEmitter,
        policy: AuthorizationPolicy,
        gating: Optional[GatingConfig] = None,
        approval_step_types: Iterable[str] = DEFAULT_APPROVAL_STEP_TYPES,
        emit_timeout: Optional[float] = None,
    ) -> None:
        self._repository = repository
        self._emitter = emitter
        self._policy = policy
        self._gating = gating or GatingConfig()
        self._approval_step_types = frozenset(approval_step_types)
        self._emit_timeout = emit_timeout

    async def get_step_run(self, step_run_id: str) -> StepRun:
        step_run = await self._repository.get_step_run(step_run_id)
        if step_run is None:
            raise NotFound("step_run", step_run_id)
        return step_run

    # ------------------------------------------------------------------
    # Guards
    async def _load(
        self, step_run_id: str, expected_version: int
    ) -> tuple[StepRun, WorkflowRun]:
        step_run = await self.get_step_run(step_run_id)
        if step_run.version != expected_version:
            logger.warning(
                f"Stale version {expected_version} for step run {step_run_id} "
                f"(current {step_run.version})"
            )
            raise Conflict("step_run", step_run_id, expected_version, step_run.version)
        run = await self._repository.get_run(step_run.run_id)
        if run is None:
            raise NotFound("run", step_run.run_id)
        return step_run, run

    @staticmethod
    def _require(step_run: StepRun, run: WorkflowRun, target: StepRunStatus) -> None:
        if run.status != RunStatus.RUNNING:
            raise InvalidTransition(
                step_run.id,
                step_run.status.value,
                target.value,
                run_status=run.status.value,
            )
        if not can_transition(step_run.status, target):
            raise InvalidTransition(step_run.id, step_run.status.value, target.value)

    async def _check_gate(self, step_run: StepRun, run: WorkflowRun) -> None:
        policy = self._gating.policy_for(run.workflow_type.value)
        if policy is GatingPolicy.PARALLEL:
            return
        siblings = await self._repository.list_step_runs(run.id)
        blocking = [
            s.id
            for s in siblings
            if s.sort_order < step_run.sort_order and not is_terminal(s.status)
        ]
        if blocking:
            raise PredecessorIncomplete(step_run.id, blocking)

    # ------------------------------------------------------------------
    # Commit and notify
    async def _emit(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        org_id: str,
        actor: Optional[str],
        metadata: dict[str, Any],
    ) -> None:
        event = EngineEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            org_id=org_id,
            actor_id=actor,
            metadata=metadata,
        )
        await publish_event(self._emitter, event, self._emit_timeout)

    async def _commit(
        self,
        updated: StepRun,
        expected_version: int,
        event_type: str,
        actor: Optional[str],
        **metadata: Any,
    ) -> StepRun:
        try:
            saved, run = await self._repository.update_step_run(
                updated, expected_version
            )
        except Conflict:
            logger.warning(f"Lost update race on step run {updated.id}")
            raise

        logger.info(
            f"Step run {saved.id} is now {saved.status.value} "
            f"(run {run.id} {run.status.value})"
        )
        await self._emit(
            event_type,
            "step_run",
            saved.id,
            run.org_id,
            actor,
            {
                "run_id": run.id,
                "status": saved.status.value,
                "version": saved.version,
                **metadata,
            },
        )
        # The repository refuses transitions on runs that already left
        # ``running``, so a non-running status here is a fresh change.
        if run.status != RunStatus.RUNNING:
            logger.info(f"Run {run.id} finished as {run.status.value}")
            await self._emit(
                f"run.{run.status.value}",
                "run",
                run.id,
                run.org_id,
                actor,
                {"trigger_step_run_id": saved.id},
            )
        return saved

    # ------------------------------------------------------------------
    # Transitions
    async def start(
        self,
        step_run_id: str,
        expected_version: int,
        actor: str,
        claim: bool = False,
    ) -> StepRun:
        """Move a pending step run to ``in_progress``.

        With ``claim`` the actor also becomes the assignee.
        """
        step_run, run = await self._load(step_run_id, expected_version)
        self._require(step_run, run, StepRunStatus.IN_PROGRESS)
        await self._check_gate(step_run, run)

        changes: dict[str, Any] = {
            "status": StepRunStatus.IN_PROGRESS,
            "started_at": utcnow(),
        }
        if claim:
            changes["assigned_to"] = actor
        return await self._commit(
            step_run.model_copy(update=changes),
            expected_version,
            "step.started",
            actor,
            assigned_to=changes.get("assigned_to", step_run.assigned_to),
        )

    async def complete(
        self,
        step_run_id: str,
        expected_version: int,
        actor: str,
        output_links: Optional[Iterable[LinkLike]] = None,
        notes: Optional[str] = None,
    ) -> StepRun:
        step_run, run = await self._load(step_run_id, expected_version)
        self._require(step_run, run, StepRunStatus.COMPLETED)

        links = [OutputLink.model_validate(link) for link in output_links or []]
        updated = step_run.model_copy(
            update={
                "status": StepRunStatus.COMPLETED,
                "completed_at": utcnow(),
                "output_links": step_run.output_links + links,
                "notes": notes if notes is not None else step_run.notes,
            }
        )
        return await self._commit(
            updated,
            expected_version,
            "step.completed",
            actor,
            output_links=[link.model_dump() for link in links],
        )

    async def reject(
        self, step_run_id: str, expected_version: int, actor: str, notes: str
    ) -> StepRun:
        """Reject an in-progress approval step. This halts the run."""
        step_run, run = await self._load(step_run_id, expected_version)
        self._require(step_run, run, StepRunStatus.REJECTED)
        if step_run.step.step_type.value not in self._approval_step_types:
            raise NotRejectable(step_run_id, step_run.step.step_type.value)
        if not notes or not notes.strip():
            raise NotesRequired(step_run_id, "reject")

        updated = step_run.model_copy(
            update={
                "status": StepRunStatus.REJECTED,
                "completed_at": utcnow(),
                "notes": notes,
            }
        )
        return await self._commit(
            updated, expected_version, "step.rejected", actor, notes=notes
        )

    async def skip(
        self, step_run_id: str, expected_version: int, actor: str, notes: str
    ) -> StepRun:
        """Skip a pending step. Only actors with admin capability may skip."""
        step_run, run = await self._load(step_run_id, expected_version)
        self._require(step_run, run, StepRunStatus.SKIPPED)
        if not notes or not notes.strip():
            raise NotesRequired(step_run_id, "skip")
        if not await self._policy.has_admin_capability(actor, run.org_id):
            raise Forbidden(actor, "skip steps", run.org_id)
        await self._check_gate(step_run, run)

        updated = step_run.model_copy(
            update={
                "status": StepRunStatus.SKIPPED,
                "completed_at": utcnow(),
                "notes": notes,
            }
        )
        return await self._commit(
            updated, expected_version, "step.skipped", actor, notes=notes
        )

    async def fail(
        self,
        step_run_id: str,
        expected_version: int,
        reason: str,
        actor: Optional[str] = None,
    ) -> StepRun:
        """Fail a non-terminal step, e.g. when an external executor errors."""
        step_run, run = await self._load(step_run_id, expected_version)
        self._require(step_run, run, StepRunStatus.FAILED)

        updated = step_run.model_copy(
            update={
                "status": StepRunStatus.FAILED,
                "completed_at": utcnow(),
                "reason": reason,
            }
        )
        return await self._commit(
            updated, expected_version, "step.failed", actor, reason=reason
        )

    async def reassign(
        self, step_run_id: str, expected_version: int, assignee: str, actor: str
    ) -> StepRun:
        step_run, run = await self._load(step_run_id, expected_version)
        if run.status != RunStatus.RUNNING or is_terminal(step_run.status):
            raise InvalidTransition(
                step_run_id,
                step_run.status.value,
                "reassigned",
                run_status=(
                    run.status.value if run.status != RunStatus.RUNNING else None
                ),
            )

        updated = step_run.model_copy(
            update={
                "assigned_to": assignee,
                "reassigned_from": step_run.assigned_to,
                "reassigned_by": actor,
            }
        )
        return await self._commit(
            updated,
            expected_version,
            "step.reassigned",
            actor,
            assigned_to=assignee,
            reassigned_from=step_run.assigned_to,
        )

    async def cancel_run(
        self, run_id: str, reason: str, actor: Optional[str] = None
    ) -> WorkflowRun:
        """Cancel a running run, skipping all of its unfinished steps at once.

        Raises:
            AlreadyTerminal: The run is no longer running.
        """
        run, skipped = await self._repository.cancel_run(
            run_id, reason, actor, utcnow()
        )
        logger.info(f"Cancelled run {run_id}, skipped {len(skipped)} steps: {reason}")
        await self._emit(
            "run.cancelled",
            "run",
            run.id,
            run.org_id,
            actor,
            {"reason": reason, "skipped_step_run_ids": [s.id for s in skipped]},
        )
        return run
