"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Optional

from ..contracts import (
    OrgWorkflow,
    RunStatus,
    StepRun,
    StepRunStatus,
    WorkflowRun,
    utcnow,
)
from ..errors import AlreadyTerminal, Conflict, InvalidTransition, NotFound
from ..status import ACTIVE_STEP_STATUSES, derive_run_status
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store templates and runs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. A single lock serialises every
    mutation and records are copied on the way in and out, so callers can
    never alias stored state.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, OrgWorkflow] = {}
        self._runs: Dict[str, WorkflowRun] = {}
        self._step_runs: Dict[str, StepRun] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Templates
    async def insert_org_workflow(self, workflow: OrgWorkflow) -> bool:
        async with self._lock:
            if workflow.source_template_id is not None:
                for existing in self._workflows.values():
                    if (
                        existing.org_id == workflow.org_id
                        and existing.source_template_id == workflow.source_template_id
                    ):
                        return False
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
            return True

    async def get_org_workflow(self, workflow_id: str) -> OrgWorkflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_org_workflows(self, org_id: str) -> list[OrgWorkflow]:
        matches = [w for w in self._workflows.values() if w.org_id == org_id]
        return [w.model_copy(deep=True) for w in sorted(matches, key=lambda w: w.name)]

    async def update_org_workflow(
        self, workflow: OrgWorkflow, expected_version: int
    ) -> OrgWorkflow:
        async with self._lock:
            stored = self._workflows.get(workflow.id)
            if stored is None:
                raise NotFound("workflow", workflow.id)
            if stored.version != expected_version:
                raise Conflict("workflow", workflow.id, expected_version, stored.version)
            updated = workflow.model_copy(
                update={"version": expected_version + 1}, deep=True
            )
            self._workflows[workflow.id] = updated
            return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Runs
    async def create_run(self, run: WorkflowRun, step_runs: list[StepRun]) -> None:
        async with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
            for step_run in step_runs:
                self._step_runs[step_run.id] = step_run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(
        self,
        org_id: Optional[str] = None,
        org_workflow_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
    ) -> list[WorkflowRun]:
        runs = [
            r
            for r in self._runs.values()
            if (org_id is None or r.org_id == org_id)
            and (org_workflow_id is None or r.org_workflow_id == org_workflow_id)
            and (status is None or r.status == status)
        ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs]

    async def get_step_run(self, step_run_id: str) -> StepRun | None:
        step_run = self._step_runs.get(step_run_id)
        return step_run.model_copy(deep=True) if step_run else None

    def _steps_of(self, run_id: str) -> list[StepRun]:
        steps = [s for s in self._step_runs.values() if s.run_id == run_id]
        return sorted(steps, key=lambda s: s.sort_order)

    async def list_step_runs(self, run_id: str) -> list[StepRun]:
        return [s.model_copy(deep=True) for s in self._steps_of(run_id)]

    async def list_assigned_step_runs(self, assignee: str) -> list[StepRun]:
        return [
            s.model_copy(deep=True)
            for s in self._step_runs.values()
            if s.assigned_to == assignee and s.status in ACTIVE_STEP_STATUSES
        ]

    async def update_step_run(
        self, step_run: StepRun, expected_version: int
    ) -> tuple[StepRun, WorkflowRun]:
        async with self._lock:
            stored = self._step_runs.get(step_run.id)
            if stored is None:
                raise NotFound("step_run", step_run.id)
            if stored.version != expected_version:
                raise Conflict("step_run", step_run.id, expected_version, stored.version)
            run = self._runs[stored.run_id]
            if run.status != RunStatus.RUNNING:
                raise InvalidTransition(
                    step_run.id,
                    stored.status.value,
                    step_run.status.value,
                    run_status=run.status.value,
                )

            updated = step_run.model_copy(
                update={"version": expected_version + 1}, deep=True
            )
            self._step_runs[updated.id] = updated

            status = derive_run_status(s.status for s in self._steps_of(run.id))
            if status != run.status:
                run = run.model_copy(
                    update={
                        "status": status,
                        "completed_at": updated.completed_at or utcnow(),
                    }
                )
                self._runs[run.id] = run
            return updated.model_copy(deep=True), run.model_copy(deep=True)

    async def cancel_run(
        self, run_id: str, reason: str, actor: Optional[str], at: datetime
    ) -> tuple[WorkflowRun, list[StepRun]]:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise NotFound("run", run_id)
            if run.status != RunStatus.RUNNING:
                raise AlreadyTerminal(run_id, run.status.value)

            skipped = []
            for step_run in self._steps_of(run_id):
                if step_run.status not in ACTIVE_STEP_STATUSES:
                    continue
                updated = step_run.model_copy(
                    update={
                        "status": StepRunStatus.SKIPPED,
                        "reason": reason,
                        "completed_at": at,
                        "version": step_run.version + 1,
                    }
                )
                self._step_runs[updated.id] = updated
                skipped.append(updated.model_copy(deep=True))

            run = run.model_copy(
                update={
                    "status": RunStatus.CANCELLED,
                    "cancellation_reason": reason,
                    "cancelled_by": actor,
                    "completed_at": at,
                }
            )
            self._runs[run_id] = run
            return run.model_copy(deep=True), skipped
