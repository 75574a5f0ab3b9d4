"""Read-side queries over runs: lookups, work queues and workflow statistics."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import RunStatus, StepRun, WorkflowRun
from .errors import NotFound
from .persistence import WorkflowRepository


class WorkflowStats(BaseModel):
    """Aggregate outcome of every run started from one workflow."""

    org_workflow_id: str
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    completion_rate: float = 0.0
    avg_completion_seconds: float = 0.0


class RunQueries:
    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def get_run(self, org_id: str, run_id: str) -> WorkflowRun:
        run = await self._repository.get_run(run_id)
        if run is None or run.org_id != org_id:
            raise NotFound("run", run_id)
        return run

    async def list_runs(
        self,
        org_id: str,
        org_workflow_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
    ) -> List[WorkflowRun]:
        return await self._repository.list_runs(
            org_id=org_id, org_workflow_id=org_workflow_id, status=status
        )

    async def list_step_runs(self, org_id: str, run_id: str) -> List[StepRun]:
        run = await self.get_run(org_id, run_id)
        return await self._repository.list_step_runs(run.id)

    async def my_work_items(self, org_id: str, assignee: str) -> List[StepRun]:
        """Pending and in-progress step runs assigned to ``assignee`` in running runs."""
        items = []
        runs: Dict[str, Optional[WorkflowRun]] = {}
        for step_run in await self._repository.list_assigned_step_runs(assignee):
            if step_run.run_id not in runs:
                runs[step_run.run_id] = await self._repository.get_run(step_run.run_id)
            run = runs[step_run.run_id]
            if run is None or run.org_id != org_id or run.status != RunStatus.RUNNING:
                continue
            items.append(step_run)
        items.sort(key=lambda s: (s.started_at is None, s.run_id, s.sort_order))
        return items

    async def has_active_runs(self, org_id: str, org_workflow_id: str) -> bool:
        runs = await self._repository.list_runs(
            org_id=org_id, org_workflow_id=org_workflow_id, status=RunStatus.RUNNING
        )
        return bool(runs)

    async def workflow_stats(self, org_id: str, org_workflow_id: str) -> WorkflowStats:
        """Count runs by status and time the completed ones.

        ``completion_rate`` is the percentage of runs that completed.
        """
        workflow = await self._repository.get_org_workflow(org_workflow_id)
        if workflow is None or workflow.org_id != org_id:
            raise NotFound("workflow", org_workflow_id)

        runs = await self._repository.list_runs(
            org_id=org_id, org_workflow_id=org_workflow_id
        )
        by_status: Dict[str, int] = {}
        for run in runs:
            by_status[run.status.value] = by_status.get(run.status.value, 0) + 1

        durations = [
            (r.completed_at - r.started_at).total_seconds()
            for r in runs
            if r.status == RunStatus.COMPLETED and r.completed_at is not None
        ]
        total = len(runs)
        return WorkflowStats(
            org_workflow_id=org_workflow_id,
            total=total,
            by_status=by_status,
            completion_rate=(
                by_status.get(RunStatus.COMPLETED.value, 0) / total * 100
                if total
                else 0.0
            ),
            avg_completion_seconds=(
                sum(durations) / len(durations) if durations else 0.0
            ),
        )
