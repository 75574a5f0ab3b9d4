"""Repository abstraction for template and run persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..contracts import OrgWorkflow, RunStatus, StepRun, WorkflowRun


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    Backends own every atomicity guarantee the engine relies on: the run
    instantiation and cancellation bulk writes, and the compare-and-swap of
    a single step run together with the recomputation of its run status.
    """

    async def insert_org_workflow(self, workflow: OrgWorkflow) -> bool:
        """Persist a new workflow.

        Returns ``False`` without writing when the org already holds a
        workflow cloned from the same ``source_template_id``.
        """

    async def get_org_workflow(self, workflow_id: str) -> OrgWorkflow | None:
        """Retrieve a workflow by id."""

    async def list_org_workflows(self, org_id: str) -> list[OrgWorkflow]:
        """Return every workflow owned by ``org_id`` ordered by name."""

    async def update_org_workflow(
        self, workflow: OrgWorkflow, expected_version: int
    ) -> OrgWorkflow:
        """Replace a workflow if its stored version is ``expected_version``.

        The stored copy gets ``expected_version + 1``. Raises ``Conflict`` on
        a mismatch and ``NotFound`` when the workflow does not exist.
        """

    async def create_run(self, run: WorkflowRun, step_runs: list[StepRun]) -> None:
        """Insert a run and all of its step runs as one atomic unit."""

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        """Retrieve a run by id."""

    async def list_runs(
        self,
        org_id: Optional[str] = None,
        org_workflow_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
    ) -> list[WorkflowRun]:
        """Return runs matching the filters, most recent first."""

    async def get_step_run(self, step_run_id: str) -> StepRun | None:
        """Retrieve a step run by id."""

    async def list_step_runs(self, run_id: str) -> list[StepRun]:
        """Return the step runs of ``run_id`` in sort order."""

    async def list_assigned_step_runs(self, assignee: str) -> list[StepRun]:
        """Return pending or in-progress step runs assigned to ``assignee``."""

    async def update_step_run(
        self, step_run: StepRun, expected_version: int
    ) -> tuple[StepRun, WorkflowRun]:
        """Compare-and-swap one step run and recompute its run status.

        Raises ``Conflict`` on a version mismatch and ``InvalidTransition``
        when the owning run is no longer running.
        """

    async def cancel_run(
        self, run_id: str, reason: str, actor: Optional[str], at: datetime
    ) -> tuple[WorkflowRun, list[StepRun]]:
        """Skip every active step run and mark the run cancelled, atomically.

        Returns the cancelled run and the step runs that were skipped.
        Raises ``AlreadyTerminal`` when the run is not running.
        """
