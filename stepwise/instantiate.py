"""Start runs from an org workflow."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .contracts import EngineEvent, StepRun, WorkflowRun, utcnow
from .errors import EmptyWorkflow, NotFound, WorkflowInactive
from .events import EventEmitter, publish_event
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class RunInstantiator:
    """Snapshot an org workflow into a new run with one step run per step."""

    def __init__(
        self,
        repository: WorkflowRepository,
        emitter: EventEmitter,
        emit_timeout: Optional[float] = None,
    ) -> None:
        self._repository = repository
        self._emitter = emitter
        self._emit_timeout = emit_timeout

    async def start(
        self,
        org_id: str,
        org_workflow_id: str,
        initiated_by: str,
        target_entity_ref: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowRun:
        """Create a running run for ``org_workflow_id``.

        The run records the workflow version it was started from, and each
        step run carries a copy of its step, so editing the workflow later
        leaves this run untouched. The run and its step runs are written
        together or not at all.

        Raises:
            NotFound: The workflow does not exist in ``org_id``.
            WorkflowInactive: The workflow is deactivated.
            EmptyWorkflow: The workflow has no steps.
        """
        workflow = await self._repository.get_org_workflow(org_workflow_id)
        if workflow is None or workflow.org_id != org_id:
            raise NotFound("workflow", org_workflow_id)
        if not workflow.is_active:
            raise WorkflowInactive(org_workflow_id)
        if not workflow.steps:
            raise EmptyWorkflow(org_workflow_id)

        run = WorkflowRun(
            org_id=org_id,
            org_workflow_id=workflow.id,
            workflow_type=workflow.workflow_type,
            workflow_version=workflow.version,
            initiated_by=initiated_by,
            target_entity_ref=target_entity_ref,
            context=dict(context or {}),
            started_at=utcnow(),
        )
        step_runs = [StepRun(run_id=run.id, step=step) for step in workflow.steps]
        await self._repository.create_run(run, step_runs)

        logger.info(
            f"Started run {run.id} of workflow {workflow.id} v{workflow.version} "
            f"with {len(step_runs)} steps"
        )
        await publish_event(
            self._emitter,
            EngineEvent(
                event_type="run.started",
                entity_type="run",
                entity_id=run.id,
                org_id=org_id,
                actor_id=initiated_by,
                metadata={
                    "org_workflow_id": workflow.id,
                    "workflow_version": workflow.version,
                    "target_entity_ref": target_entity_ref,
                    "step_run_ids": [s.id for s in step_runs],
                },
            ),
            self._emit_timeout,
        )
        return run
