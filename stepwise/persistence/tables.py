"""SQLModel tables backing the SQL repository, and row converters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..contracts import OrgWorkflow, StepRun, WorkflowRun


class OrgWorkflowRow(SQLModel, table=True):
    """An organization's customizable workflow template."""

    __tablename__ = "org_workflows"
    __table_args__ = (
        UniqueConstraint("org_id", "source_template_id", name="uq_org_workflow_source"),
    )

    id: str = Field(primary_key=True)
    org_id: str = Field(index=True)
    source_pack_key: Optional[str] = None
    source_template_id: Optional[str] = None
    workflow_type: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    is_locked: bool = False
    editable_fields: list = Field(sa_column=Column(JSON, nullable=False))
    steps: list = Field(sa_column=Column(JSON, nullable=False))
    version: int = 1
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkflowRunRow(SQLModel, table=True):
    """Represents one execution of an org workflow."""

    __tablename__ = "workflow_runs"

    id: str = Field(primary_key=True)
    org_id: str = Field(index=True)
    org_workflow_id: str = Field(index=True)
    workflow_type: str
    workflow_version: int = 1
    status: str = Field(default="running", index=True)
    initiated_by: str
    target_entity_ref: Optional[str] = None
    context: dict = Field(sa_column=Column(JSON, nullable=False))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class StepRunRow(SQLModel, table=True):
    """Tracks execution state for a single step of a run."""

    __tablename__ = "step_runs"

    id: str = Field(primary_key=True)
    run_id: str = Field(foreign_key="workflow_runs.id", index=True)
    sort_order: int
    step: dict = Field(sa_column=Column(JSON, nullable=False))
    status: str = Field(default="pending", index=True)
    assigned_to: Optional[str] = Field(default=None, index=True)
    started_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    notes: Optional[str] = None
    reason: Optional[str] = None
    output_links: list = Field(sa_column=Column(JSON, nullable=False))
    reassigned_from: Optional[str] = None
    reassigned_by: Optional[str] = None
    version: int = 1


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ----------------------------------------------------------------------
# Domain -> row values
def workflow_values(workflow: OrgWorkflow) -> dict[str, Any]:
    return {
        "id": workflow.id,
        "org_id": workflow.org_id,
        "source_pack_key": workflow.source_pack_key,
        "source_template_id": workflow.source_template_id,
        "workflow_type": workflow.workflow_type.value,
        "name": workflow.name,
        "description": workflow.description,
        "is_active": workflow.is_active,
        "is_locked": workflow.is_locked,
        "editable_fields": list(workflow.editable_fields),
        "steps": [s.model_dump(mode="json") for s in workflow.steps],
        "version": workflow.version,
        "created_at": workflow.created_at,
        "updated_at": workflow.updated_at,
    }


def run_values(run: WorkflowRun) -> dict[str, Any]:
    data = run.model_dump(exclude={"workflow_type", "status", "context"})
    data["workflow_type"] = run.workflow_type.value
    data["status"] = run.status.value
    data["context"] = run.model_dump(mode="json", include={"context"})["context"]
    return data


def step_run_values(step_run: StepRun) -> dict[str, Any]:
    data = step_run.model_dump(exclude={"step", "status", "output_links"})
    data["sort_order"] = step_run.sort_order
    data["step"] = step_run.step.model_dump(mode="json")
    data["status"] = step_run.status.value
    data["output_links"] = [link.model_dump() for link in step_run.output_links]
    return data


# ----------------------------------------------------------------------
# Row -> domain
def row_to_workflow(row: OrgWorkflowRow) -> OrgWorkflow:
    return OrgWorkflow(
        id=row.id,
        org_id=row.org_id,
        source_pack_key=row.source_pack_key,
        source_template_id=row.source_template_id,
        workflow_type=row.workflow_type,
        name=row.name,
        description=row.description,
        is_active=row.is_active,
        is_locked=row.is_locked,
        editable_fields=list(row.editable_fields or []),
        steps=list(row.steps or []),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def row_to_run(row: WorkflowRunRow) -> WorkflowRun:
    return WorkflowRun(
        id=row.id,
        org_id=row.org_id,
        org_workflow_id=row.org_workflow_id,
        workflow_type=row.workflow_type,
        workflow_version=row.workflow_version,
        status=row.status,
        initiated_by=row.initiated_by,
        target_entity_ref=row.target_entity_ref,
        context=dict(row.context or {}),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        cancellation_reason=row.cancellation_reason,
        cancelled_by=row.cancelled_by,
    )


def row_to_step_run(row: StepRunRow) -> StepRun:
    return StepRun(
        id=row.id,
        run_id=row.run_id,
        step=row.step,
        status=row.status,
        assigned_to=row.assigned_to,
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        notes=row.notes,
        reason=row.reason,
        output_links=list(row.output_links or []),
        reassigned_from=row.reassigned_from,
        reassigned_by=row.reassigned_by,
        version=row.version,
    )
