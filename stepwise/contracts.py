"""Core data contracts for the stepwise workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_EDITABLE_FIELDS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class StepType(str, Enum):
    """Closed set of step labels. The engine treats them as opaque tags."""

    APPROVAL = "approval_step"
    FORM = "form_step"
    TASK = "task_step"
    NOTIFY = "notify_step"
    DOCUMENT = "document_step"
    CALENDAR = "calendar_step"
    ASSIGN_LMS = "assign_lms_step"
    NOTE = "note_step"
    PROJECT = "project_step"
    SUPPORT_TICKET = "support_ticket_step"


class WorkflowType(str, Enum):
    ONBOARDING = "onboarding"
    OFFBOARDING = "offboarding"
    CADENCE = "cadence"
    REVIEW = "review"
    RECRUITMENT = "recruitment"
    LAUNCH = "launch"
    MEETING = "meeting"
    REQUEST = "request"
    SOP_LIFECYCLE = "sop_lifecycle"
    ENGAGEMENT_LIFECYCLE = "engagement_lifecycle"
    CHAIR_RECRUITMENT = "chair_recruitment"
    CHAIR_ONBOARDING = "chair_onboarding"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StepRunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    FAILED = "failed"


class StepSpec(BaseModel):
    """Defines one step of a workflow template."""

    model_config = ConfigDict(frozen=True)

    step_type: StepType
    title: str
    instructions: Optional[str] = None
    sort_order: int
    assignee_type: Optional[str] = None
    due_offset_days: Optional[int] = None
    config: Dict[str, Any] = Field(default_factory=dict)


def check_step_order(steps: List[StepSpec]) -> List[StepSpec]:
    """Return ``steps`` sorted by ``sort_order``.

    Raises:
        ValueError: If sort orders repeat or leave a gap.
    """
    ordered = sorted(steps, key=lambda s: s.sort_order)
    orders = [s.sort_order for s in ordered]
    if len(set(orders)) != len(orders):
        raise ValueError(f"Duplicate step sort_order values: {orders}")
    if orders and orders[-1] - orders[0] != len(orders) - 1:
        raise ValueError(f"Step sort_order values must be contiguous: {orders}")
    return ordered


class PackTemplate(BaseModel):
    """Immutable, catalog-owned workflow blueprint."""

    model_config = ConfigDict(frozen=True)

    pack_key: str
    workflow_type: WorkflowType
    template_key: str
    name: str
    description: Optional[str] = None
    steps: List[StepSpec] = Field(default_factory=list)
    is_locked: bool = False
    editable_fields: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EDITABLE_FIELDS)
    )

    @field_validator("steps")
    @classmethod
    def _order_steps(cls, v: List[StepSpec]) -> List[StepSpec]:
        return check_step_order(v)

    @property
    def id(self) -> str:
        return f"{self.pack_key}:{self.workflow_type.value}:{self.template_key}"


class OrgWorkflow(BaseModel):
    """An organization's customizable copy of a workflow template."""

    id: str = Field(default_factory=new_id)
    org_id: str
    source_pack_key: Optional[str] = None
    source_template_id: Optional[str] = None
    workflow_type: WorkflowType
    name: str
    description: Optional[str] = None
    is_active: bool = True
    is_locked: bool = False
    editable_fields: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EDITABLE_FIELDS)
    )
    steps: List[StepSpec] = Field(default_factory=list)
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("steps")
    @classmethod
    def _order_steps(cls, v: List[StepSpec]) -> List[StepSpec]:
        return check_step_order(v)

    @classmethod
    def from_pack(cls, org_id: str, template: PackTemplate) -> "OrgWorkflow":
        """Clone ``template`` into a new workflow owned by ``org_id``."""
        return cls(
            org_id=org_id,
            source_pack_key=template.pack_key,
            source_template_id=template.id,
            workflow_type=template.workflow_type,
            name=template.name,
            description=template.description,
            is_active=True,
            is_locked=template.is_locked,
            editable_fields=list(template.editable_fields),
            steps=list(template.steps),
        )


class OutputLink(BaseModel):
    """Opaque reference to a side effect produced while a step ran."""

    type: str
    id: str


class WorkflowRun(BaseModel):
    """One execution instance of an OrgWorkflow."""

    id: str = Field(default_factory=new_id)
    org_id: str
    org_workflow_id: str
    workflow_type: WorkflowType
    workflow_version: int = 1
    status: RunStatus = RunStatus.RUNNING
    initiated_by: str
    target_entity_ref: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class StepRun(BaseModel):
    """Execution state of one step inside a run.

    ``step`` is a frozen copy of the template step taken when the run
    started, so later template edits never rewrite history.
    """

    id: str = Field(default_factory=new_id)
    run_id: str
    step: StepSpec
    status: StepRunStatus = StepRunStatus.PENDING
    assigned_to: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    reason: Optional[str] = None
    output_links: List[OutputLink] = Field(default_factory=list)
    reassigned_from: Optional[str] = None
    reassigned_by: Optional[str] = None
    version: int = 1

    @property
    def sort_order(self) -> int:
        return self.step.sort_order


class EngineEvent(BaseModel):
    """Audit record emitted after every accepted transition."""

    event_id: str = Field(default_factory=new_id)
    event_type: str
    entity_type: str
    entity_id: str
    org_id: str
    actor_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "EngineEvent":
        return cls.model_validate_json(data)


class WorkflowPatch(BaseModel):
    """Partial update for an OrgWorkflow. Only explicitly set fields apply."""

    name: Optional[str] = None
    description: Optional[str] = None
    steps: Optional[List[StepSpec]] = None

    def touched_fields(self) -> set[str]:
        return set(self.model_dump(exclude_unset=True))
