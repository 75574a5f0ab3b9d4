"""Org-scoped, customizable workflow templates seeded from packs."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .catalog import PackCatalog
from .constants import PATCHABLE_FIELDS, REQUIRED_PATCH_FIELDS
from .contracts import (
    EngineEvent,
    OrgWorkflow,
    StepSpec,
    WorkflowPatch,
    WorkflowType,
    check_step_order,
    utcnow,
)
from .errors import (
    Conflict,
    FieldNotEditable,
    InvalidTemplate,
    Locked,
    NotFound,
    NotRestorable,
)
from .events import EventEmitter, publish_event
from .persistence import WorkflowRepository
from .security import AuthorizationPolicy

logger = logging.getLogger(__name__)

PatchLike = Union[WorkflowPatch, Mapping[str, Any]]


class TemplateStore:
    """Seed, customize and restore an organization's workflow templates.

    Every call takes the ``org_id`` it acts for; a workflow id that belongs
    to another org is reported as not found.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        catalog: PackCatalog,
        emitter: EventEmitter,
        policy: AuthorizationPolicy,
        emit_timeout: Optional[float] = None,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._emitter = emitter
        self._policy = policy
        self._emit_timeout = emit_timeout

    async def _emit(
        self,
        event_type: str,
        workflow: OrgWorkflow,
        actor: Optional[str],
        **metadata: Any,
    ) -> None:
        event = EngineEvent(
            event_type=event_type,
            entity_type="workflow",
            entity_id=workflow.id,
            org_id=workflow.org_id,
            actor_id=actor,
            metadata={"version": workflow.version, **metadata},
        )
        await publish_event(self._emitter, event, self._emit_timeout)

    # ------------------------------------------------------------------
    # Reads
    async def get(self, org_id: str, workflow_id: str) -> OrgWorkflow:
        workflow = await self._repository.get_org_workflow(workflow_id)
        if workflow is None or workflow.org_id != org_id:
            raise NotFound("workflow", workflow_id)
        return workflow

    async def list(self, org_id: str, active_only: bool = False) -> List[OrgWorkflow]:
        workflows = await self._repository.list_org_workflows(org_id)
        if active_only:
            workflows = [w for w in workflows if w.is_active]
        return workflows

    # ------------------------------------------------------------------
    # Seeding
    async def seed(
        self, org_id: str, pack_keys: Iterable[str], actor: Optional[str] = None
    ) -> int:
        """Clone every pack template the org does not hold yet.

        Returns the number of workflows created; a second call with the
        same packs creates nothing.
        """
        return await self._clone_missing(org_id, pack_keys, actor, "workflow.seeded")

    async def reseed_missing(
        self, org_id: str, pack_keys: Iterable[str], actor: Optional[str] = None
    ) -> int:
        """Add templates that appeared in the packs since the last seed.

        Existing workflows are never touched, even when they have drifted
        from their pack definition.
        """
        return await self._clone_missing(
            org_id, pack_keys, actor, "workflow.reseeded"
        )

    async def _clone_missing(
        self,
        org_id: str,
        pack_keys: Iterable[str],
        actor: Optional[str],
        event_type: str,
    ) -> int:
        pack_keys = list(pack_keys)
        templates = self._catalog.list_pack_templates(pack_keys)
        existing = {
            w.source_template_id
            for w in await self._repository.list_org_workflows(org_id)
            if w.source_template_id
        }

        created = 0
        for template in templates:
            if template.id in existing:
                continue
            workflow = OrgWorkflow.from_pack(org_id, template)
            # A concurrent seed may have inserted the same template meanwhile.
            if not await self._repository.insert_org_workflow(workflow):
                continue
            created += 1
            await self._emit(
                event_type,
                workflow,
                actor,
                source_pack_key=template.pack_key,
                source_template_id=template.id,
            )

        logger.info(
            f"Created {created} workflows for org {org_id} from packs {pack_keys}"
        )
        return created

    # ------------------------------------------------------------------
    # Authoring
    async def create(
        self,
        org_id: str,
        name: str,
        workflow_type: Union[WorkflowType, str],
        steps: Iterable[StepSpec],
        description: Optional[str] = None,
        actor: Optional[str] = None,
        is_locked: bool = False,
        editable_fields: Optional[Iterable[str]] = None,
    ) -> OrgWorkflow:
        """Create a hand-built workflow with no pack source."""
        try:
            ordered = check_step_order(list(steps))
        except ValueError as e:
            raise InvalidTemplate(str(e)) from e

        fields = {}
        if editable_fields is not None:
            fields["editable_fields"] = list(editable_fields)
        workflow = OrgWorkflow(
            org_id=org_id,
            workflow_type=workflow_type,
            name=name,
            description=description,
            is_locked=is_locked,
            steps=ordered,
            **fields,
        )
        await self._repository.insert_org_workflow(workflow)
        await self._emit("workflow.created", workflow, actor)
        return workflow

    async def update(
        self,
        org_id: str,
        workflow_id: str,
        patch: PatchLike,
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrgWorkflow:
        """Apply a partial content update and return the new version.

        Raises:
            Locked: The workflow is locked.
            FieldNotEditable: The patch touches fields outside the workflow's
                editable fields and ``actor`` has no admin capability.
            InvalidTemplate: New steps break the ordering invariant, or the
                patch clears ``name`` or ``steps``.
            Conflict: ``expected_version`` is stale.
        """
        if isinstance(patch, WorkflowPatch):
            fields = patch.touched_fields()
        else:
            fields = set(patch)

        workflow = await self.get(org_id, workflow_id)
        version = workflow.version if expected_version is None else expected_version
        if workflow.version != version:
            raise Conflict("workflow", workflow_id, version, workflow.version)
        if workflow.is_locked:
            raise Locked(workflow_id)

        unknown = fields - PATCHABLE_FIELDS
        if unknown:
            raise FieldNotEditable(workflow_id, unknown)
        not_editable = fields - set(workflow.editable_fields)
        if not_editable and not await self._policy.has_admin_capability(actor, org_id):
            raise FieldNotEditable(workflow_id, not_editable)

        try:
            validated = (
                patch
                if isinstance(patch, WorkflowPatch)
                else WorkflowPatch.model_validate(dict(patch))
            )
        except ValidationError as e:
            raise InvalidTemplate(str(e), workflow_id=workflow_id) from e
        changes: dict[str, Any] = {f: getattr(validated, f) for f in fields}
        nulled = sorted(f for f in REQUIRED_PATCH_FIELDS & fields if changes[f] is None)
        if nulled:
            raise InvalidTemplate(
                f"Fields may not be cleared: {nulled}", workflow_id=workflow_id
            )
        changes["updated_at"] = utcnow()

        try:
            updated = OrgWorkflow.model_validate({**workflow.model_dump(), **changes})
        except ValidationError as e:
            raise InvalidTemplate(str(e), workflow_id=workflow_id) from e

        saved = await self._repository.update_org_workflow(updated, version)
        logger.info(f"Updated workflow {workflow_id} fields {sorted(fields)}")
        await self._emit("workflow.updated", saved, actor, fields=sorted(fields))
        return saved

    async def reorder_steps(
        self,
        org_id: str,
        workflow_id: str,
        order: Iterable[int],
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrgWorkflow:
        """Reorder steps by listing their current sort orders in the new order.

        Steps are renumbered contiguously from the lowest current sort order.
        """
        order = list(order)
        workflow = await self.get(org_id, workflow_id)
        by_order = {s.sort_order: s for s in workflow.steps}
        if sorted(order) != sorted(by_order):
            raise InvalidTemplate(
                f"Reorder must be a permutation of {sorted(by_order)}",
                workflow_id=workflow_id,
            )
        base = min(by_order) if by_order else 0
        steps = [
            by_order[old].model_copy(update={"sort_order": base + i})
            for i, old in enumerate(order)
        ]
        return await self.update(
            org_id,
            workflow_id,
            WorkflowPatch(steps=steps),
            actor=actor,
            expected_version=(
                workflow.version if expected_version is None else expected_version
            ),
        )

    async def restore_from_pack(
        self, org_id: str, workflow_id: str, actor: Optional[str] = None
    ) -> OrgWorkflow:
        """Reset name, description and steps to the current pack definition.

        Identity, activation and lock settings are preserved, and past runs
        keep their own step snapshots.
        """
        workflow = await self.get(org_id, workflow_id)
        if workflow.source_template_id is None:
            raise NotRestorable(workflow_id, "workflow was not seeded from a pack")
        template = self._catalog.get_template(workflow.source_template_id)
        if template is None:
            raise NotRestorable(
                workflow_id,
                f"pack template {workflow.source_template_id} is no longer available",
            )

        restored = workflow.model_copy(
            update={
                "name": template.name,
                "description": template.description,
                "steps": list(template.steps),
                "updated_at": utcnow(),
            }
        )
        saved = await self._repository.update_org_workflow(restored, workflow.version)
        logger.info(f"Restored workflow {workflow_id} from {template.id}")
        await self._emit(
            "workflow.restored", saved, actor, source_template_id=template.id
        )
        return saved

    async def set_active(
        self, org_id: str, workflow_id: str, active: bool, actor: Optional[str] = None
    ) -> OrgWorkflow:
        """Toggle activation. Permitted on locked workflows too."""
        workflow = await self.get(org_id, workflow_id)
        if workflow.is_active == active:
            return workflow
        saved = await self._repository.update_org_workflow(
            workflow.model_copy(update={"is_active": active, "updated_at": utcnow()}),
            workflow.version,
        )
        await self._emit(
            "workflow.activated" if active else "workflow.deactivated", saved, actor
        )
        return saved
