"""In-memory pack catalog."""

from __future__ import annotations

from typing import Dict, Iterable, List

from ..constants import GENERIC_PACK_KEY
from ..contracts import PackTemplate, WorkflowType
from .base import PackCatalog


class InMemoryPackCatalog(PackCatalog):
    """Hold pack templates in a dictionary keyed by template id.

    The catalog is never mutated after construction; a pack update is a new
    catalog instance.
    """

    def __init__(self, templates: Iterable[PackTemplate] = ()) -> None:
        self._templates: Dict[str, PackTemplate] = {}
        for template in templates:
            if template.id in self._templates:
                raise ValueError(f"Duplicate pack template: {template.id}")
            self._templates[template.id] = template

    def pack_keys(self) -> list[str]:
        keys: List[str] = []
        for template in self._templates.values():
            if template.pack_key not in keys:
                keys.append(template.pack_key)
        return keys

    def list_pack_templates(self, pack_keys: Iterable[str]) -> list[PackTemplate]:
        result: List[PackTemplate] = []
        for key in dict.fromkeys(pack_keys):
            result.extend(t for t in self._templates.values() if t.pack_key == key)
        return result

    def get_template(self, template_id: str) -> PackTemplate | None:
        return self._templates.get(template_id)

    def resolve_templates(
        self, workflow_type: WorkflowType | str, program_key: str | None = None
    ) -> list[PackTemplate]:
        """Templates of ``workflow_type`` for a program, falling back to generic."""
        workflow_type = WorkflowType(workflow_type)
        program_key = program_key or GENERIC_PACK_KEY
        matches = [
            t
            for t in self.list_pack_templates([program_key])
            if t.workflow_type == workflow_type
        ]
        if matches or program_key == GENERIC_PACK_KEY:
            return matches
        return [
            t
            for t in self.list_pack_templates([GENERIC_PACK_KEY])
            if t.workflow_type == workflow_type
        ]
