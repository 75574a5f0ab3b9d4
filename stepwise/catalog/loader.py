"""Load pack templates from YAML pack documents."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from ..contracts import PackTemplate, StepSpec, WorkflowType

logger = logging.getLogger(__name__)

BUILTIN_PACKS_DIR = Path(__file__).parent / "packs"


class PackTemplateDocument(BaseModel):
    template_key: str
    workflow_type: WorkflowType
    name: str
    description: Optional[str] = None
    is_locked: bool = False
    editable_fields: Optional[List[str]] = None
    steps: List[StepSpec] = Field(default_factory=list)


class PackDocument(BaseModel):
    """Top-level layout of a pack file."""

    pack_key: str
    templates: List[PackTemplateDocument] = Field(default_factory=list)


def parse_pack(data: Dict[str, Any]) -> list[PackTemplate]:
    document = PackDocument.model_validate(data)
    templates = []
    for entry in document.templates:
        fields = entry.model_dump(exclude_none=True, exclude={"steps"})
        templates.append(
            PackTemplate(pack_key=document.pack_key, steps=entry.steps, **fields)
        )
    return templates


def load_pack_file(path: str | Path) -> list[PackTemplate]:
    """Parse one YAML pack document into templates."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    templates = parse_pack(data)
    logger.debug(f"Loaded {len(templates)} templates from {path}")
    return templates


def load_pack_directory(path: str | Path) -> list[PackTemplate]:
    """Load every ``*.yaml`` pack under ``path`` in file name order."""
    templates: list[PackTemplate] = []
    for pack_file in sorted(Path(path).glob("*.yaml")):
        templates.extend(load_pack_file(pack_file))
    return templates


def load_builtin_packs() -> list[PackTemplate]:
    return load_pack_directory(BUILTIN_PACKS_DIR)
