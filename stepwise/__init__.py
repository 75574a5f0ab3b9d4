"""Stepwise: workflow templates and run execution for organizations."""

from .catalog import InMemoryPackCatalog, get_catalog
from .config import StepwiseConfig, load_config
from .contracts import (
    EngineEvent,
    OrgWorkflow,
    OutputLink,
    PackTemplate,
    RunStatus,
    StepRun,
    StepRunStatus,
    StepSpec,
    StepType,
    WorkflowPatch,
    WorkflowRun,
    WorkflowType,
)
from .engine import WorkflowEngine, build_engine
from .events import get_emitter
from .instantiate import RunInstantiator
from .machine import StepRunStateMachine
from .persistence import get_repository
from .security import StaticAdminPolicy
from .templates import TemplateStore

__version__ = "0.1.0"
__all__ = [
    "EngineEvent",
    "InMemoryPackCatalog",
    "OrgWorkflow",
    "OutputLink",
    "PackTemplate",
    "RunInstantiator",
    "RunStatus",
    "StaticAdminPolicy",
    "StepRun",
    "StepRunStateMachine",
    "StepRunStatus",
    "StepSpec",
    "StepType",
    "StepwiseConfig",
    "TemplateStore",
    "WorkflowEngine",
    "WorkflowPatch",
    "WorkflowRun",
    "WorkflowType",
    "build_engine",
    "get_catalog",
    "get_emitter",
    "get_repository",
    "load_config",
]
