"""Wiring of the engine components around one repository and emitter."""

from __future__ import annotations

import logging
from typing import Optional

from .catalog import PackCatalog, get_catalog
from .config import StepwiseConfig, load_config
from .events import EventEmitter, get_emitter
from .instantiate import RunInstantiator
from .machine import StepRunStateMachine
from .persistence import WorkflowRepository, get_repository
from .security import AuthorizationPolicy, StaticAdminPolicy
from .stats import RunQueries
from .templates import TemplateStore

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Facade over the template store, run instantiator and state machine.

    ``templates`` manages org workflows, ``instantiator`` starts runs,
    ``steps`` drives step runs and ``runs`` answers read-side queries.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        catalog: PackCatalog,
        emitter: EventEmitter,
        policy: AuthorizationPolicy,
        config: Optional[StepwiseConfig] = None,
    ) -> None:
        self.config = config or StepwiseConfig()
        self.repository = repository
        self.catalog = catalog
        self.emitter = emitter
        self.policy = policy

        timeout = self.config.events.emit_timeout
        self.templates = TemplateStore(
            repository, catalog, emitter, policy, emit_timeout=timeout
        )
        self.instantiator = RunInstantiator(repository, emitter, emit_timeout=timeout)
        self.steps = StepRunStateMachine(
            repository,
            emitter,
            policy,
            gating=self.config.gating,
            approval_step_types=self.config.approval_step_types,
            emit_timeout=timeout,
        )
        self.runs = RunQueries(repository)

    async def __aenter__(self) -> "WorkflowEngine":
        await self.emitter.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.emitter.disconnect()


def build_engine(
    config: Optional[StepwiseConfig] = None,
    repository: Optional[WorkflowRepository] = None,
    catalog: Optional[PackCatalog] = None,
    emitter: Optional[EventEmitter] = None,
    policy: Optional[AuthorizationPolicy] = None,
) -> WorkflowEngine:
    """Assemble an engine from configuration, filling in any missing parts."""

    config = config or load_config()
    repository = repository or get_repository(config=config)
    catalog = catalog or get_catalog(config)
    emitter = emitter or get_emitter(config=config)
    policy = policy or StaticAdminPolicy(config.admin_actors)
    logger.debug(f"Engine catalog holds packs {catalog.pack_keys()}")
    return WorkflowEngine(repository, catalog, emitter, policy, config=config)
