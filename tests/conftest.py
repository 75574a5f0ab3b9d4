"""Shared fixtures: an engine wired to in-memory collaborators."""

from pathlib import Path

import pytest

import stepwise.persistence as persistence
from stepwise.catalog import InMemoryPackCatalog, load_pack_directory
from stepwise.config import StepwiseConfig
from stepwise.engine import WorkflowEngine
from stepwise.events import InMemoryEventEmitter
from stepwise.persistence import InMemoryWorkflowRepository
from stepwise.security import StaticAdminPolicy

FIXTURE_PACKS = Path(__file__).parent / "fixtures" / "packs"

ORG = "acme"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    # Keep a developer's config file or database URL out of the tests.
    monkeypatch.setenv("STEPWISE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPWISE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("STEPWISE_EVENTS", raising=False)
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def catalog() -> InMemoryPackCatalog:
    return InMemoryPackCatalog(load_pack_directory(FIXTURE_PACKS))


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def emitter() -> InMemoryEventEmitter:
    return InMemoryEventEmitter()


@pytest.fixture
def policy() -> StaticAdminPolicy:
    return StaticAdminPolicy(admins=["admin"])


@pytest.fixture
def config() -> StepwiseConfig:
    return StepwiseConfig()


@pytest.fixture
def engine(repository, catalog, emitter, policy, config) -> WorkflowEngine:
    return WorkflowEngine(repository, catalog, emitter, policy, config=config)


@pytest.fixture
def seeded_workflow(engine):
    """Return a coroutine function that seeds the org and fetches one workflow."""

    async def _get(template_id: str, org_id: str = ORG):
        await engine.templates.seed(org_id, engine.catalog.pack_keys())
        for wf in await engine.templates.list(org_id):
            if wf.source_template_id == template_id:
                return wf
        raise LookupError(template_id)

    return _get
