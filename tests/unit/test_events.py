import asyncio
import logging

import pytest

from stepwise.contracts import EngineEvent
from stepwise.engine import WorkflowEngine
from stepwise.events import EventEmitter, LoggingEventEmitter, publish_event

ORG = "acme"


class ExplodingEmitter(EventEmitter):
    async def emit(self, event: EngineEvent) -> None:
        raise RuntimeError("broker down")


class SlowEmitter(EventEmitter):
    async def emit(self, event: EngineEvent) -> None:
        await asyncio.sleep(1)


def _event() -> EngineEvent:
    return EngineEvent(
        event_type="step.started",
        entity_type="step_run",
        entity_id="sr-1",
        org_id=ORG,
        actor_id="bob",
        metadata={"run_id": "r-1"},
    )


def test_event_json_round_trip():
    event = _event()
    assert EngineEvent.from_json(event.to_json()) == event


@pytest.mark.asyncio
async def test_publish_event_logs_and_swallows_failures(caplog):
    with caplog.at_level(logging.ERROR, logger="stepwise.events.base"):
        assert await publish_event(ExplodingEmitter(), _event()) is False
    assert "broker down" in caplog.text


@pytest.mark.asyncio
async def test_publish_event_times_out():
    assert await publish_event(SlowEmitter(), _event(), timeout=0.01) is False


@pytest.mark.asyncio
async def test_logging_emitter_writes_json(caplog):
    with caplog.at_level(logging.INFO, logger="stepwise.events"):
        await LoggingEventEmitter().emit(_event())
    assert '"event_type":"step.started"' in caplog.text


def test_redis_emitter_defaults():
    from stepwise.events.redis import RedisEventEmitter

    emitter = RedisEventEmitter()
    assert emitter.host == "localhost"
    assert emitter.port == 6379
    assert emitter.key == "stepwise:events"


@pytest.mark.asyncio
async def test_emitter_failure_never_undoes_transition(
    repository, catalog, policy, config
):
    engine = WorkflowEngine(repository, catalog, ExplodingEmitter(), policy, config)
    await engine.templates.seed(ORG, ["generic"])
    wf = next(
        w
        for w in await engine.templates.list(ORG)
        if w.source_template_id == "generic:review:annual_review"
    )
    run = await engine.instantiator.start(ORG, wf.id, "alice")
    first = (await repository.list_step_runs(run.id))[0]

    started = await engine.steps.start(first.id, 1, "bob")
    assert (await repository.get_step_run(first.id)).version == started.version == 2
