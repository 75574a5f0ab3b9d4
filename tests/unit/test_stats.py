from datetime import timedelta

import pytest

from stepwise.contracts import RunStatus
from stepwise.errors import NotFound

ORG = "acme"
REVIEW = "generic:review:annual_review"


async def _finish(engine, run_id):
    for step_run in await engine.repository.list_step_runs(run_id):
        await engine.steps.start(step_run.id, 1, "bob")
        await engine.steps.complete(step_run.id, 2, "bob")


@pytest.mark.asyncio
async def test_workflow_stats(engine, seeded_workflow):
    wf = await seeded_workflow(REVIEW)
    done = await engine.instantiator.start(ORG, wf.id, "alice")
    await _finish(engine, done.id)
    cancelled = await engine.instantiator.start(ORG, wf.id, "alice")
    await engine.steps.cancel_run(cancelled.id, "duplicate")
    await engine.instantiator.start(ORG, wf.id, "alice")
    await engine.instantiator.start(ORG, wf.id, "alice")

    stats = await engine.runs.workflow_stats(ORG, wf.id)
    assert stats.total == 4
    assert stats.by_status == {"completed": 1, "cancelled": 1, "running": 2}
    assert stats.completion_rate == 25.0

    finished = await engine.repository.get_run(done.id)
    expected = (finished.completed_at - finished.started_at).total_seconds()
    assert stats.avg_completion_seconds == pytest.approx(expected)
    assert finished.completed_at - finished.started_at < timedelta(minutes=1)


@pytest.mark.asyncio
async def test_workflow_stats_without_runs(engine, seeded_workflow):
    wf = await seeded_workflow(REVIEW)
    stats = await engine.runs.workflow_stats(ORG, wf.id)
    assert stats.total == 0
    assert stats.completion_rate == 0.0
    with pytest.raises(NotFound):
        await engine.runs.workflow_stats("globex", wf.id)


@pytest.mark.asyncio
async def test_has_active_runs(engine, seeded_workflow):
    wf = await seeded_workflow(REVIEW)
    assert not await engine.runs.has_active_runs(ORG, wf.id)
    run = await engine.instantiator.start(ORG, wf.id, "alice")
    assert await engine.runs.has_active_runs(ORG, wf.id)
    await engine.steps.cancel_run(run.id, "test")
    assert not await engine.runs.has_active_runs(ORG, wf.id)


@pytest.mark.asyncio
async def test_my_work_items(engine, seeded_workflow):
    wf = await seeded_workflow(REVIEW)
    run = await engine.instantiator.start(ORG, wf.id, "alice")
    first, second = await engine.repository.list_step_runs(run.id)

    await engine.steps.start(first.id, 1, "bob", claim=True)
    await engine.steps.reassign(second.id, 1, "bob", actor="admin")

    items = await engine.runs.my_work_items(ORG, "bob")
    assert [s.id for s in items] == [first.id, second.id]
    assert await engine.runs.my_work_items("globex", "bob") == []

    await engine.steps.complete(first.id, 2, "bob")
    assert [s.id for s in await engine.runs.my_work_items(ORG, "bob")] == [second.id]

    await engine.steps.cancel_run(run.id, "done early")
    assert await engine.runs.my_work_items(ORG, "bob") == []


@pytest.mark.asyncio
async def test_run_lookups_are_org_scoped(engine, seeded_workflow):
    wf = await seeded_workflow(REVIEW)
    run = await engine.instantiator.start(ORG, wf.id, "alice")
    assert (await engine.runs.get_run(ORG, run.id)).id == run.id
    with pytest.raises(NotFound):
        await engine.runs.get_run("globex", run.id)
    assert len(await engine.runs.list_step_runs(ORG, run.id)) == 2
    assert [r.id for r in await engine.runs.list_runs(ORG, status=RunStatus.RUNNING)] == [
        run.id
    ]
