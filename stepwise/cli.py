"""Command line interface for operating the stepwise engine."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer

from stepwise import WorkflowEngine, build_engine
from stepwise.contracts import OutputLink, RunStatus, StepRun
from stepwise.errors import StepwiseError
from stepwise.utils.retry import retry_on_conflict

T = TypeVar("T")

app = typer.Typer(help="CLI for stepwise workflow templates and runs")

# Command groups
pack_app = typer.Typer(help="Commands for browsing the pack catalog")
template_app = typer.Typer(help="Commands for managing org workflow templates")
run_app = typer.Typer(help="Commands for starting and inspecting runs")
step_app = typer.Typer(help="Commands for driving step runs")

app.add_typer(pack_app, name="pack")
app.add_typer(template_app, name="template")
app.add_typer(run_app, name="run")
app.add_typer(step_app, name="step")


@app.callback()
def main() -> None:
    """Stepwise CLI entry point."""
    pass


def _execute(operation: Callable[[WorkflowEngine], Awaitable[T]]) -> T:
    """Run ``operation`` against a freshly built engine and report engine errors."""

    async def runner() -> T:
        engine = build_engine()
        try:
            async with engine:
                return await operation(engine)
        finally:
            dispose = getattr(engine.repository, "dispose", None)
            if dispose is not None:
                await dispose()

    try:
        return asyncio.run(runner())
    except StepwiseError as e:
        typer.secho(f"Error: {e.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


async def _transition(
    engine: WorkflowEngine,
    step_run_id: str,
    version: Optional[int],
    apply: Callable[[int], Awaitable[StepRun]],
) -> StepRun:
    """Apply a transition at ``version``, or at the latest version with retries."""
    if version is not None:
        return await apply(version)

    async def attempt() -> StepRun:
        current = await engine.steps.get_step_run(step_run_id)
        return await apply(current.version)

    return await retry_on_conflict(attempt)


def _echo_step_run(step_run: StepRun) -> None:
    line = (
        f"{step_run.id}\t{step_run.sort_order}\t{step_run.step.step_type.value}\t"
        f"{step_run.status.value}\tv{step_run.version}\t{step_run.step.title}"
    )
    if step_run.assigned_to:
        line += f"\t@{step_run.assigned_to}"
    typer.echo(line)


def _parse_link(value: str) -> OutputLink:
    link_type, sep, link_id = value.partition(":")
    if not sep or not link_type or not link_id:
        raise typer.BadParameter(f"Expected TYPE:ID, got {value!r}")
    return OutputLink(type=link_type, id=link_id)


# ----------------------------------------------------------------------
# Packs
@pack_app.command("list")
def pack_list() -> None:
    """
    List every pack template in the catalog.

    Example:
        stepwise pack list
        # Output: generic:onboarding:new_employee_onboarding    7 steps    New Employee Onboarding
    """

    async def op(engine: WorkflowEngine):
        return engine.catalog.list_pack_templates(engine.catalog.pack_keys())

    templates = _execute(op)
    if not templates:
        typer.echo("No pack templates found")
        return
    for template in templates:
        lock = "\tlocked" if template.is_locked else ""
        typer.echo(
            f"{template.id}\t{len(template.steps)} steps\t{template.name}{lock}"
        )


# ----------------------------------------------------------------------
# Templates
@template_app.command("seed")
def template_seed(
    org_id: str,
    pack: Optional[List[str]] = typer.Option(
        None, "--pack", help="Pack key to seed from (repeatable, default: all)"
    ),
    missing_only: bool = typer.Option(
        False, "--missing-only", help="Reseed templates added to packs since last seed"
    ),
    actor: Optional[str] = typer.Option(None, "--by", help="Acting user"),
) -> None:
    """
    Clone pack templates into an organization.

    Seeding is idempotent: templates the org already holds are left alone.

    Example:
        stepwise template seed acme --pack generic --pack convene
    """

    async def op(engine: WorkflowEngine) -> int:
        pack_keys = pack or engine.catalog.pack_keys()
        if missing_only:
            return await engine.templates.reseed_missing(org_id, pack_keys, actor)
        return await engine.templates.seed(org_id, pack_keys, actor)

    created = _execute(op)
    typer.echo(f"Created {created} workflows for {org_id}")


@template_app.command("list")
def template_list(
    org_id: str,
    active_only: bool = typer.Option(False, "--active-only"),
) -> None:
    """List an organization's workflow templates."""

    async def op(engine: WorkflowEngine):
        return await engine.templates.list(org_id, active_only=active_only)

    workflows = _execute(op)
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        flags = []
        if not wf.is_active:
            flags.append("inactive")
        if wf.is_locked:
            flags.append("locked")
        typer.echo(
            f"{wf.id}\t{wf.workflow_type.value}\tv{wf.version}\t{wf.name}"
            + (f"\t{','.join(flags)}" if flags else "")
        )


@template_app.command("show")
def template_show(org_id: str, workflow_id: str) -> None:
    """Show a workflow template and its steps."""

    async def op(engine: WorkflowEngine):
        return await engine.templates.get(org_id, workflow_id)

    wf = _execute(op)
    typer.echo(f"Workflow {wf.id}: {wf.name} (v{wf.version})")
    typer.echo(f"Type: {wf.workflow_type.value}")
    if wf.source_template_id:
        typer.echo(f"Source: {wf.source_template_id}")
    typer.echo(f"Active: {wf.is_active}  Locked: {wf.is_locked}")
    for step in wf.steps:
        typer.echo(f"- {step.sort_order}. {step.title} [{step.step_type.value}]")


@template_app.command("restore")
def template_restore(
    org_id: str,
    workflow_id: str,
    actor: Optional[str] = typer.Option(None, "--by", help="Acting user"),
) -> None:
    """Reset a workflow's name, description and steps to its pack definition."""

    async def op(engine: WorkflowEngine):
        return await engine.templates.restore_from_pack(org_id, workflow_id, actor)

    wf = _execute(op)
    typer.echo(f"Restored {wf.id} to {wf.source_template_id} (v{wf.version})")


@template_app.command("activate")
def template_activate(
    org_id: str,
    workflow_id: str,
    deactivate: bool = typer.Option(False, "--deactivate"),
    actor: Optional[str] = typer.Option(None, "--by", help="Acting user"),
) -> None:
    """Activate (or with --deactivate, deactivate) a workflow."""

    async def op(engine: WorkflowEngine):
        return await engine.templates.set_active(
            org_id, workflow_id, not deactivate, actor
        )

    wf = _execute(op)
    state = "active" if wf.is_active else "inactive"
    typer.echo(f"Workflow {wf.id} is {state} (v{wf.version})")


# ----------------------------------------------------------------------
# Runs
@run_app.command("start")
def run_start(
    org_id: str,
    workflow_id: str,
    actor: str = typer.Option(..., "--by", help="User starting the run"),
    target: Optional[str] = typer.Option(
        None, "--target", help="Reference to the entity the run is about"
    ),
) -> None:
    """
    Start a run of a workflow.

    Example:
        stepwise run start acme 3f2c... --by alice --target employee:42
    """

    async def op(engine: WorkflowEngine):
        return await engine.instantiator.start(
            org_id, workflow_id, actor, target_entity_ref=target
        )

    run = _execute(op)
    typer.echo(f"Started run {run.id}")


@run_app.command("list")
def run_list(
    org_id: str,
    workflow_id: Optional[str] = typer.Option(None, "--workflow"),
    status: Optional[RunStatus] = typer.Option(None, "--status"),
) -> None:
    """List runs, most recent first."""

    async def op(engine: WorkflowEngine):
        return await engine.runs.list_runs(org_id, workflow_id, status)

    runs = _execute(op)
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(
            f"{run.id}\t{run.status.value}\t{run.org_workflow_id}\t{run.started_at}"
        )


@run_app.command("show")
def run_show(org_id: str, run_id: str) -> None:
    """
    Show a run with the state of each of its steps.

    Example:
        stepwise run show acme 9a1b...
        # Output: Run 9a1b...: running
        #         <step run id>    1    form_step    completed    v3    Collect details
    """

    async def op(engine: WorkflowEngine):
        run = await engine.runs.get_run(org_id, run_id)
        return run, await engine.runs.list_step_runs(org_id, run_id)

    run, step_runs = _execute(op)
    typer.echo(f"Run {run.id}: {run.status.value}")
    typer.echo(f"Workflow: {run.org_workflow_id} (v{run.workflow_version})")
    if run.target_entity_ref:
        typer.echo(f"Target: {run.target_entity_ref}")
    if run.cancellation_reason:
        typer.echo(f"Cancelled by {run.cancelled_by}: {run.cancellation_reason}")
    for step_run in step_runs:
        _echo_step_run(step_run)


@run_app.command("cancel")
def run_cancel(
    org_id: str,
    run_id: str,
    reason: str = typer.Option(..., "--reason"),
    actor: Optional[str] = typer.Option(None, "--by", help="Acting user"),
) -> None:
    """Cancel a running run and skip all of its unfinished steps."""

    async def op(engine: WorkflowEngine):
        await engine.runs.get_run(org_id, run_id)
        return await engine.steps.cancel_run(run_id, reason, actor)

    run = _execute(op)
    typer.echo(f"Run {run.id} is {run.status.value}")


@run_app.command("stats")
def run_stats(org_id: str, workflow_id: str) -> None:
    """Summarize the runs of a workflow."""

    async def op(engine: WorkflowEngine):
        return await engine.runs.workflow_stats(org_id, workflow_id)

    stats = _execute(op)
    typer.echo(f"Total runs: {stats.total}")
    for status, count in sorted(stats.by_status.items()):
        typer.echo(f"  {status}: {count}")
    typer.echo(f"Completion rate: {stats.completion_rate:.1f}%")
    typer.echo(f"Average completion: {stats.avg_completion_seconds:.0f}s")


# ----------------------------------------------------------------------
# Steps
VersionOption = typer.Option(
    None, "--version", help="Expected step run version (default: latest, retried)"
)
ActorOption = typer.Option(..., "--by", help="Acting user")


@step_app.command("start")
def step_start(
    step_run_id: str,
    actor: str = ActorOption,
    version: Optional[int] = VersionOption,
    claim: bool = typer.Option(False, "--claim", help="Assign the step to yourself"),
) -> None:
    """Start a pending step."""

    async def op(engine: WorkflowEngine):
        return await _transition(
            engine,
            step_run_id,
            version,
            lambda v: engine.steps.start(step_run_id, v, actor, claim=claim),
        )

    _echo_step_run(_execute(op))


@step_app.command("complete")
def step_complete(
    step_run_id: str,
    actor: str = ActorOption,
    version: Optional[int] = VersionOption,
    notes: Optional[str] = typer.Option(None, "--notes"),
    link: Optional[List[str]] = typer.Option(
        None, "--link", help="Output link as TYPE:ID (repeatable)"
    ),
) -> None:
    """Complete an in-progress step."""
    links = [_parse_link(value) for value in link or []]

    async def op(engine: WorkflowEngine):
        return await _transition(
            engine,
            step_run_id,
            version,
            lambda v: engine.steps.complete(
                step_run_id, v, actor, output_links=links, notes=notes
            ),
        )

    _echo_step_run(_execute(op))


@step_app.command("reject")
def step_reject(
    step_run_id: str,
    notes: str = typer.Option(..., "--notes"),
    actor: str = ActorOption,
    version: Optional[int] = VersionOption,
) -> None:
    """Reject an in-progress approval step. This fails the run."""

    async def op(engine: WorkflowEngine):
        return await _transition(
            engine,
            step_run_id,
            version,
            lambda v: engine.steps.reject(step_run_id, v, actor, notes),
        )

    _echo_step_run(_execute(op))


@step_app.command("skip")
def step_skip(
    step_run_id: str,
    notes: str = typer.Option(..., "--notes"),
    actor: str = ActorOption,
    version: Optional[int] = VersionOption,
) -> None:
    """Skip a pending step (admins only)."""

    async def op(engine: WorkflowEngine):
        return await _transition(
            engine,
            step_run_id,
            version,
            lambda v: engine.steps.skip(step_run_id, v, actor, notes),
        )

    _echo_step_run(_execute(op))


@step_app.command("fail")
def step_fail(
    step_run_id: str,
    reason: str = typer.Option(..., "--reason"),
    actor: Optional[str] = typer.Option(None, "--by", help="Acting user"),
    version: Optional[int] = VersionOption,
) -> None:
    """Mark an unfinished step as failed."""

    async def op(engine: WorkflowEngine):
        return await _transition(
            engine,
            step_run_id,
            version,
            lambda v: engine.steps.fail(step_run_id, v, reason, actor),
        )

    _echo_step_run(_execute(op))


@step_app.command("mine")
def step_mine(org_id: str, assignee: str) -> None:
    """List pending and in-progress steps assigned to a user."""

    async def op(engine: WorkflowEngine):
        return await engine.runs.my_work_items(org_id, assignee)

    items = _execute(op)
    if not items:
        typer.echo("No work items")
        return
    for step_run in items:
        typer.echo(f"{step_run.run_id}\t", nl=False)
        _echo_step_run(step_run)


if __name__ == "__main__":
    app()
