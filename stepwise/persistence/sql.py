"""SQL implementation of the workflow repository (SQLite or PostgreSQL)."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel

from ..contracts import (
    OrgWorkflow,
    RunStatus,
    StepRun,
    StepRunStatus,
    WorkflowRun,
    utcnow,
)
from ..errors import AlreadyTerminal, Conflict, InvalidTransition, NotFound
from ..status import ACTIVE_STEP_STATUSES, derive_run_status
from .repository import WorkflowRepository
from .tables import (
    OrgWorkflowRow,
    StepRunRow,
    WorkflowRunRow,
    row_to_run,
    row_to_step_run,
    row_to_workflow,
    run_values,
    step_run_values,
    workflow_values,
)

_ACTIVE = [s.value for s in ACTIVE_STEP_STATUSES]


class SQLWorkflowRepository(WorkflowRepository):
    """Persist templates and runs through SQLAlchemy's async engine.

    ``database_url`` must name an async driver, e.g.
    ``sqlite+aiosqlite:///stepwise.db`` or ``postgresql+asyncpg://...``.
    Tables are created on first use.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.database_url = database_url
        self.engine = create_async_engine(
            database_url, echo=echo, future=True, connect_args=connect_args
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            async with self._init_lock:
                if not self._initialized:
                    await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    # Templates
    async def insert_org_workflow(self, workflow: OrgWorkflow) -> bool:
        async with self.session() as session:
            try:
                async with session.begin():
                    session.add(OrgWorkflowRow(**workflow_values(workflow)))
            except IntegrityError:
                if workflow.source_template_id is None:
                    raise
                return False
        return True

    async def get_org_workflow(self, workflow_id: str) -> OrgWorkflow | None:
        async with self.session() as session:
            row = await session.get(OrgWorkflowRow, workflow_id)
            return row_to_workflow(row) if row else None

    async def list_org_workflows(self, org_id: str) -> list[OrgWorkflow]:
        async with self.session() as session:
            result = await session.execute(
                select(OrgWorkflowRow)
                .where(OrgWorkflowRow.org_id == org_id)
                .order_by(OrgWorkflowRow.name)
            )
            return [row_to_workflow(r) for r in result.scalars().all()]

    async def update_org_workflow(
        self, workflow: OrgWorkflow, expected_version: int
    ) -> OrgWorkflow:
        values = workflow_values(workflow)
        values["version"] = expected_version + 1
        async with self.session() as session:
            async with session.begin():
                result = await session.execute(
                    update(OrgWorkflowRow)
                    .where(
                        OrgWorkflowRow.id == workflow.id,
                        OrgWorkflowRow.version == expected_version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    current = await session.scalar(
                        select(OrgWorkflowRow.version).where(
                            OrgWorkflowRow.id == workflow.id
                        )
                    )
                    if current is None:
                        raise NotFound("workflow", workflow.id)
                    raise Conflict("workflow", workflow.id, expected_version, current)
        return workflow.model_copy(update={"version": expected_version + 1})

    # ------------------------------------------------------------------
    # Runs
    async def create_run(self, run: WorkflowRun, step_runs: list[StepRun]) -> None:
        async with self.session() as session:
            async with session.begin():
                session.add(WorkflowRunRow(**run_values(run)))
                await session.flush()
                session.add_all(StepRunRow(**step_run_values(s)) for s in step_runs)

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        async with self.session() as session:
            row = await session.get(WorkflowRunRow, run_id)
            return row_to_run(row) if row else None

    async def list_runs(
        self,
        org_id: Optional[str] = None,
        org_workflow_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
    ) -> list[WorkflowRun]:
        stmt = select(WorkflowRunRow)
        if org_id is not None:
            stmt = stmt.where(WorkflowRunRow.org_id == org_id)
        if org_workflow_id is not None:
            stmt = stmt.where(WorkflowRunRow.org_workflow_id == org_workflow_id)
        if status is not None:
            stmt = stmt.where(WorkflowRunRow.status == RunStatus(status).value)
        stmt = stmt.order_by(WorkflowRunRow.started_at.desc())
        async with self.session() as session:
            result = await session.execute(stmt)
            return [row_to_run(r) for r in result.scalars().all()]

    async def get_step_run(self, step_run_id: str) -> StepRun | None:
        async with self.session() as session:
            row = await session.get(StepRunRow, step_run_id)
            return row_to_step_run(row) if row else None

    async def list_step_runs(self, run_id: str) -> list[StepRun]:
        async with self.session() as session:
            result = await session.execute(
                select(StepRunRow)
                .where(StepRunRow.run_id == run_id)
                .order_by(StepRunRow.sort_order)
            )
            return [row_to_step_run(r) for r in result.scalars().all()]

    async def list_assigned_step_runs(self, assignee: str) -> list[StepRun]:
        async with self.session() as session:
            result = await session.execute(
                select(StepRunRow).where(
                    StepRunRow.assigned_to == assignee,
                    StepRunRow.status.in_(_ACTIVE),
                )
            )
            return [row_to_step_run(r) for r in result.scalars().all()]

    async def _lock_run(self, session: AsyncSession, run_id: str) -> WorkflowRunRow:
        result = await session.execute(
            select(WorkflowRunRow).where(WorkflowRunRow.id == run_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound("run", run_id)
        return row

    async def update_step_run(
        self, step_run: StepRun, expected_version: int
    ) -> tuple[StepRun, WorkflowRun]:
        values = step_run_values(step_run)
        values["version"] = expected_version + 1
        async with self.session() as session:
            async with session.begin():
                stored = await session.get(StepRunRow, step_run.id)
                if stored is None:
                    raise NotFound("step_run", step_run.id)
                run_row = await self._lock_run(session, stored.run_id)

                result = await session.execute(
                    update(StepRunRow)
                    .where(
                        StepRunRow.id == step_run.id,
                        StepRunRow.version == expected_version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    current = await session.scalar(
                        select(StepRunRow.version).where(StepRunRow.id == step_run.id)
                    )
                    raise Conflict("step_run", step_run.id, expected_version, current)
                if run_row.status != RunStatus.RUNNING.value:
                    raise InvalidTransition(
                        step_run.id,
                        stored.status,
                        step_run.status.value,
                        run_status=run_row.status,
                    )

                statuses = await session.scalars(
                    select(StepRunRow.status).where(StepRunRow.run_id == run_row.id)
                )
                status = derive_run_status(StepRunStatus(s) for s in statuses.all())
                if status.value != run_row.status:
                    run_row.status = status.value
                    run_row.completed_at = step_run.completed_at or utcnow()
                run = row_to_run(run_row)
        return step_run.model_copy(update={"version": expected_version + 1}), run

    async def cancel_run(
        self, run_id: str, reason: str, actor: Optional[str], at: datetime
    ) -> tuple[WorkflowRun, list[StepRun]]:
        async with self.session() as session:
            async with session.begin():
                run_row = await self._lock_run(session, run_id)
                if run_row.status != RunStatus.RUNNING.value:
                    raise AlreadyTerminal(run_id, run_row.status)

                result = await session.execute(
                    select(StepRunRow)
                    .where(StepRunRow.run_id == run_id, StepRunRow.status.in_(_ACTIVE))
                    .order_by(StepRunRow.sort_order)
                )
                active_rows = result.scalars().all()
                for row in active_rows:
                    row.status = StepRunStatus.SKIPPED.value
                    row.reason = reason
                    row.completed_at = at
                    row.version = row.version + 1

                run_row.status = RunStatus.CANCELLED.value
                run_row.cancellation_reason = reason
                run_row.cancelled_by = actor
                run_row.completed_at = at

                run = row_to_run(run_row)
                skipped = [row_to_step_run(r) for r in active_rows]
        return run, skipped
