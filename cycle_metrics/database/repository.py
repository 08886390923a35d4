"""Repository layer for database operations."""

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncScalarResult, AsyncSession

from cycle_metrics.database.models import (
    ProjectMapping,
    PullRequest,
    TaskDeployment,
    WorkItem,
)

# Dialect-specific INSERT constructs supporting ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_KEY_COLUMNS = ("task_id", "deployment_id", "connection_id")

_VALUE_COLUMNS = (
    "task_created_at",
    "first_commit_at",
    "pr_created_at",
    "pr_merged_at",
    "deployment_at",
    "planning_time",
    "code_time",
    "deploy_time",
    "total_cycle_time",
)


def candidate_query(project_name: str):
    """Work items with a linked PR whose repository belongs to the project."""
    return (
        select(WorkItem)
        .join(PullRequest, PullRequest.pull_request_key == WorkItem.linked_pr_number)
        .join(
            ProjectMapping,
            (ProjectMapping.row_id == PullRequest.base_repo_id)
            & (ProjectMapping.table == "repos"),
        )
        .where(
            WorkItem.linked_pr_number > 0,
            ProjectMapping.project_name == project_name,
        )
        .distinct()
        .order_by(WorkItem.connection_id, WorkItem.id)
    )


class WorkItemRepository:
    """Read access to tracker work items."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def stream_candidates(
        self,
        project_name: str,
        batch_size: int = 100,
    ) -> AsyncScalarResult[WorkItem]:
        """Open a server-side cursor over the project's candidate work items.

        Errors opening the cursor propagate to the caller.
        """
        query = candidate_query(project_name).execution_options(yield_per=batch_size)
        return await self.session.stream_scalars(query)

    async def get(self, connection_id: int, task_id: str) -> WorkItem | None:
        return await self.session.get(WorkItem, (connection_id, task_id))


class CorrelationRepository:
    """Repository for task/deployment relationship records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.bind.dialect.name
        try:
            return _UPSERT_INSERTS[dialect]
        except KeyError:
            raise ValueError(f"Upsert not supported for dialect {dialect!r}") from None

    async def upsert(self, record: dict) -> None:
        """Insert or update one relationship record.

        Any existing row for the same task and connection under a different
        deployment id is removed first, so a task never has more than one
        record. Callers should run this inside a transaction or savepoint.
        """
        insert = self._insert()

        await self.session.execute(
            delete(TaskDeployment).where(
                TaskDeployment.task_id == record["task_id"],
                TaskDeployment.connection_id == record["connection_id"],
                TaskDeployment.deployment_id != record["deployment_id"],
            )
        )

        stmt = insert(TaskDeployment).values(
            **{column: record.get(column) for column in _KEY_COLUMNS + _VALUE_COLUMNS}
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_KEY_COLUMNS),
            set_={column: stmt.excluded[column] for column in _VALUE_COLUMNS},
        )
        await self.session.execute(stmt)

    async def get_for_task(self, connection_id: int, task_id: str) -> TaskDeployment | None:
        """Get the relationship record for a task, if one has been written."""
        query = (
            select(TaskDeployment)
            .where(
                TaskDeployment.connection_id == connection_id,
                TaskDeployment.task_id == task_id,
            )
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_records(
        self,
        connection_id: int | None = None,
        limit: int | None = None,
    ) -> list[TaskDeployment]:
        """List relationship records, oldest task first."""
        query = select(TaskDeployment)
        if connection_id is not None:
            query = query.where(TaskDeployment.connection_id == connection_id)
        query = query.order_by(TaskDeployment.task_created_at.asc(), TaskDeployment.task_id.asc())
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())
