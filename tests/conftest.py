from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cycle_metrics.database.models import (
    Base,
    CicdDeployment,
    CicdDeploymentCommit,
    CommitsDiff,
    ProjectMapping,
    PullRequest,
    PullRequestCommit,
    WorkItem,
)

PROJECT = "checkout"
REPO_ID = "github:GithubRepo:1:100"
OTHER_REPO_ID = "github:GithubRepo:1:999"


@pytest_asyncio.fixture
async def engine(tmp_path):
    """SQLite engine with SAVEPOINT support enabled."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cycle.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


def add_project_repo(session, project_name: str = PROJECT, repo_id: str = REPO_ID):
    session.add(ProjectMapping(project_name=project_name, table="repos", row_id=repo_id))


def add_work_item(
    session,
    task_id: str = "T1",
    created_at: datetime = datetime(2024, 1, 1),
    linked_pr_number: int | None = 42,
    connection_id: int = 1,
    linked_pr_url: str = "",
):
    session.add(
        WorkItem(
            connection_id=connection_id,
            id=task_id,
            name=f"Task {task_id}",
            created_at=created_at,
            linked_pr_number=linked_pr_number,
            linked_pr_url=linked_pr_url,
        )
    )


def add_pull_request(
    session,
    pr_id: str = "pr-42",
    key: int = 42,
    title: str = "Improve checkout",
    head_ref: str = "feature/checkout",
    created_date: datetime = datetime(2024, 1, 2),
    merged_date: datetime | None = datetime(2024, 1, 5),
    merge_commit_sha: str | None = "abc123",
    repo_id: str = REPO_ID,
):
    session.add(
        PullRequest(
            id=pr_id,
            base_repo_id=repo_id,
            pull_request_key=key,
            title=title,
            head_ref=head_ref,
            created_date=created_date,
            merged_date=merged_date,
            merge_commit_sha=merge_commit_sha,
        )
    )


def add_commit(session, pr_id: str, sha: str, authored: datetime):
    session.add(
        PullRequestCommit(pull_request_id=pr_id, commit_sha=sha, commit_authored_date=authored)
    )


def add_deployment(
    session,
    deployment_id: str,
    commit_sha: str,
    finished_date: datetime,
    shipped: list[str],
    environment: str = "PRODUCTION",
    result: str = "SUCCESS",
    prev_commit_sha: str = "base000",
):
    """Deployment chained to a previous successful deployment commit.

    ``shipped`` is the list of commits in the diff between the previous
    deployed commit and this one.
    """
    prev_id = f"{deployment_id}-prev"
    session.add(
        CicdDeploymentCommit(
            id=prev_id,
            cicd_deployment_id=f"{deployment_id}-before",
            commit_sha=prev_commit_sha,
            environment=environment,
            result="SUCCESS",
        )
    )
    session.add(
        CicdDeploymentCommit(
            id=f"{deployment_id}-dc",
            cicd_deployment_id=deployment_id,
            commit_sha=commit_sha,
            environment=environment,
            result=result,
            prev_success_deployment_commit_id=prev_id,
        )
    )
    session.add(
        CicdDeployment(
            id=deployment_id,
            name=deployment_id,
            result=result,
            environment=environment,
            finished_date=finished_date,
        )
    )
    for sha in shipped:
        session.add(
            CommitsDiff(new_commit_sha=commit_sha, old_commit_sha=prev_commit_sha, commit_sha=sha)
        )


async def seed_t1_scenario(session, with_deployment: bool = True):
    """Task T1 linked to PR #42 with first commit on 2024-01-03.

    With a deployment, D7 ships abc123 in its diff range on 2024-01-06.
    """
    add_project_repo(session)
    add_work_item(session, "T1", datetime(2024, 1, 1), 42)
    add_pull_request(session)
    add_commit(session, "pr-42", "c2", datetime(2024, 1, 4))
    add_commit(session, "pr-42", "c1", datetime(2024, 1, 3))
    if with_deployment:
        add_deployment(
            session,
            "D7",
            commit_sha="head777",
            finished_date=datetime(2024, 1, 6),
            shipped=["abc123", "head777"],
        )
    await session.commit()
