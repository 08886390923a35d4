"""SQLAlchemy ORM models for business cycle metrics.

Only ``task_deployments`` is owned by this project. The other tables are
created by upstream collectors (tracker, git, CI/CD, DORA and refdiff); they
are mapped here for querying and marked ``external`` so Alembic autogenerate
leaves them alone. Branch enrichment updates ``work_items.linked_branch`` but
never creates work items.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

EXTERNAL = {"external": True}


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class WorkItem(Base):
    """Task/ticket collected from the external tracker."""

    __tablename__ = "work_items"

    connection_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[str] = mapped_column(String(100), default="")
    url: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    # Set by the comment scanner once a PR/MR URL is found
    linked_pr_url: Mapped[str] = mapped_column(String(500), default="")
    linked_pr_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    linked_branch: Mapped[str] = mapped_column(String(255), default="")

    __table_args__ = (
        Index("idx_work_items_linked_pr_number", "linked_pr_number"),
        {"info": EXTERNAL},
    )


class PullRequest(Base):
    """Pull/merge request from source control."""

    __tablename__ = "pull_requests"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    base_repo_id: Mapped[str] = mapped_column(String(255), index=True)
    # Human PR number; unique per repo, not globally
    pull_request_key: Mapped[int] = mapped_column(Integer, index=True)
    title: Mapped[str] = mapped_column(String(500), default="")
    head_ref: Mapped[str] = mapped_column(String(255), default="")
    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    merged_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merge_commit_sha: Mapped[str | None] = mapped_column(String(40), nullable=True)

    __table_args__ = {"info": EXTERNAL}


class PullRequestCommit(Base):
    """Commit belonging to a pull request."""

    __tablename__ = "pull_request_commits"

    pull_request_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    commit_sha: Mapped[str] = mapped_column(String(40), primary_key=True)
    commit_authored_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = {"info": EXTERNAL}


class CicdDeployment(Base):
    """A deployment run reported by CI/CD."""

    __tablename__ = "cicd_deployments"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    result: Mapped[str] = mapped_column(String(100), index=True)  # SUCCESS, FAILURE, ...
    environment: Mapped[str] = mapped_column(String(255), default="")
    finished_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = {"info": EXTERNAL}


class CicdDeploymentCommit(Base):
    """The commit a deployment shipped, chained to the previous successful one."""

    __tablename__ = "cicd_deployment_commits"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    cicd_deployment_id: Mapped[str] = mapped_column(String(255), index=True)
    commit_sha: Mapped[str] = mapped_column(String(40), index=True)
    environment: Mapped[str] = mapped_column(String(255), default="")
    result: Mapped[str] = mapped_column(String(100), default="")
    prev_success_deployment_commit_id: Mapped[str] = mapped_column(String(255), default="")

    __table_args__ = {"info": EXTERNAL}


class CommitsDiff(Base):
    """One commit contained in the range between two deployed commits."""

    __tablename__ = "commits_diffs"

    new_commit_sha: Mapped[str] = mapped_column(String(40), primary_key=True)
    old_commit_sha: Mapped[str] = mapped_column(String(40), primary_key=True)
    commit_sha: Mapped[str] = mapped_column(String(40), primary_key=True)
    sorting_index: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("idx_commits_diffs_commit_sha", "commit_sha"),
        {"info": EXTERNAL},
    )


class ProjectMapping(Base):
    """Associates a scope row (e.g. a repo) with a project."""

    __tablename__ = "project_mapping"

    project_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    table: Mapped[str] = mapped_column(String(255), primary_key=True)
    row_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    __table_args__ = {"info": EXTERNAL}


class TaskDeployment(Base):
    """Derived link between one work item and the deployment that shipped it.

    ``deployment_id`` is an empty string until a deployment is resolved. All
    metric columns are minutes and are recomputed on every run.
    """

    __tablename__ = "task_deployments"

    task_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    deployment_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    connection_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    task_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    first_commit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pr_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pr_merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deployment_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    planning_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # task created -> first commit
    code_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # first commit -> PR merged
    deploy_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # PR merged -> deployment
    total_cycle_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # task created -> deployment

    __table_args__ = (
        Index("idx_task_deployments_task", "connection_id", "task_id"),
    )
