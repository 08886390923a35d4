"""Database module for business cycle metrics."""

from cycle_metrics.database.models import (
    Base,
    CicdDeployment,
    CicdDeploymentCommit,
    CommitsDiff,
    ProjectMapping,
    PullRequest,
    PullRequestCommit,
    TaskDeployment,
    WorkItem,
)
from cycle_metrics.database.session import get_async_session, get_database_url

__all__ = [
    "Base",
    "WorkItem",
    "PullRequest",
    "PullRequestCommit",
    "CicdDeployment",
    "CicdDeploymentCommit",
    "CommitsDiff",
    "ProjectMapping",
    "TaskDeployment",
    "get_async_session",
    "get_database_url",
]
