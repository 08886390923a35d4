"""Correlation of work items to pull requests, commits and deployments.

Each lookup is an ordered tuple of strategies. A strategy is a pure function
that builds a ``Select`` for its subject, or returns ``None`` when it does
not apply. The resolver runs them in order and keeps the first row found, so
adding a fallback means appending a function to the tuple.

"Not found" is never an error here: lookups return ``None`` and callers
leave the corresponding fields unset. Storage errors propagate.
"""

from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy import Row, Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from cycle_metrics.database.models import (
    CicdDeployment,
    CicdDeploymentCommit,
    CommitsDiff,
    ProjectMapping,
    PullRequest,
    PullRequestCommit,
    WorkItem,
)
from cycle_metrics.logging_config import get_logger
from cycle_metrics.models import Correlation, ResolvedDeployment, ResolvedPullRequest

logger = get_logger("resolver")

PRODUCTION = "PRODUCTION"
SUCCESS = "SUCCESS"

Strategy = Callable[..., Select | None]


# =============================================================================
# Pull request strategies
# =============================================================================


def project_repo_ids(project_name: str) -> Select:
    """Ids of the repositories mapped to a project."""
    return select(ProjectMapping.row_id).where(
        ProjectMapping.project_name == project_name,
        ProjectMapping.table == "repos",
    )


def pull_request_by_task_reference(work_item: WorkItem, project_name: str) -> Select | None:
    """PR in the project whose title or head branch mentions the task id.

    Heuristic: this is a plain substring match, so a branch such as
    ``feature/abc123x`` also matches task ``abc123``. When several PRs
    match, the earliest created one wins.
    """
    if not work_item.id:
        return None
    return (
        select(PullRequest)
        .where(
            PullRequest.base_repo_id.in_(project_repo_ids(project_name)),
            PullRequest.title.contains(work_item.id, autoescape=True)
            | PullRequest.head_ref.contains(work_item.id, autoescape=True),
        )
        .order_by(PullRequest.created_date.asc(), PullRequest.id.asc())
        .limit(1)
    )


def pull_request_by_linked_number(work_item: WorkItem, project_name: str) -> Select | None:
    """PR in the project whose number equals the one found in the task's comments.

    PR numbers are only unique per repository, so the lookup is limited to
    the project's repositories.
    """
    if not work_item.linked_pr_number or work_item.linked_pr_number <= 0:
        return None
    return (
        select(PullRequest)
        .where(
            PullRequest.base_repo_id.in_(project_repo_ids(project_name)),
            PullRequest.pull_request_key == work_item.linked_pr_number,
        )
        .order_by(PullRequest.created_date.asc(), PullRequest.id.asc())
        .limit(1)
    )


PULL_REQUEST_STRATEGIES: tuple[Strategy, ...] = (
    pull_request_by_task_reference,
    pull_request_by_linked_number,
)


def first_commit_query(pull_request_id: str) -> Select:
    """Earliest authored commit of a pull request."""
    return (
        select(PullRequestCommit.commit_authored_date, PullRequestCommit.commit_sha)
        .where(PullRequestCommit.pull_request_id == pull_request_id)
        .order_by(PullRequestCommit.commit_authored_date.asc())
        .limit(1)
    )


# =============================================================================
# Deployment strategies
# =============================================================================


def _deployments_shipping(merge_commit_sha: str, environment: str | None = None) -> Select:
    """Successful deployments whose diff range contains the merge commit.

    A deployment commit ships every commit in ``commits_diffs`` between it
    and the previous successful deployment commit, which covers squash
    merges and batched releases as well as the exact HEAD commit.
    """
    dc = aliased(CicdDeploymentCommit, name="dc")
    prev = aliased(CicdDeploymentCommit, name="p")

    query = (
        select(dc.cicd_deployment_id.label("deployment_id"), CicdDeployment.finished_date)
        .select_from(dc)
        .outerjoin(prev, dc.prev_success_deployment_commit_id == prev.id)
        .join(
            CommitsDiff,
            and_(
                CommitsDiff.new_commit_sha == dc.commit_sha,
                CommitsDiff.old_commit_sha == func.coalesce(prev.commit_sha, ""),
            ),
        )
        .join(CicdDeployment, CicdDeployment.id == dc.cicd_deployment_id)
        .where(
            dc.prev_success_deployment_commit_id != "",
            CommitsDiff.commit_sha == merge_commit_sha,
            CicdDeployment.result == SUCCESS,
            CicdDeployment.finished_date.is_not(None),
        )
        .order_by(CicdDeployment.finished_date.asc())
        .limit(1)
    )
    if environment is not None:
        query = query.where(dc.environment == environment)
    return query


def deployment_in_production(merge_commit_sha: str) -> Select | None:
    return _deployments_shipping(merge_commit_sha, environment=PRODUCTION)


def deployment_in_any_environment(merge_commit_sha: str) -> Select | None:
    return _deployments_shipping(merge_commit_sha)


DEPLOYMENT_STRATEGIES: tuple[Strategy, ...] = (
    deployment_in_production,
    deployment_in_any_environment,
)


# =============================================================================
# Resolver
# =============================================================================


async def first_match(
    session: AsyncSession,
    strategies: Sequence[Strategy],
    *subject: Any,
) -> tuple[str, Row] | None:
    """Run strategies in order, returning the first row found and its strategy name.

    Every strategy is called with the same positional ``subject`` arguments.
    """
    for strategy in strategies:
        query = strategy(*subject)
        if query is None:
            continue
        row = (await session.execute(query)).first()
        if row is not None:
            return strategy.__name__, row
    return None


class CorrelationResolver:
    """Resolves the pull request, first commit and deployment for work items."""

    def __init__(
        self,
        session: AsyncSession,
        project_name: str,
        pull_request_strategies: Sequence[Strategy] = PULL_REQUEST_STRATEGIES,
        deployment_strategies: Sequence[Strategy] = DEPLOYMENT_STRATEGIES,
    ):
        self.session = session
        self.project_name = project_name
        self.pull_request_strategies = pull_request_strategies
        self.deployment_strategies = deployment_strategies

    async def resolve_pull_request(self, work_item: WorkItem) -> ResolvedPullRequest | None:
        match = await first_match(
            self.session, self.pull_request_strategies, work_item, self.project_name
        )
        if match is None:
            return None

        strategy_name, row = match
        pr: PullRequest = row[0]
        return ResolvedPullRequest(
            id=pr.id,
            key=pr.pull_request_key,
            created_date=pr.created_date,
            merged_date=pr.merged_date,
            merge_commit_sha=pr.merge_commit_sha,
            matched_by=strategy_name,
        )

    async def resolve_first_commit_at(self, pull_request_id: str):
        row = (await self.session.execute(first_commit_query(pull_request_id))).first()
        return row.commit_authored_date if row is not None else None

    async def resolve_deployment(self, merge_commit_sha: str | None) -> ResolvedDeployment | None:
        if not merge_commit_sha:
            return None

        match = await first_match(self.session, self.deployment_strategies, merge_commit_sha)
        if match is None:
            return None

        strategy_name, row = match
        return ResolvedDeployment(
            deployment_id=row.deployment_id,
            finished_date=row.finished_date,
            matched_by=strategy_name,
        )

    async def resolve(self, work_item: WorkItem) -> Correlation | None:
        """Resolve everything known about a work item.

        Returns None when no pull request can be linked yet.
        """
        task_id = work_item.id

        pull_request = await self.resolve_pull_request(work_item)
        if pull_request is None:
            logger.debug(
                f"PR not found for task {task_id} (pr_number: {work_item.linked_pr_number})"
            )
            return None

        first_commit_at = await self.resolve_first_commit_at(pull_request.id)

        deployment = None
        if pull_request.merge_commit_sha:
            deployment = await self.resolve_deployment(pull_request.merge_commit_sha)
            if deployment is not None:
                logger.info(
                    f"Found deployment for task {task_id}: {deployment.deployment_id} "
                    f"(finished: {deployment.finished_date}, via {deployment.matched_by})"
                )
            else:
                logger.debug(
                    f"No deployment found for task {task_id} "
                    f"(merge_commit_sha: {pull_request.merge_commit_sha})"
                )
        else:
            logger.debug(
                f"No merge_commit_sha for PR #{pull_request.key} (task {task_id}), "
                "cannot find deployment"
            )

        return Correlation(
            task_id=task_id,
            connection_id=work_item.connection_id,
            task_created_at=work_item.created_at,
            pull_request=pull_request,
            first_commit_at=first_commit_at,
            deployment=deployment,
        )
