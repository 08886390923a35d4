"""Enrich work items with the branch of their linked pull request."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cycle_metrics.database.models import PullRequest, WorkItem
from cycle_metrics.logging_config import get_logger

logger = get_logger("enrichment")


async def enrich_work_items_with_branch(session: AsyncSession, connection_id: int) -> int:
    """Copy the linked PR's head branch onto each work item of a connection.

    Only items whose comment scan produced a PR URL and number are touched.
    Returns the number of work items updated.
    """
    query = select(WorkItem).where(
        WorkItem.connection_id == connection_id,
        WorkItem.linked_pr_url != "",
        WorkItem.linked_pr_number > 0,
    )
    work_items = list((await session.scalars(query)).all())

    enriched = 0
    for work_item in work_items:
        head_ref = await session.scalar(
            select(PullRequest.head_ref)
            .where(PullRequest.pull_request_key == work_item.linked_pr_number)
            .order_by(PullRequest.created_date.asc())
            .limit(1)
        )
        if not head_ref:
            logger.debug(f"No PR found for task {work_item.id} (PR #{work_item.linked_pr_number})")
            continue

        if work_item.linked_branch != head_ref:
            work_item.linked_branch = head_ref
            enriched += 1
            logger.info(f"Enriched task {work_item.id} with branch: {head_ref}")

    await session.flush()
    logger.info(f"Enriched {enriched} tasks with branch info for connection {connection_id}")
    return enriched
