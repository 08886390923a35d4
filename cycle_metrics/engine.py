"""Business cycle time calculation.

Walks the project's candidate work items once, in order, over a server-side
cursor. Each candidate is resolved, measured and written inside its own
SAVEPOINT so a storage failure only loses that candidate.
"""

import asyncio
import os
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cycle_metrics.cycle_time import calculate_cycle_time
from cycle_metrics.database.models import WorkItem
from cycle_metrics.database.repository import CorrelationRepository, WorkItemRepository
from cycle_metrics.logging_config import get_logger
from cycle_metrics.models import CandidateOutcome, Correlation, RunSummary, TaskOptions
from cycle_metrics.resolver import CorrelationResolver

logger = get_logger("engine")

DEFAULT_BATCH_SIZE = 100


def get_candidate_batch_size() -> int:
    """Rows fetched per round trip from the candidate cursor."""
    return int(os.environ.get("CANDIDATE_BATCH_SIZE", DEFAULT_BATCH_SIZE))


def build_record(correlation: Correlation) -> dict:
    """Build the task_deployments row for a resolved correlation."""
    pull_request = correlation.pull_request
    deployment = correlation.deployment
    deployment_at = deployment.finished_date if deployment else None

    metrics = calculate_cycle_time(
        task_created_at=correlation.task_created_at,
        first_commit_at=correlation.first_commit_at,
        pr_merged_at=pull_request.merged_date,
        deployment_at=deployment_at,
    )

    return {
        "task_id": correlation.task_id,
        "deployment_id": deployment.deployment_id if deployment else "",
        "connection_id": correlation.connection_id,
        "task_created_at": correlation.task_created_at,
        "first_commit_at": correlation.first_commit_at,
        "pr_created_at": pull_request.created_date,
        "pr_merged_at": pull_request.merged_date,
        "deployment_at": deployment_at,
        **metrics.model_dump(),
    }


async def process_candidate(
    session: AsyncSession,
    resolver: CorrelationResolver,
    repository: CorrelationRepository,
    work_item: WorkItem,
) -> CandidateOutcome:
    """Resolve, measure and upsert a single work item."""
    # Captured up front: attributes may be expired after a savepoint rollback
    task_id, connection_id = work_item.id, work_item.connection_id

    try:
        async with session.begin_nested():
            correlation = await resolver.resolve(work_item)
            if correlation is None:
                return CandidateOutcome.UNMATCHED

            await repository.upsert(build_record(correlation))
    except SQLAlchemyError as e:
        logger.warning(
            f"Failed to process task {task_id}: {e}",
            exc_info=True,
            extra={
                "extra": {
                    "task_id": task_id,
                    "connection_id": connection_id,
                    "error_type": type(e).__name__,
                }
            },
        )
        return CandidateOutcome.FAILED

    if correlation.deployment is not None:
        return CandidateOutcome.DEPLOYED
    return CandidateOutcome.RESOLVED


async def calculate_business_cycle_time(
    session: AsyncSession,
    options: TaskOptions,
    *,
    on_progress: Callable[[int], None] | None = None,
    cancel_event: asyncio.Event | None = None,
    batch_size: int | None = None,
) -> RunSummary:
    """Calculate cycle time relationships for every candidate in a project.

    The caller owns the transaction and should commit once this returns.
    Errors opening or reading the candidate cursor propagate; errors while
    handling a single candidate are logged and counted as failed.

    Args:
        session: Session used for both the cursor and the writes
        options: Validated task options
        on_progress: Called with 1 after each candidate is consumed
        cancel_event: When set, no further candidates are started
        batch_size: Cursor fetch size; defaults to CANDIDATE_BATCH_SIZE

    Returns:
        Counters for the run
    """
    project_name = options.project_name
    logger.info(f"Starting business cycle time calculation for project: {project_name}")

    resolver = CorrelationResolver(session, project_name)
    repository = CorrelationRepository(session)
    candidates = await WorkItemRepository(session).stream_candidates(
        project_name,
        batch_size=batch_size or get_candidate_batch_size(),
    )

    summary = RunSummary(project_name=project_name)
    try:
        async for work_item in candidates:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    f"Cancelled after {summary.candidates} candidates for project: {project_name}"
                )
                summary = summary.model_copy(update={"cancelled": True})
                break

            outcome = await process_candidate(session, resolver, repository, work_item)
            summary = summary.record(outcome)

            if on_progress is not None:
                on_progress(1)
    finally:
        await candidates.close()

    logger.info(
        f"Business cycle calculation complete: {summary.processed} tasks processed, "
        f"{summary.with_deployment} with deployments",
        extra={"extra": summary.model_dump()},
    )
    return summary


async def calculate_and_commit(
    session: AsyncSession,
    options: TaskOptions,
    *,
    on_progress: Callable[[int], None] | None = None,
    batch_size: int | None = None,
) -> RunSummary:
    """Run the calculation and commit, keeping completed work on cancellation.

    The engine runs in its own task. When the caller is cancelled, the
    candidate in flight is finished, no further candidate is started, the
    records written so far are committed, and CancelledError is re-raised.
    """
    cancel_event = asyncio.Event()
    run = asyncio.ensure_future(
        calculate_business_cycle_time(
            session,
            options,
            on_progress=on_progress,
            cancel_event=cancel_event,
            batch_size=batch_size,
        )
    )

    try:
        summary = await asyncio.shield(run)
    except asyncio.CancelledError:
        cancel_event.set()
        summary = await run
        await session.commit()
        logger.warning(
            f"Run cancelled; committed {summary.processed} records for project: "
            f"{options.project_name}",
            extra={"extra": summary.model_dump()},
        )
        raise

    await session.commit()
    return summary
