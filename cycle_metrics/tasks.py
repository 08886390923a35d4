"""Render Workflow tasks for business cycle metrics.

Each @task decorated function runs in its own compute instance. The
calculation itself is a single sequential pass; enrichment for several
connections can run before it.
"""

from render_sdk.workflows import task

from cycle_metrics.database.session import dispose_engine, get_async_session
from cycle_metrics.engine import calculate_and_commit
from cycle_metrics.enrichment import enrich_work_items_with_branch
from cycle_metrics.logging_config import configure_logging
from cycle_metrics.models import TaskOptions

configure_logging()

# Upstream pipeline stages that must finish first: DORA produces deployment
# commits, refdiff produces commits_diffs.
RUN_AFTER = ("dora", "refdiff")

REQUIRED_DATA_ENTITIES = (
    {"model": "cicd_deployments", "requiredFields": {"column": "result", "expectedValue": "SUCCESS"}},
    {"model": "pull_requests", "requiredFields": {"column": "merged_date", "expectedValue": "not null"}},
)

PROGRESS_LOG_EVERY = 100


class _ProgressPrinter:
    """Prints a progress line every PROGRESS_LOG_EVERY candidates."""

    def __init__(self, label: str):
        self.label = label
        self.count = 0

    def __call__(self, increment: int) -> None:
        self.count += increment
        if self.count % PROGRESS_LOG_EVERY == 0:
            print(f"[{self.label}] Progress: {self.count} candidates")


# =============================================================================
# Enrichment
# =============================================================================


@task
async def enrich_work_items(connection_id: int) -> int:
    """Copy linked PR branches onto a connection's work items.

    Returns the number of work items enriched.
    """
    print(f"[Enrichment] Enriching work items for connection {connection_id}")

    try:
        async with get_async_session() as session:
            enriched = await enrich_work_items_with_branch(session, connection_id)
            await session.commit()
    finally:
        await dispose_engine()

    print(f"[Enrichment] Enriched {enriched} work items")
    return enriched


# =============================================================================
# Calculation
# =============================================================================


@task
async def calculate_business_cycle_time(project_name: str) -> dict:
    """Correlate a project's work items to deployments and store cycle times.

    Returns the run summary counters.
    """
    options = TaskOptions(project_name=project_name)

    print(f"[Cycle Time] Calculating business cycle time for project: {options.project_name}")

    try:
        async with get_async_session() as session:
            summary = await calculate_and_commit(
                session,
                options,
                on_progress=_ProgressPrinter("Cycle Time"),
            )
    finally:
        await dispose_engine()

    print(
        f"[Cycle Time] {summary.candidates} candidates: {summary.processed} processed, "
        f"{summary.with_deployment} with deployments, {summary.unmatched} unmatched, "
        f"{summary.failed} failed"
    )
    return summary.model_dump(mode="json")


# =============================================================================
# Main Orchestrator Task
# =============================================================================


@task
async def run_business_cycle_pipeline(
    project_name: str,
    connection_ids: list[int] | None = None,
) -> dict:
    """Main orchestrator for the business cycle pipeline.

    1. Enriches work items with PR branch info, one connection at a time
    2. Calculates cycle time relationships for the project

    Args:
        project_name: Project whose repositories scope the candidates
        connection_ids: Tracker connections to enrich first

    Returns:
        Enrichment counts and the calculation summary
    """
    print("=" * 60)
    print("Business Cycle Pipeline")
    print("=" * 60)
    print(f"Project: {project_name}")
    print()

    print("--- Stage 1: Enriching work items ---")
    enriched = {}
    for connection_id in connection_ids or []:
        enriched[str(connection_id)] = await enrich_work_items(connection_id)
    print()

    print("--- Stage 2: Calculating business cycle time ---")
    summary = await calculate_business_cycle_time(project_name)
    print()

    print("=" * 60)
    print("Pipeline Complete")
    print("=" * 60)

    return {"enriched": enriched, "summary": summary}
