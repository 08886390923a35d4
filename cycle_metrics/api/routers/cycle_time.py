"""Cycle time API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cycle_metrics.api.schemas import TaskDeploymentResponse
from cycle_metrics.cycle_time import summarize_cycle_times
from cycle_metrics.database.repository import CorrelationRepository
from cycle_metrics.database.session import get_session_dependency
from cycle_metrics.models import CycleTimeSummary

router = APIRouter()


@router.get("/tasks", response_model=list[TaskDeploymentResponse])
async def list_task_deployments(
    connection_id: int | None = Query(None, description="Filter by tracker connection"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum records to return"),
    session: AsyncSession = Depends(get_session_dependency),
) -> list[TaskDeploymentResponse]:
    """List task/deployment relationship records."""
    repo = CorrelationRepository(session)
    records = await repo.list_records(connection_id=connection_id, limit=limit)
    return [TaskDeploymentResponse.model_validate(r) for r in records]


@router.get("/tasks/{connection_id}/{task_id}", response_model=TaskDeploymentResponse)
async def get_task_deployment(
    connection_id: int,
    task_id: str,
    session: AsyncSession = Depends(get_session_dependency),
) -> TaskDeploymentResponse:
    """Get the relationship record for one task."""
    repo = CorrelationRepository(session)
    record = await repo.get_for_task(connection_id, task_id)

    if not record:
        raise HTTPException(
            status_code=404,
            detail=f"No cycle time record for task {task_id} on connection {connection_id}",
        )

    return TaskDeploymentResponse.model_validate(record)


@router.get("/summary", response_model=CycleTimeSummary)
async def get_cycle_time_summary(
    connection_id: int | None = Query(None, description="Filter by tracker connection"),
    session: AsyncSession = Depends(get_session_dependency),
) -> CycleTimeSummary:
    """Average, median and p90 of each cycle time metric, in minutes."""
    repo = CorrelationRepository(session)
    records = await repo.list_records(connection_id=connection_id)
    return summarize_cycle_times(records)
