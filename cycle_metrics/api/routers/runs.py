"""Run API endpoints.

Triggers the cycle time calculation as a Render Workflow task.
"""

from datetime import datetime

from fastapi import APIRouter, HTTPException

from cycle_metrics.api.schemas import RunRequest, RunStartedResponse, RunStatusResponse
from cycle_metrics.logging_config import get_logger
from cycle_metrics.render_api import CALCULATE_TASK, RenderAPIError, create_render_client

router = APIRouter()
logger = get_logger("api.runs")

# Track the last triggered run
_current_run: dict | None = None


@router.post("/start", response_model=RunStartedResponse)
async def start_run(request: RunRequest) -> RunStartedResponse:
    """Start a cycle time calculation for a project.

    The workflow runs asynchronously. Use /status to monitor it.
    """
    global _current_run

    client = create_render_client()
    if not client:
        logger.warning(
            "Run unavailable: Render API not configured",
            extra={
                "extra": {
                    "endpoint": "/api/v1/runs/start",
                    "error_type": "configuration_error",
                    "missing_config": ["RENDER_API_KEY", "RENDER_WORKFLOW_SLUG"],
                }
            },
        )
        raise HTTPException(
            status_code=503,
            detail="Runs not available: RENDER_API_KEY or RENDER_WORKFLOW_SLUG not configured.",
        )

    try:
        result = await client.run_task(task_name=CALCULATE_TASK, arguments=[request.project_name])
    except RenderAPIError as e:
        logger.error(
            f"Failed to trigger cycle time workflow: {e}",
            exc_info=True,
            extra={
                "extra": {
                    "endpoint": "/api/v1/runs/start",
                    "error_type": "render_api_error",
                    "project_name": request.project_name,
                }
            },
        )
        raise HTTPException(status_code=502, detail=f"Failed to trigger workflow: {e}")

    run_id = result.get("run_id")
    _current_run = {
        "run_id": run_id,
        "project_name": request.project_name,
        "started_at": datetime.utcnow().isoformat(),
    }

    logger.info(
        f"Cycle time workflow started: {run_id}",
        extra={"extra": {"run_id": run_id, "project_name": request.project_name}},
    )

    return RunStartedResponse(
        status="started",
        run_id=run_id,
        project_name=request.project_name,
        message=f"Cycle time calculation started for project {request.project_name}",
    )


@router.get("/status", response_model=RunStatusResponse)
async def get_run_status() -> RunStatusResponse:
    """Get the status of the last triggered run from the Render API."""
    global _current_run

    if not _current_run:
        return RunStatusResponse(running=False)

    client = create_render_client()
    if not client:
        return RunStatusResponse(running=False, error="Render API not configured")

    run_info = _current_run
    try:
        run_status = await client.get_task_run(run_info["run_id"])
    except RenderAPIError as e:
        return RunStatusResponse(
            running=True,
            run_id=run_info["run_id"],
            project_name=run_info["project_name"],
            error=str(e),
        )

    status = run_status.get("status", "unknown")
    running = status in ("pending", "running")
    if not running:
        # Finished, failed or cancelled; stop tracking it
        _current_run = None

    return RunStatusResponse(
        running=running,
        run_id=run_info["run_id"],
        project_name=run_info["project_name"],
        render_status=status,
        error=None if running or status == "succeeded" else f"Workflow {status}",
    )
