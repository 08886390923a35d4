"""API response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskDeploymentResponse(BaseModel):
    """Task/deployment relationship record response."""

    model_config = ConfigDict(from_attributes=True)

    task_id: str
    connection_id: int
    deployment_id: str | None
    task_created_at: datetime
    first_commit_at: datetime | None
    pr_created_at: datetime | None
    pr_merged_at: datetime | None
    deployment_at: datetime | None
    planning_time: int | None
    code_time: int | None
    deploy_time: int | None
    total_cycle_time: int | None

    @field_validator("deployment_id", mode="before")
    @classmethod
    def _unresolved_deployment(cls, value: str | None) -> str | None:
        # Stored as "" because the column is part of the primary key
        return value or None


class RunRequest(BaseModel):
    """Request to run the cycle time calculation for a project."""

    project_name: str = Field(min_length=1)


class RunStartedResponse(BaseModel):
    """Response after triggering a calculation run."""

    status: str
    run_id: str | None = None
    project_name: str
    message: str


class RunStatusResponse(BaseModel):
    """Status of the last triggered calculation run."""

    running: bool
    run_id: str | None = None
    project_name: str | None = None
    render_status: str | None = None
    error: str | None = None
