"""Data models for business cycle metrics."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class TaskOptions(BaseModel):
    """Options for a business cycle calculation run."""

    project_name: str = Field(min_length=1)

    @field_validator("project_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("project_name must not be blank")
        return value


class ResolvedPullRequest(BaseModel):
    """Pull request matched to a work item."""

    id: str
    key: int
    created_date: datetime
    merged_date: datetime | None = None
    merge_commit_sha: str | None = None
    matched_by: str  # name of the strategy that found it


class ResolvedDeployment(BaseModel):
    """Successful deployment whose shipped range contains the merge commit."""

    deployment_id: str
    finished_date: datetime
    matched_by: str


class Correlation(BaseModel):
    """Everything resolved for a single work item."""

    task_id: str
    connection_id: int
    task_created_at: datetime
    pull_request: ResolvedPullRequest
    first_commit_at: datetime | None = None
    deployment: ResolvedDeployment | None = None


class CycleTimeMetrics(BaseModel):
    """Cycle time durations in whole minutes.

    Each field is independently optional. Negative values are kept as-is;
    they indicate clock skew or out-of-order upstream data.
    """

    planning_time: int | None = None  # task created -> first commit
    code_time: int | None = None  # first commit -> PR merged
    deploy_time: int | None = None  # PR merged -> deployment
    total_cycle_time: int | None = None  # task created -> deployment


class MetricStatistics(BaseModel):
    """Aggregate statistics for one cycle time metric (minutes)."""

    count: int
    average_minutes: float | None = None
    median_minutes: float | None = None
    p90_minutes: float | None = None


class CycleTimeSummary(BaseModel):
    """Aggregate statistics across correlation records."""

    records: int
    with_deployment: int
    planning_time: MetricStatistics
    code_time: MetricStatistics
    deploy_time: MetricStatistics
    total_cycle_time: MetricStatistics


class CandidateOutcome(str, Enum):
    """What happened to one candidate during a run."""

    UNMATCHED = "unmatched"  # no pull request could be resolved
    RESOLVED = "resolved"  # record written, no deployment yet
    DEPLOYED = "deployed"  # record written with a deployment
    FAILED = "failed"  # storage error; skipped


class RunSummary(BaseModel):
    """Counters for one engine run.

    Immutable; ``record`` returns an updated copy so the accumulator can be
    threaded through the candidate loop.
    """

    model_config = {"frozen": True}

    project_name: str
    candidates: int = 0
    processed: int = 0
    with_deployment: int = 0
    unmatched: int = 0
    failed: int = 0
    cancelled: bool = False

    def record(self, outcome: CandidateOutcome) -> "RunSummary":
        update = {"candidates": self.candidates + 1}
        if outcome in (CandidateOutcome.RESOLVED, CandidateOutcome.DEPLOYED):
            update["processed"] = self.processed + 1
        if outcome is CandidateOutcome.DEPLOYED:
            update["with_deployment"] = self.with_deployment + 1
        elif outcome is CandidateOutcome.UNMATCHED:
            update["unmatched"] = self.unmatched + 1
        elif outcome is CandidateOutcome.FAILED:
            update["failed"] = self.failed + 1
        return self.model_copy(update=update)
