"""Cycle time calculation."""

from collections.abc import Iterable
from datetime import datetime, timedelta
from statistics import median

from cycle_metrics.database.models import TaskDeployment
from cycle_metrics.models import CycleTimeMetrics, CycleTimeSummary, MetricStatistics

METRIC_FIELDS = ("planning_time", "code_time", "deploy_time", "total_cycle_time")


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, truncated toward zero."""
    return int((end - start) / timedelta(minutes=1))


def calculate_cycle_time(
    task_created_at: datetime,
    first_commit_at: datetime | None = None,
    pr_merged_at: datetime | None = None,
    deployment_at: datetime | None = None,
) -> CycleTimeMetrics:
    """Calculate the four cycle time metrics from the resolved timestamps."""
    metrics = CycleTimeMetrics()

    if first_commit_at is not None:
        metrics.planning_time = minutes_between(task_created_at, first_commit_at)

    if first_commit_at is not None and pr_merged_at is not None:
        metrics.code_time = minutes_between(first_commit_at, pr_merged_at)

    if pr_merged_at is not None and deployment_at is not None:
        metrics.deploy_time = minutes_between(pr_merged_at, deployment_at)

    if deployment_at is not None:
        metrics.total_cycle_time = minutes_between(task_created_at, deployment_at)

    return metrics


def _statistics(values: list[int]) -> MetricStatistics:
    if not values:
        return MetricStatistics(count=0)

    sorted_values = sorted(values)
    med = median(sorted_values)
    p90_idx = int(len(sorted_values) * 0.9)
    p90 = sorted_values[p90_idx] if p90_idx < len(sorted_values) else med

    return MetricStatistics(
        count=len(values),
        average_minutes=sum(values) / len(values),
        median_minutes=med,
        p90_minutes=p90,
    )


def summarize_cycle_times(records: Iterable[TaskDeployment]) -> CycleTimeSummary:
    """Aggregate stored records into per-metric statistics.

    Null metrics are skipped, so each metric is summarised over the records
    that actually reached that stage.
    """
    records = list(records)
    values: dict[str, list[int]] = {name: [] for name in METRIC_FIELDS}

    for record in records:
        for name in METRIC_FIELDS:
            value = getattr(record, name)
            if value is not None:
                values[name].append(value)

    return CycleTimeSummary(
        records=len(records),
        with_deployment=len([r for r in records if r.deployment_id]),
        **{name: _statistics(values[name]) for name in METRIC_FIELDS},
    )
