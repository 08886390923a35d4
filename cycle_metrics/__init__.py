"""Business Cycle Metrics - work item to deployment cycle time using Render Workflows."""

from cycle_metrics.cycle_time import calculate_cycle_time
from cycle_metrics.engine import calculate_business_cycle_time
from cycle_metrics.models import CycleTimeMetrics, RunSummary, TaskOptions

__all__ = [
    "CycleTimeMetrics",
    "RunSummary",
    "TaskOptions",
    "calculate_business_cycle_time",
    "calculate_cycle_time",
]
__version__ = "1.0.0"
