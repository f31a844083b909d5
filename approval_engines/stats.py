"""
approval_engines.stats -- Workflow execution statistics.

Responsibility:
    Fold one finished workflow run into a template's statistics.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``average_completion_time_hours`` is the arithmetic mean of every
      recorded completion time (incremental moving average).
    - ``success_rate`` is 0 when nothing has been recorded.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from approval_kernel.domain.instance import ApprovalInstance, ApprovalStatus
from approval_kernel.domain.workflow import WorkflowStats


def record_execution(
    stats: WorkflowStats, success: bool, completion_hours: float
) -> WorkflowStats:
    """Return ``stats`` with one more execution folded in.

    avg' = (avg * (n - 1) + x) / n
    """
    total = stats.total_executions + 1
    average = (
        stats.average_completion_time_hours * (total - 1) + completion_hours
    ) / total
    return replace(
        stats,
        total_executions=total,
        successful_executions=stats.successful_executions + (1 if success else 0),
        average_completion_time_hours=average,
    )


def success_rate(stats: WorkflowStats) -> float:
    """Percentage of successful executions, 0..100."""
    if stats.total_executions == 0:
        return 0.0
    return stats.successful_executions / stats.total_executions * 100


def completion_hours(started_at: datetime, finished_at: datetime) -> float:
    return (finished_at - started_at).total_seconds() / 3600


def outcome_of(instance: ApprovalInstance) -> bool | None:
    """Success flag of a finished run, ``None`` while it is still running.

    Approved counts as success.  A final rejection or a cancellation counts
    as failure.  An escalated instance is not a run outcome: its successor
    carries the run on.
    """
    if instance.status == ApprovalStatus.APPROVED:
        return True
    if instance.status in (ApprovalStatus.REJECTED, ApprovalStatus.CANCELLED):
        return False
    return None
