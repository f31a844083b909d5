"""
Tests for workflow execution statistics.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.stats import completion_hours, record_execution, success_rate
from approval_kernel.domain.workflow import WorkflowStats


class TestRecordExecution:
    def test_counts(self):
        stats = record_execution(WorkflowStats(), success=True, completion_hours=2.0)
        stats = record_execution(stats, success=False, completion_hours=4.0)
        assert stats.total_executions == 2
        assert stats.successful_executions == 1
        assert stats.average_completion_time_hours == pytest.approx(3.0)

    def test_success_rate(self):
        assert success_rate(WorkflowStats()) == 0.0
        assert success_rate(WorkflowStats(4, 3, 1.0)) == pytest.approx(75.0)

    def test_completion_hours(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert completion_hours(start, start + timedelta(minutes=90)) == pytest.approx(1.5)

    @settings(max_examples=200)
    @given(st.lists(
        st.floats(min_value=0, max_value=10_000, allow_nan=False, allow_infinity=False),
        min_size=1,
        max_size=50,
    ))
    def test_moving_average_equals_mean(self, samples):
        stats = WorkflowStats()
        for hours in samples:
            stats = record_execution(stats, success=True, completion_hours=hours)
        assert stats.total_executions == len(samples)
        assert math.isclose(
            stats.average_completion_time_hours,
            math.fsum(samples) / len(samples),
            rel_tol=1e-9,
            abs_tol=1e-9,
        )
