"""
Tests for SLA status computation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from approval_engines.sla import DEFAULT_AT_RISK_WINDOW, compute_sla_status, remaining
from approval_kernel.domain.instance import SlaStatus

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
DUE = T0 + timedelta(hours=24)


class TestComputeSlaStatus:
    @pytest.mark.parametrize("elapsed, expected", [
        (timedelta(hours=0), SlaStatus.ON_TIME),
        (timedelta(hours=19, minutes=59), SlaStatus.ON_TIME),
        (timedelta(hours=21), SlaStatus.AT_RISK),
        (timedelta(hours=25), SlaStatus.BREACHED),
    ])
    def test_24_hour_sla(self, elapsed, expected):
        assert compute_sla_status(T0 + elapsed, DUE) == expected

    def test_boundaries(self):
        assert compute_sla_status(DUE - DEFAULT_AT_RISK_WINDOW, DUE) == SlaStatus.AT_RISK
        assert compute_sla_status(DUE - timedelta(microseconds=1), DUE) == SlaStatus.AT_RISK
        assert compute_sla_status(DUE, DUE) == SlaStatus.BREACHED

    def test_custom_window(self):
        now = DUE - timedelta(hours=6)
        assert compute_sla_status(now, DUE) == SlaStatus.ON_TIME
        assert compute_sla_status(now, DUE, timedelta(hours=8)) == SlaStatus.AT_RISK

    def test_pure_function_of_inputs(self):
        now = T0 + timedelta(hours=22)
        assert compute_sla_status(now, DUE) == compute_sla_status(now, DUE)

    def test_remaining(self):
        assert remaining(T0, DUE) == timedelta(hours=24)
        assert remaining(DUE + timedelta(hours=1), DUE) == timedelta(hours=-1)
