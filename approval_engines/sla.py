"""
approval_engines.sla -- SLA status computation.

Responsibility:
    Classify an approval deadline as on time, at risk or breached.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is always an
    argument; the SLA monitor supplies it from the injected clock.

Invariants enforced:
    - The status is a pure function of ``(now, due_date, at_risk_window)``.
    - remaining <= 0        -> BREACHED
      remaining <= window   -> AT_RISK
      otherwise             -> ON_TIME
"""

from __future__ import annotations

from datetime import datetime, timedelta

from approval_kernel.domain.instance import SlaStatus

DEFAULT_AT_RISK_WINDOW = timedelta(hours=4)


def remaining(now: datetime, due_date: datetime) -> timedelta:
    return due_date - now


def compute_sla_status(
    now: datetime,
    due_date: datetime,
    at_risk_window: timedelta = DEFAULT_AT_RISK_WINDOW,
) -> SlaStatus:
    left = remaining(now, due_date)
    if left <= timedelta(0):
        return SlaStatus.BREACHED
    if left <= at_risk_window:
        return SlaStatus.AT_RISK
    return SlaStatus.ON_TIME
