"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Reporting queries over approval instances: per-tenant
    statistics, work queues per assignee and the daily SLA report.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/ value types.  MUST NOT import from services/.

Invariants enforced:
    - Read-only.
    - Every query is tenant-scoped.
    - Rates are None when their denominator is zero, never a division error.

Failure modes:
    - Returns zero counts and empty lists when the tenant has no data.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.instance import (
    OPEN_STATUSES,
    ApprovalInstance,
    ApprovalStatus,
    SlaStatus,
)
from approval_kernel.domain.workflow import ApprovalLevel
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.selectors.base import BaseSelector

_OPEN_VALUES = tuple(s.value for s in OPEN_STATUSES)
_DECIDED_VALUES = (ApprovalStatus.APPROVED.value, ApprovalStatus.REJECTED.value)


def _rate(numerator: int, denominator: int) -> float | None:
    if denominator == 0:
        return None
    return numerator / denominator


@dataclass(frozen=True)
class LevelStats:
    level: ApprovalLevel
    total: int
    open: int
    approved: int
    rejected: int
    escalated: int


@dataclass(frozen=True)
class ApprovalStatistics:
    """Aggregate view of one tenant's approvals."""

    tenant_id: UUID
    total: int
    by_status: dict[ApprovalStatus, int]
    by_sla_status: dict[SlaStatus, int]
    average_response_minutes: float | None
    approval_rate: float | None
    sla_compliance_rate: float | None
    by_level: tuple[LevelStats, ...] = field(default_factory=tuple)

    @property
    def open_count(self) -> int:
        return sum(self.by_status.get(s, 0) for s in OPEN_STATUSES)


@dataclass(frozen=True)
class DailySlaReport:
    """Resolutions of one UTC day plus the currently overdue backlog."""

    tenant_id: UUID
    day: date
    resolved: int
    resolved_on_time: int
    resolved_breached: int
    currently_overdue: int
    average_response_minutes: float | None

    @property
    def compliance_rate(self) -> float | None:
        return _rate(self.resolved_on_time, self.resolved)


class ApprovalSelector(BaseSelector):
    """
    Read-side queries for approvals.

    Contract:
        Counts are computed in the database; the approval and SLA compliance
        rates consider decided instances (approved or rejected) only.

    Non-goals:
        - Does NOT cache; every call reflects the caller's transaction.
    """

    def statistics(self, tenant_id: UUID) -> ApprovalStatistics:
        m = ApprovalInstanceModel
        tenant = m.tenant_id == tenant_id

        by_status = {
            ApprovalStatus(status): count
            for status, count in self.session.execute(
                select(m.status, func.count()).where(tenant).group_by(m.status)
            )
        }
        by_sla_status = {
            SlaStatus(status): count
            for status, count in self.session.execute(
                select(m.sla_status, func.count()).where(tenant).group_by(m.sla_status)
            )
        }

        average_response = self.session.execute(
            select(func.avg(m.response_time_minutes)).where(
                tenant, m.response_time_minutes.is_not(None)
            )
        ).scalar_one_or_none()

        decided, decided_on_time = self.session.execute(
            select(
                func.count(),
                func.count().filter(m.is_overdue.is_(False)),
            ).where(tenant, m.status.in_(_DECIDED_VALUES))
        ).one()

        approved = by_status.get(ApprovalStatus.APPROVED, 0)

        return ApprovalStatistics(
            tenant_id=tenant_id,
            total=sum(by_status.values()),
            by_status=by_status,
            by_sla_status=by_sla_status,
            average_response_minutes=(
                float(average_response) if average_response is not None else None
            ),
            approval_rate=_rate(approved, decided),
            sla_compliance_rate=_rate(decided_on_time, decided),
            by_level=self._by_level(tenant_id),
        )

    def _by_level(self, tenant_id: UUID) -> tuple[LevelStats, ...]:
        m = ApprovalInstanceModel
        counts: dict[int, dict[str, int]] = {}
        for level, status, count in self.session.execute(
            select(m.level, m.status, func.count())
            .where(m.tenant_id == tenant_id)
            .group_by(m.level, m.status)
        ):
            counts.setdefault(level, {})[status] = count

        rows = []
        for level in sorted(counts):
            per_status = counts[level]
            rows.append(LevelStats(
                level=ApprovalLevel(level),
                total=sum(per_status.values()),
                open=sum(per_status.get(s, 0) for s in _OPEN_VALUES),
                approved=per_status.get(ApprovalStatus.APPROVED.value, 0),
                rejected=per_status.get(ApprovalStatus.REJECTED.value, 0),
                escalated=per_status.get(ApprovalStatus.ESCALATED.value, 0),
            ))
        return tuple(rows)

    def open_for_assignee(
        self, tenant_id: UUID, assignee_id: UUID
    ) -> list[ApprovalInstance]:
        """Open approvals assigned to ``assignee_id``, most urgent first."""
        m = ApprovalInstanceModel
        models = self.session.execute(
            select(m)
            .where(
                m.tenant_id == tenant_id,
                m.assigned_to_id == assignee_id,
                m.status.in_(_OPEN_VALUES),
            )
            .order_by(m.priority, m.due_date)
        ).scalars()
        return [model.to_dto() for model in models]

    def overdue(self, tenant_id: UUID, as_of: datetime) -> list[ApprovalInstance]:
        m = ApprovalInstanceModel
        models = self.session.execute(
            select(m)
            .where(
                m.tenant_id == tenant_id,
                m.status.in_(_OPEN_VALUES),
                m.due_date <= as_of,
            )
            .order_by(m.due_date)
        ).scalars()
        return [model.to_dto() for model in models]

    def daily_sla_report(
        self, tenant_id: UUID, day: date, as_of: datetime
    ) -> DailySlaReport:
        """SLA outcome of approvals resolved on ``day`` (UTC).

        ``currently_overdue`` counts open approvals due at or before ``as_of``.
        """
        m = ApprovalInstanceModel
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)

        resolved, breached, average_response = self.session.execute(
            select(
                func.count(),
                func.count().filter(m.is_overdue.is_(True)),
                func.avg(m.response_time_minutes),
            ).where(
                m.tenant_id == tenant_id,
                m.resolved_at >= start,
                m.resolved_at < end,
            )
        ).one()

        currently_overdue = self.session.execute(
            select(func.count()).where(
                m.tenant_id == tenant_id,
                m.status.in_(_OPEN_VALUES),
                m.due_date <= as_of,
            )
        ).scalar_one()

        return DailySlaReport(
            tenant_id=tenant_id,
            day=day,
            resolved=resolved,
            resolved_on_time=resolved - breached,
            resolved_breached=breached,
            currently_overdue=currently_overdue,
            average_response_minutes=(
                float(average_response) if average_response is not None else None
            ),
        )
