"""
InstanceStore -- entity store for approval instances.

Responsibility:
    Create, read and version-checked update of ``ApprovalInstance``
    aggregates, plus the status queries the services and the SLA monitor
    need.  Translates between the frozen domain aggregate and the ORM rows.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Every update is a check-and-set on ``version``: the caller states the
      version it read, the row must still carry it, and the flushed UPDATE
      is guarded by ``WHERE version = <read version>``.  Losing either check
      raises ``OptimisticLockError``; no update is ever applied twice.
    - Tenant isolation: tenant-scoped queries always filter by tenant_id.

Failure modes:
    - ApprovalNotFoundError if the instance does not exist.
    - OptimisticLockError on a lost version race.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.instance import (
    OPEN_STATUSES,
    ApprovalInstance,
    ApprovalStatus,
)
from approval_kernel.exceptions import ApprovalNotFoundError, OptimisticLockError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.instance_store")

_OPEN_VALUES = tuple(s.value for s in OPEN_STATUSES)


class InstanceStore(BaseService):
    """Persistence boundary for approval instances."""

    def add(self, instance: ApprovalInstance) -> ApprovalInstance:
        model = ApprovalInstanceModel.from_dto(instance)
        self.session.add(model)
        self.session.flush()
        logger.debug("approval_instance_inserted", extra={
            "instance_id": str(instance.instance_id),
            "version": instance.version,
        })
        return instance

    def _load_model(
        self,
        instance_id: UUID,
        *,
        fresh: bool = False,
        for_update: bool = False,
    ) -> ApprovalInstanceModel:
        stmt = select(ApprovalInstanceModel).where(
            ApprovalInstanceModel.instance_id == instance_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(instance_id))
        return model

    def get(
        self,
        instance_id: UUID,
        *,
        fresh: bool = False,
        for_update: bool = False,
    ) -> ApprovalInstance:
        """Load an instance.

        ``fresh`` bypasses the session identity map and re-reads the row.
        ``for_update`` takes a row lock where the database supports one.
        """
        return self._load_model(
            instance_id, fresh=fresh, for_update=for_update
        ).to_dto()

    def update(self, instance: ApprovalInstance, expected_version: int) -> ApprovalInstance:
        """Persist ``instance`` if the stored row is still at ``expected_version``."""
        model = self._load_model(instance.instance_id)
        if model.version != expected_version:
            logger.warning("approval_version_conflict", extra={
                "instance_id": str(instance.instance_id),
                "expected_version": expected_version,
                "stored_version": model.version,
            })
            raise OptimisticLockError(
                "ApprovalInstance", str(instance.instance_id), expected_version
            )
        model.apply_dto(instance)
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning("approval_version_conflict", extra={
                "instance_id": str(instance.instance_id),
                "expected_version": expected_version,
            })
            raise OptimisticLockError(
                "ApprovalInstance", str(instance.instance_id), expected_version
            ) from exc
        return instance

    def find_open_for_validation(self, validation_id: UUID) -> ApprovalInstance | None:
        model = self.session.execute(
            select(ApprovalInstanceModel).where(
                ApprovalInstanceModel.validation_id == validation_id,
                ApprovalInstanceModel.status.in_(_OPEN_VALUES),
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_by_tenant_status(
        self,
        tenant_id: UUID,
        statuses: Iterable[ApprovalStatus] | None = None,
    ) -> list[ApprovalInstance]:
        stmt = select(ApprovalInstanceModel).where(
            ApprovalInstanceModel.tenant_id == tenant_id
        )
        if statuses is not None:
            stmt = stmt.where(
                ApprovalInstanceModel.status.in_([s.value for s in statuses])
            )
        stmt = stmt.order_by(
            ApprovalInstanceModel.priority, ApprovalInstanceModel.due_date
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def open_instance_ids(self) -> list[UUID]:
        """Ids of every open instance across all tenants, earliest due first."""
        stmt = (
            select(ApprovalInstanceModel.instance_id)
            .where(ApprovalInstanceModel.status.in_(_OPEN_VALUES))
            .order_by(ApprovalInstanceModel.due_date)
        )
        return list(self.session.execute(stmt).scalars())

    def chain_root(self, instance: ApprovalInstance) -> ApprovalInstance:
        """First instance of the escalation chain ``instance`` belongs to."""
        current = instance
        while current.escalated_from_id is not None:
            current = self.get(current.escalated_from_id)
        return current
