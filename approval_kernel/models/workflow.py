"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for versioned workflow templates.

Architecture position: Kernel > Models.  May import from db/base.py and the
    domain codec (definitions are stored as JSON).

Invariants enforced:
    - One row per template revision: UNIQUE(tenant_id, code, version) and
      UNIQUE(workflow_id, version).  Edits create a new revision row; a
      revision's definition is never rewritten in place.
    - Lifecycle status and execution statistics are the only columns that
      change after insert.  ``row_version`` guards them against lost updates.

Failure modes:
    - IntegrityError on a duplicate (tenant, code, version).
    - StaleDataError when two transactions update the same row concurrently.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import AuthoredBase, GUID

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import WorkflowTemplate


class WorkflowTemplateModel(AuthoredBase):
    """Persistent workflow template revision.

    ``definition`` holds steps, rules, matrix, routing tree and flags as
    produced by ``approval_kernel.domain.codec.template_to_dict``.
    """

    __tablename__ = "approval_workflow_templates"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'inactive', 'archived')",
            name="ck_approval_workflow_templates_status",
        ),
        UniqueConstraint(
            "tenant_id", "code", "version",
            name="uq_approval_workflow_templates_code_version",
        ),
        UniqueConstraint(
            "workflow_id", "version",
            name="uq_approval_workflow_templates_id_version",
        ),
        Index("ix_approval_workflow_templates_tenant_status", "tenant_id", "status"),
    )

    workflow_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    tenant_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    definition: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    total_executions: Mapped[int] = mapped_column(nullable=False, default=0)
    successful_executions: Mapped[int] = mapped_column(nullable=False, default=0)
    average_completion_time_hours: Mapped[float] = mapped_column(
        nullable=False, default=0.0,
    )
    row_version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return (
            f"<WorkflowTemplate {self.code} v{self.version} "
            f"tenant={self.tenant_id} status={self.status}>"
        )

    def to_dto(self) -> WorkflowTemplate:
        """Convert ORM model to frozen domain template."""
        from approval_kernel.domain.codec import template_from_dict
        from approval_kernel.domain.workflow import WorkflowStats, WorkflowStatus

        template = template_from_dict(self.definition, tenant_id=self.tenant_id)
        return replace(
            template,
            workflow_id=self.workflow_id,
            version=self.version,
            status=WorkflowStatus(self.status),
            stats=WorkflowStats(
                total_executions=self.total_executions,
                successful_executions=self.successful_executions,
                average_completion_time_hours=self.average_completion_time_hours,
            ),
        )

    @classmethod
    def from_dto(cls, dto: WorkflowTemplate, created_by_id: UUID) -> WorkflowTemplateModel:
        """Create ORM model from domain template."""
        from approval_kernel.domain.codec import template_to_dict

        return cls(
            workflow_id=dto.workflow_id,
            tenant_id=dto.tenant_id,
            code=dto.code,
            version=dto.version,
            name=dto.name,
            description=dto.description,
            status=dto.status.value,
            definition=template_to_dict(dto),
            total_executions=dto.stats.total_executions,
            successful_executions=dto.stats.successful_executions,
            average_completion_time_hours=dto.stats.average_completion_time_hours,
            created_by_id=created_by_id,
        )
