"""
Module: approval_kernel.models.instance
Responsibility: ORM persistence for approval instances, their history and
    their comments.

Architecture position: Kernel > Models.  May import from db/base.py, the
    exception hierarchy and the domain codec.

Invariants enforced:
    - Optimistic concurrency: ``version`` is the mapper's version_id_col.  The
      application supplies the value (it is the domain aggregate's version);
      every UPDATE is ``... WHERE version = <loaded version>``.
    - Terminal statuses are final: an UPDATE that moves a row out of
      approved / rejected / escalated / cancelled is blocked.
    - At most one open instance per validation (partial unique index).
    - History entries and comments are append-only: no UPDATE, no DELETE.
    - Instances are never deleted.

Failure modes:
    - StaleDataError on a lost version race (translated by the service layer).
    - ImmutabilityViolationError on history/comment UPDATE or DELETE, on a
      terminal-status change, or on instance DELETE.
    - IntegrityError on a second open instance for the same validation.

Audit relevance:
    History rows are the approval audit trail.  Each one records the action,
    actor, time and the status change it caused.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, GUID
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from approval_kernel.domain.instance import (
        ApprovalComment,
        ApprovalHistoryEntry,
        ApprovalInstance,
    )

logger = get_logger("models.instance")

_TERMINAL_STATUS_VALUES = frozenset({"approved", "rejected", "escalated", "cancelled"})
_OPEN_STATUS_SQL = "status IN ('pending', 'in_review', 'more_info_required')"


class ApprovalInstanceModel(Base):
    """Persistent approval instance.

    Contract:
        Rows are written only through ``from_dto`` / ``apply_dto``; the
        domain aggregate is the source of truth for every field.
    """

    __tablename__ = "approval_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_review', 'approved', 'rejected', "
            "'more_info_required', 'escalated', 'cancelled')",
            name="ck_approval_instances_status",
        ),
        CheckConstraint(
            "sla_status IN ('on_time', 'at_risk', 'breached')",
            name="ck_approval_instances_sla_status",
        ),
        CheckConstraint("due_date > requested_at", name="ck_approval_instances_due"),
        CheckConstraint("priority >= 1", name="ck_approval_instances_priority"),
        Index(
            "ix_approval_instances_open_validation",
            "validation_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_SQL),
            sqlite_where=text(_OPEN_STATUS_SQL),
        ),
        Index("ix_approval_instances_tenant_status", "tenant_id", "status"),
        Index("ix_approval_instances_status_due", "status", "due_date"),
        Index("ix_approval_instances_assignee", "assigned_to_id", "status"),
    )

    instance_id: Mapped[UUID] = mapped_column(GUID(), nullable=False, unique=True)
    tenant_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    validation_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    workflow_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    workflow_version: Mapped[int] = mapped_column(nullable=False)
    level: Mapped[int] = mapped_column(nullable=False)
    step_sequence: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    sla_status: Mapped[str] = mapped_column(String(20), nullable=False)

    requested_by_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    requested_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    request_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    assigned_to_id: Mapped[UUID | None] = mapped_column(GUID(), nullable=True)
    assigned_to_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    resolved_by_id: Mapped[UUID | None] = mapped_column(GUID(), nullable=True)
    resolved_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    due_date: Mapped[datetime] = mapped_column(nullable=False)
    response_time_minutes: Mapped[int | None] = mapped_column(nullable=True)
    is_overdue: Mapped[bool] = mapped_column(nullable=False, default=False)

    is_escalated: Mapped[bool] = mapped_column(nullable=False, default=False)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_from_id: Mapped[UUID | None] = mapped_column(GUID(), nullable=True)
    escalation_depth: Mapped[int] = mapped_column(nullable=False, default=0)

    priority: Mapped[int] = mapped_column(nullable=False, default=2)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    policy: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    history: Mapped[list["ApprovalHistoryModel"]] = relationship(
        "ApprovalHistoryModel",
        primaryjoin="ApprovalInstanceModel.instance_id == ApprovalHistoryModel.instance_id",
        order_by="ApprovalHistoryModel.sequence",
        lazy="selectin",
        cascade="save-update, merge",
    )

    comments: Mapped[list["ApprovalCommentModel"]] = relationship(
        "ApprovalCommentModel",
        primaryjoin="ApprovalInstanceModel.instance_id == ApprovalCommentModel.instance_id",
        order_by="ApprovalCommentModel.sequence",
        lazy="selectin",
        cascade="save-update, merge",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<ApprovalInstance {self.instance_id} level={self.level} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalInstance:
        """Convert ORM model to frozen domain aggregate."""
        from approval_kernel.domain.codec import policy_from_dict
        from approval_kernel.domain.instance import (
            ApprovalInstance as ApprovalInstanceDTO,
            ApprovalStatus,
            SlaStatus,
        )
        from approval_kernel.domain.workflow import ApprovalLevel

        return ApprovalInstanceDTO(
            instance_id=self.instance_id,
            tenant_id=self.tenant_id,
            validation_id=self.validation_id,
            level=ApprovalLevel(self.level),
            policy=policy_from_dict(self.policy),
            requested_by_id=self.requested_by_id,
            requested_by_name=self.requested_by_name,
            requested_at=self.requested_at,
            due_date=self.due_date,
            request_reason=self.request_reason,
            notes=self.notes,
            step_sequence=self.step_sequence,
            status=ApprovalStatus(self.status),
            sla_status=SlaStatus(self.sla_status),
            assigned_to_id=self.assigned_to_id,
            assigned_to_name=self.assigned_to_name,
            assigned_at=self.assigned_at,
            resolved_by_id=self.resolved_by_id,
            resolved_by_name=self.resolved_by_name,
            resolved_at=self.resolved_at,
            resolution_notes=self.resolution_notes,
            rejection_reason=self.rejection_reason,
            response_time_minutes=self.response_time_minutes,
            is_overdue=self.is_overdue,
            is_escalated=self.is_escalated,
            escalated_at=self.escalated_at,
            escalation_reason=self.escalation_reason,
            escalated_from_id=self.escalated_from_id,
            escalation_depth=self.escalation_depth,
            priority=self.priority,
            category=self.category,
            tags=tuple(self.tags or ()),
            version=self.version,
            comments=tuple(c.to_dto() for c in self.comments),
            history=tuple(h.to_dto() for h in self.history),
        )

    @classmethod
    def from_dto(cls, dto: ApprovalInstance) -> ApprovalInstanceModel:
        """Create ORM model (with its children) from a domain aggregate."""
        from approval_kernel.domain.codec import policy_to_dict

        model = cls(
            instance_id=dto.instance_id,
            tenant_id=dto.tenant_id,
            validation_id=dto.validation_id,
            workflow_id=dto.policy.workflow_id,
            workflow_version=dto.policy.workflow_version,
            level=int(dto.level),
            policy=policy_to_dict(dto.policy),
            requested_by_id=dto.requested_by_id,
            requested_at=dto.requested_at,
            version=dto.version,
        )
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: ApprovalInstance) -> None:
        """Copy mutable state from ``dto`` and append children not yet stored.

        The identity, the policy snapshot and the request itself are written
        once by ``from_dto`` and never touched here.
        """
        self.step_sequence = dto.step_sequence
        self.status = dto.status.value
        self.sla_status = dto.sla_status.value
        self.requested_by_name = dto.requested_by_name
        self.request_reason = dto.request_reason
        self.notes = dto.notes
        self.assigned_to_id = dto.assigned_to_id
        self.assigned_to_name = dto.assigned_to_name
        self.assigned_at = dto.assigned_at
        self.resolved_by_id = dto.resolved_by_id
        self.resolved_by_name = dto.resolved_by_name
        self.resolved_at = dto.resolved_at
        self.resolution_notes = dto.resolution_notes
        self.rejection_reason = dto.rejection_reason
        self.due_date = dto.due_date
        self.response_time_minutes = dto.response_time_minutes
        self.is_overdue = dto.is_overdue
        self.is_escalated = dto.is_escalated
        self.escalated_at = dto.escalated_at
        self.escalation_reason = dto.escalation_reason
        self.escalated_from_id = dto.escalated_from_id
        self.escalation_depth = dto.escalation_depth
        self.priority = dto.priority
        self.category = dto.category
        self.tags = list(dto.tags)
        self.version = dto.version

        stored_entries = {h.entry_id for h in self.history}
        for position, entry in enumerate(dto.history):
            if entry.entry_id not in stored_entries:
                self.history.append(
                    ApprovalHistoryModel.from_dto(entry, dto.instance_id, position)
                )

        stored_comments = {c.comment_id for c in self.comments}
        for position, comment in enumerate(dto.comments):
            if comment.comment_id not in stored_comments:
                self.comments.append(
                    ApprovalCommentModel.from_dto(comment, dto.instance_id, position)
                )


class ApprovalHistoryModel(Base):
    """Persistent history entry. Append-only."""

    __tablename__ = "approval_history"

    __table_args__ = (
        Index("ix_approval_history_instance", "instance_id", "sequence"),
    )

    entry_id: Mapped[UUID] = mapped_column(GUID(), nullable=False, unique=True)
    instance_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("approval_instances.instance_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ApprovalHistoryEntry:
        from approval_kernel.domain.instance import (
            ApprovalHistoryEntry as HistoryDTO,
            ApprovalStatus,
            HistoryAction,
        )

        return HistoryDTO(
            entry_id=self.entry_id,
            action=HistoryAction(self.action),
            description=self.description,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            occurred_at=self.occurred_at,
            from_status=ApprovalStatus(self.from_status) if self.from_status else None,
            to_status=ApprovalStatus(self.to_status) if self.to_status else None,
        )

    @classmethod
    def from_dto(
        cls, dto: ApprovalHistoryEntry, instance_id: UUID, sequence: int
    ) -> ApprovalHistoryModel:
        return cls(
            entry_id=dto.entry_id,
            instance_id=instance_id,
            sequence=sequence,
            action=dto.action.value,
            description=dto.description,
            actor_id=dto.actor_id,
            actor_name=dto.actor_name,
            from_status=dto.from_status.value if dto.from_status else None,
            to_status=dto.to_status.value if dto.to_status else None,
            occurred_at=dto.occurred_at,
        )


class ApprovalCommentModel(Base):
    """Persistent comment. Append-only."""

    __tablename__ = "approval_comments"

    __table_args__ = (
        Index("ix_approval_comments_instance", "instance_id", "sequence"),
    )

    comment_id: Mapped[UUID] = mapped_column(GUID(), nullable=False, unique=True)
    instance_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("approval_instances.instance_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    author_id: Mapped[UUID] = mapped_column(GUID(), nullable=False)
    author_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ApprovalComment:
        from approval_kernel.domain.instance import ApprovalComment as CommentDTO

        return CommentDTO(
            comment_id=self.comment_id,
            author_id=self.author_id,
            author_name=self.author_name,
            text=self.text,
            is_internal=self.is_internal,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(
        cls, dto: ApprovalComment, instance_id: UUID, sequence: int
    ) -> ApprovalCommentModel:
        return cls(
            comment_id=dto.comment_id,
            instance_id=instance_id,
            sequence=sequence,
            author_id=dto.author_id,
            author_name=dto.author_name,
            text=dto.text,
            is_internal=dto.is_internal,
            created_at=dto.created_at,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type, entity_id=entity_id, reason=reason,
    )


@event.listens_for(ApprovalHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    raise _blocked(
        "ApprovalHistory", str(target.entry_id), "UPDATE",
        "Approval history is append-only -- cannot modify",
    )


@event.listens_for(ApprovalHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    raise _blocked(
        "ApprovalHistory", str(target.entry_id), "DELETE",
        "Approval history is append-only -- cannot delete",
    )


@event.listens_for(ApprovalCommentModel, "before_update")
def prevent_comment_update(mapper, connection, target):
    raise _blocked(
        "ApprovalComment", str(target.comment_id), "UPDATE",
        "Approval comments are append-only -- cannot modify",
    )


@event.listens_for(ApprovalCommentModel, "before_delete")
def prevent_comment_delete(mapper, connection, target):
    raise _blocked(
        "ApprovalComment", str(target.comment_id), "DELETE",
        "Approval comments are append-only -- cannot delete",
    )


@event.listens_for(ApprovalInstanceModel, "before_update")
def prevent_terminal_status_change(mapper, connection, target):
    """A terminal status may not be changed, even to another terminal one."""
    status_history = inspect(target).attrs.status.history
    if not status_history.has_changes():
        return
    previous = status_history.deleted[0] if status_history.deleted else None
    if previous in _TERMINAL_STATUS_VALUES:
        raise _blocked(
            "ApprovalInstance", str(target.instance_id), "UPDATE",
            f"Status {previous} is final -- cannot change to {target.status}",
        )


@event.listens_for(ApprovalInstanceModel, "before_delete")
def prevent_instance_delete(mapper, connection, target):
    raise _blocked(
        "ApprovalInstance", str(target.instance_id), "DELETE",
        "Approval instances are never deleted",
    )
