"""
Approval instance aggregate (``approval_kernel.domain.instance``).

Responsibility
--------------
The runtime approval request for one validation at one level: its lifecycle
state machine, SLA status, comments and append-only history.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Every operation
takes ``now`` explicitly and returns a NEW instance; nothing is mutated in
place.  Persistence and event publication are the service layer's job.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only legal status changes.  Once an
  instance leaves ``OPEN_STATUSES`` its status never changes again
  (ESCALATED is terminal for the instance itself; the work continues on the
  successor it spawned).
* ``due_date`` is set at creation and is strictly after ``requested_at``.
* Every operation appends exactly one ``ApprovalHistoryEntry`` and bumps
  ``version`` by one.  History and comments are tuples; they only grow.
* Escalation chains are bounded and strictly increase the level.

Failure modes
-------------
* ``InvalidStateTransitionError`` -- action not legal from current status.
* ``ValidationError`` -- blank rejection reason when the workflow requires
  one, blank comment text.
* ``OperationNotAllowedError`` -- escalation disabled by workflow or matrix.
* ``EscalationChainExceededError`` -- chain too long or level not higher.
* ``ConfigurationError`` -- the policy snapshot cannot produce a successor
  with a due date after its request time.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID, uuid4

from approval_kernel.domain.workflow import ApprovalLevel, WorkflowPolicy
from approval_kernel.exceptions import (
    ConfigurationError,
    EscalationChainExceededError,
    InvalidStateTransitionError,
    OperationNotAllowedError,
    ValidationError,
)

SYSTEM_ACTOR_ID = UUID(int=0)
SYSTEM_ACTOR_NAME = "system"

DEFAULT_MAX_ESCALATION_CHAIN = 4
DEFAULT_PRIORITY = 2


# =========================================================================
# Status lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval instance lifecycle states."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    MORE_INFO_REQUIRED = "more_info_required"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.IN_REVIEW,
        ApprovalStatus.ESCALATED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.IN_REVIEW: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.MORE_INFO_REQUIRED,
        ApprovalStatus.ESCALATED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.MORE_INFO_REQUIRED: frozenset({
        ApprovalStatus.IN_REVIEW,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.ESCALATED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.ESCALATED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

OPEN_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.IN_REVIEW,
    ApprovalStatus.MORE_INFO_REQUIRED,
})

TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset(
    s for s, targets in APPROVAL_TRANSITIONS.items() if not targets
)


class SlaStatus(str, Enum):
    ON_TIME = "on_time"
    AT_RISK = "at_risk"
    BREACHED = "breached"


class HistoryAction(str, Enum):
    """Closed vocabulary of history entries."""

    CREATED = "created"
    ASSIGNED = "assigned"
    APPROVED = "approved"
    REJECTED = "rejected"
    MORE_INFO_REQUIRED = "more_info_required"
    INFO_PROVIDED = "info_provided"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"
    COMMENT_ADDED = "comment_added"
    SLA_AT_RISK = "sla_at_risk"
    SLA_BREACHED = "sla_breached"
    SLA_ON_TIME = "sla_on_time"


# =========================================================================
# Child records
# =========================================================================


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One immutable line of the instance's audit trail."""

    action: HistoryAction
    description: str
    actor_id: UUID
    occurred_at: datetime
    actor_name: str | None = None
    from_status: ApprovalStatus | None = None
    to_status: ApprovalStatus | None = None
    entry_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class ApprovalComment:
    author_id: UUID
    text: str
    created_at: datetime
    author_name: str | None = None
    is_internal: bool = False
    comment_id: UUID = field(default_factory=uuid4)


# =========================================================================
# Aggregate
# =========================================================================


@dataclass(frozen=True)
class ApprovalInstance:
    """Immutable snapshot of an approval request at one level.

    ``policy`` is the workflow configuration captured at creation time.
    ``version`` is the optimistic-concurrency token checked on every save.
    """

    instance_id: UUID
    tenant_id: UUID
    validation_id: UUID
    level: ApprovalLevel
    policy: WorkflowPolicy
    requested_by_id: UUID
    requested_at: datetime
    due_date: datetime
    requested_by_name: str | None = None
    request_reason: str | None = None
    notes: str | None = None
    step_sequence: int | None = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    sla_status: SlaStatus = SlaStatus.ON_TIME
    assigned_to_id: UUID | None = None
    assigned_to_name: str | None = None
    assigned_at: datetime | None = None
    resolved_by_id: UUID | None = None
    resolved_by_name: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    rejection_reason: str | None = None
    response_time_minutes: int | None = None
    is_overdue: bool = False
    is_escalated: bool = False
    escalated_at: datetime | None = None
    escalation_reason: str | None = None
    escalated_from_id: UUID | None = None
    escalation_depth: int = 0
    priority: int = DEFAULT_PRIORITY
    category: str | None = None
    tags: tuple[str, ...] = ()
    version: int = 1
    comments: tuple[ApprovalComment, ...] = ()
    history: tuple[ApprovalHistoryEntry, ...] = ()

    @property
    def workflow_id(self) -> UUID:
        return self.policy.workflow_id

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # -- internals --------------------------------------------------------

    def _require(
        self,
        action: str,
        target: ApprovalStatus,
        allowed_from: frozenset[ApprovalStatus] | None = None,
    ) -> None:
        legal = target in APPROVAL_TRANSITIONS[self.status]
        if allowed_from is not None:
            legal = legal and self.status in allowed_from
        if not legal:
            raise InvalidStateTransitionError(
                str(self.instance_id), self.status.value, action
            )

    def _advance(
        self,
        action: HistoryAction,
        description: str,
        actor_id: UUID,
        actor_name: str | None,
        now: datetime,
        **changes,
    ) -> ApprovalInstance:
        new_status = changes.get("status", self.status)
        entry = ApprovalHistoryEntry(
            action=action,
            description=description,
            actor_id=actor_id,
            actor_name=actor_name,
            occurred_at=now,
            from_status=self.status,
            to_status=new_status,
        )
        return replace(
            self,
            version=self.version + 1,
            history=self.history + (entry,),
            **changes,
        )

    def _response_minutes(self, now: datetime) -> int:
        return int((now - self.requested_at).total_seconds() // 60)

    # -- lifecycle --------------------------------------------------------

    def assign(
        self,
        assignee_id: UUID,
        now: datetime,
        assignee_name: str | None = None,
        actor_id: UUID | None = None,
    ) -> ApprovalInstance:
        """Pending -> InReview."""
        self._require(
            "assign",
            ApprovalStatus.IN_REVIEW,
            frozenset({ApprovalStatus.PENDING}),
        )
        return self._advance(
            HistoryAction.ASSIGNED,
            f"Assigned to {assignee_name or assignee_id}",
            actor_id or assignee_id,
            assignee_name,
            now,
            status=ApprovalStatus.IN_REVIEW,
            assigned_to_id=assignee_id,
            assigned_to_name=assignee_name,
            assigned_at=now,
        )

    def approve(
        self,
        approver_id: UUID,
        now: datetime,
        approver_name: str | None = None,
        notes: str | None = None,
    ) -> ApprovalInstance:
        self._require("approve", ApprovalStatus.APPROVED)
        return self._advance(
            HistoryAction.APPROVED,
            notes or "Approved",
            approver_id,
            approver_name,
            now,
            status=ApprovalStatus.APPROVED,
            resolved_by_id=approver_id,
            resolved_by_name=approver_name,
            resolved_at=now,
            resolution_notes=notes,
            response_time_minutes=self._response_minutes(now),
        )

    def reject(
        self,
        rejector_id: UUID,
        reason: str | None,
        now: datetime,
        rejector_name: str | None = None,
    ) -> ApprovalInstance:
        self.check_rejectable(reason)
        return self._advance(
            HistoryAction.REJECTED,
            f"Rejected: {reason}" if reason else "Rejected",
            rejector_id,
            rejector_name,
            now,
            status=ApprovalStatus.REJECTED,
            resolved_by_id=rejector_id,
            resolved_by_name=rejector_name,
            resolved_at=now,
            rejection_reason=reason,
            response_time_minutes=self._response_minutes(now),
        )

    def check_rejectable(self, reason: str | None) -> None:
        """Raise unless ``reject`` is legal now with ``reason``.

        Services call this before routing a rejection into an escalation, so
        escalate-on-reject has the same preconditions as a plain rejection.
        """
        self._require("reject", ApprovalStatus.REJECTED)
        if self.policy.require_comments_on_reject and not (reason and reason.strip()):
            raise ValidationError(
                "rejection_reason", "a reason is required to reject this approval"
            )

    def request_more_info(
        self,
        actor_id: UUID,
        note: str,
        now: datetime,
        actor_name: str | None = None,
    ) -> ApprovalInstance:
        """InReview -> MoreInfoRequired.  Does not record a response time."""
        self._require(
            "request_more_info",
            ApprovalStatus.MORE_INFO_REQUIRED,
            frozenset({ApprovalStatus.IN_REVIEW}),
        )
        return self._advance(
            HistoryAction.MORE_INFO_REQUIRED,
            f"More information requested: {note}",
            actor_id,
            actor_name,
            now,
            status=ApprovalStatus.MORE_INFO_REQUIRED,
        )

    def provide_info(
        self,
        actor_id: UUID,
        note: str,
        now: datetime,
        actor_name: str | None = None,
    ) -> ApprovalInstance:
        """MoreInfoRequired -> InReview."""
        self._require(
            "provide_info",
            ApprovalStatus.IN_REVIEW,
            frozenset({ApprovalStatus.MORE_INFO_REQUIRED}),
        )
        return self._advance(
            HistoryAction.INFO_PROVIDED,
            f"Information provided: {note}",
            actor_id,
            actor_name,
            now,
            status=ApprovalStatus.IN_REVIEW,
        )

    def escalate(
        self,
        reason: str,
        escalated_by_id: UUID,
        new_level: ApprovalLevel,
        now: datetime,
        max_chain: int = DEFAULT_MAX_ESCALATION_CHAIN,
        escalated_by_name: str | None = None,
    ) -> tuple[ApprovalInstance, ApprovalInstance]:
        """Mark this instance ESCALATED and build its successor.

        Returns ``(escalated_self, successor)``.  The successor is a fresh
        PENDING instance at ``new_level`` that points back at this one.
        """
        self._require("escalate", ApprovalStatus.ESCALATED)
        if not self.policy.allow_escalation:
            raise OperationNotAllowedError(
                "escalate", f"workflow {self.policy.workflow_code} disallows escalation"
            )
        if not self.policy.permits_escalation(self.level):
            raise OperationNotAllowedError(
                "escalate", f"approval matrix forbids escalation from {self.level.name}"
            )
        if new_level <= self.level:
            raise EscalationChainExceededError(
                str(self.instance_id),
                self.escalation_depth,
                f"level {ApprovalLevel(new_level).name} is not above {self.level.name}",
            )
        if self.escalation_depth >= max_chain:
            raise EscalationChainExceededError(
                str(self.instance_id),
                self.escalation_depth,
                f"escalation chain limit of {max_chain} reached",
            )
        successor_due = now + timedelta(hours=self.policy.escalation_sla_hours)
        if successor_due <= now:
            raise ConfigurationError(
                self.policy.workflow_code,
                f"escalation_sla_hours is {self.policy.escalation_sla_hours}; "
                "an escalated approval would be due immediately",
            )

        escalated = self._advance(
            HistoryAction.ESCALATED,
            f"Escalated to {ApprovalLevel(new_level).name}: {reason}",
            escalated_by_id,
            escalated_by_name,
            now,
            status=ApprovalStatus.ESCALATED,
            is_escalated=True,
            escalated_at=now,
            escalation_reason=reason,
        )

        step = self.policy.step_for_level(new_level)
        successor = ApprovalInstance(
            instance_id=uuid4(),
            tenant_id=self.tenant_id,
            validation_id=self.validation_id,
            level=ApprovalLevel(new_level),
            policy=self.policy,
            requested_by_id=self.requested_by_id,
            requested_by_name=self.requested_by_name,
            requested_at=now,
            due_date=successor_due,
            request_reason=self.request_reason,
            notes=f"Escalated: {reason}",
            step_sequence=step.sequence if step else None,
            escalated_from_id=self.instance_id,
            escalation_depth=self.escalation_depth + 1,
            priority=max(1, self.priority - 1),
            category=self.category,
            tags=self.tags,
            history=(
                ApprovalHistoryEntry(
                    action=HistoryAction.CREATED,
                    description=(
                        f"Escalated from {self.level.name} approval "
                        f"{self.instance_id}: {reason}"
                    ),
                    actor_id=escalated_by_id,
                    actor_name=escalated_by_name,
                    occurred_at=now,
                    to_status=ApprovalStatus.PENDING,
                ),
            ),
        )
        return escalated, successor

    def cancel(
        self,
        actor_id: UUID,
        reason: str,
        now: datetime,
        actor_name: str | None = None,
    ) -> ApprovalInstance:
        self._require("cancel", ApprovalStatus.CANCELLED)
        return self._advance(
            HistoryAction.CANCELLED,
            f"Cancelled: {reason}",
            actor_id,
            actor_name,
            now,
            status=ApprovalStatus.CANCELLED,
            resolved_by_id=actor_id,
            resolved_by_name=actor_name,
            resolved_at=now,
            resolution_notes=reason,
        )

    def add_comment(
        self,
        author_id: UUID,
        text: str,
        now: datetime,
        author_name: str | None = None,
        is_internal: bool = False,
    ) -> ApprovalInstance:
        """Append a comment.  Allowed in every status, terminal included."""
        if not text or not text.strip():
            raise ValidationError("text", "comment text must not be blank")
        comment = ApprovalComment(
            author_id=author_id,
            author_name=author_name,
            text=text,
            created_at=now,
            is_internal=is_internal,
        )
        advanced = self._advance(
            HistoryAction.COMMENT_ADDED,
            "Internal comment added" if is_internal else "Comment added",
            author_id,
            author_name,
            now,
        )
        return replace(advanced, comments=self.comments + (comment,))

    def apply_sla_status(self, sla_status: SlaStatus, now: datetime) -> ApprovalInstance:
        """Record a recomputed SLA status.

        Returns ``self`` unchanged when nothing moved, so repeated sweeps are
        no-ops.  Only open instances are tracked.
        """
        if not self.is_open:
            raise InvalidStateTransitionError(
                str(self.instance_id), self.status.value, "update_sla"
            )
        overdue = sla_status == SlaStatus.BREACHED
        if sla_status == self.sla_status and overdue == self.is_overdue:
            return self
        if sla_status == SlaStatus.BREACHED:
            return self._advance(
                HistoryAction.SLA_BREACHED,
                f"SLA breached, due {self.due_date.isoformat()}",
                SYSTEM_ACTOR_ID,
                SYSTEM_ACTOR_NAME,
                now,
                sla_status=sla_status,
                is_overdue=True,
            )
        if sla_status == SlaStatus.AT_RISK:
            return self._advance(
                HistoryAction.SLA_AT_RISK,
                f"SLA at risk, due {self.due_date.isoformat()}",
                SYSTEM_ACTOR_ID,
                SYSTEM_ACTOR_NAME,
                now,
                sla_status=sla_status,
                is_overdue=False,
            )
        # back on time, e.g. after a due date extension
        return self._advance(
            HistoryAction.SLA_ON_TIME,
            f"SLA back on time, due {self.due_date.isoformat()}",
            SYSTEM_ACTOR_ID,
            SYSTEM_ACTOR_NAME,
            now,
            sla_status=sla_status,
            is_overdue=False,
        )


# =========================================================================
# Factory
# =========================================================================


def create_instance(
    tenant_id: UUID,
    validation_id: UUID,
    policy: WorkflowPolicy,
    requested_by_id: UUID,
    now: datetime,
    *,
    requested_by_name: str | None = None,
    level: ApprovalLevel | None = None,
    sla_hours: int | None = None,
    request_reason: str | None = None,
    notes: str | None = None,
    priority: int = DEFAULT_PRIORITY,
    category: str | None = None,
    tags: tuple[str, ...] = (),
) -> ApprovalInstance:
    """Open the first approval of a workflow run.

    The level defaults to the first enabled step's level and the deadline
    to the workflow's default SLA.
    """
    first = policy.first_step()
    if first is None:
        raise ConfigurationError(policy.workflow_code, "workflow has no enabled steps")
    if level is None:
        level = first.level
    hours = policy.default_sla_hours if sla_hours is None else sla_hours
    due = now + timedelta(hours=hours)
    if due <= now:
        raise ValidationError("due_date", "due date must be after the request time")
    if priority < 1:
        raise ValidationError("priority", "priority must be 1 or greater")

    step = policy.step_for_level(level)
    return ApprovalInstance(
        instance_id=uuid4(),
        tenant_id=tenant_id,
        validation_id=validation_id,
        level=level,
        policy=policy,
        requested_by_id=requested_by_id,
        requested_by_name=requested_by_name,
        requested_at=now,
        due_date=due,
        request_reason=request_reason,
        notes=notes,
        step_sequence=step.sequence if step else None,
        priority=priority,
        category=category,
        tags=tuple(tags),
        history=(
            ApprovalHistoryEntry(
                action=HistoryAction.CREATED,
                description=f"Approval requested at {level.name} level",
                actor_id=requested_by_id,
                actor_name=requested_by_name,
                occurred_at=now,
                to_status=ApprovalStatus.PENDING,
            ),
        ),
    )
