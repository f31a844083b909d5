"""
Workflow template types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for approval workflow templates: the lifecycle status,
ordered steps, approval matrix, routing rules and execution statistics of a
tenant-scoped, versioned template, plus the ``WorkflowPolicy`` snapshot that
every approval instance carries.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* A template can only become ACTIVE with at least one enabled step and at
  least one enabled matrix entry (``activate`` raises ``ConfigurationError``).
* Step sequence numbers are unique per template and steps are kept ordered
  by sequence.
* Instances never look at the live template: they carry a ``WorkflowPolicy``
  snapshot taken when they were created, so later template revisions do not
  alter approvals already in flight.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum, IntEnum
from functools import cached_property
from uuid import UUID, uuid4

from approval_kernel.domain.conditions import (
    ConditionNode,
    RoutingRule,
    build_routing_tree,
)
from approval_kernel.exceptions import ConfigurationError


class ApprovalLevel(IntEnum):
    """Ordinal rank in the approval hierarchy.  Higher = more authority."""

    AUTO = 0
    ANALYST = 1
    SUPERVISOR = 2
    MANAGER = 3
    DIRECTOR = 4


class WorkflowStatus(str, Enum):
    """Template lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class RejectionBehavior(str, Enum):
    """What a rejection does to the workflow."""

    END_WORKFLOW = "end_workflow"
    ESCALATE = "escalate"


class TimeoutBehavior(str, Enum):
    """What an SLA breach does to the workflow."""

    NONE = "none"
    ESCALATE = "escalate"
    NOTIFY = "notify"


class StepAction(str, Enum):
    """Action expected from the level a step routes to."""

    APPROVE = "approve"
    REVIEW = "review"
    NOTIFY = "notify"
    VALIDATE = "validate"
    SIGN = "sign"


@dataclass(frozen=True)
class WorkflowStep:
    """One ordered step of a template."""

    sequence: int
    level: ApprovalLevel
    action: StepAction = StepAction.APPROVE
    timeout_hours: int = 24
    name: str | None = None
    description: str | None = None
    can_skip: bool = False
    requires_comment: bool = False
    notify_on_entry: bool = True
    notify_on_exit: bool = True
    is_enabled: bool = True

    @property
    def display_name(self) -> str:
        return self.name or f"Step {self.sequence}: {self.level.name.title()}"


@dataclass(frozen=True)
class MatrixEntry:
    """Approval authority of one role at one level.

    ``min_approvers`` of ``None`` means a single approver.  Ceilings of
    ``None`` mean unlimited.
    """

    level: ApprovalLevel
    required_role: str
    min_approvers: int | None = None
    can_escalate: bool = True
    can_delegate: bool = False
    is_enabled: bool = True
    max_error_count: int | None = None
    max_amount: Decimal | None = None
    specific_user_ids: tuple[str, ...] = ()
    delegate_user_ids: tuple[str, ...] = ()

    @property
    def quorum(self) -> int:
        return self.min_approvers or 1


@dataclass(frozen=True)
class WorkflowStats:
    """Aggregate execution statistics of a template."""

    total_executions: int = 0
    successful_executions: int = 0
    average_completion_time_hours: float = 0.0


# =========================================================================
# Policy snapshot carried by instances
# =========================================================================


@dataclass(frozen=True)
class WorkflowPolicy:
    """The slice of a template an approval instance needs at runtime.

    Taken once when the instance is created and stored with it.
    """

    workflow_id: UUID
    workflow_code: str
    workflow_version: int
    default_sla_hours: int = 24
    escalation_sla_hours: int = 12
    allow_escalation: bool = True
    allow_parallel_approval: bool = False
    require_comments_on_reject: bool = True
    auto_assign_to_role: bool = True
    rejection_behavior: RejectionBehavior = RejectionBehavior.END_WORKFLOW
    timeout_behavior: TimeoutBehavior = TimeoutBehavior.ESCALATE
    steps: tuple[WorkflowStep, ...] = ()
    matrix: tuple[MatrixEntry, ...] = ()

    def enabled_steps(self) -> tuple[WorkflowStep, ...]:
        return tuple(
            sorted((s for s in self.steps if s.is_enabled), key=lambda s: s.sequence)
        )

    def first_step(self) -> WorkflowStep | None:
        steps = self.enabled_steps()
        return steps[0] if steps else None

    def step_for_level(self, level: ApprovalLevel) -> WorkflowStep | None:
        for step in self.enabled_steps():
            if step.level == level:
                return step
        return None

    def next_step(self, current_sequence: int) -> WorkflowStep | None:
        for step in self.enabled_steps():
            if step.sequence > current_sequence:
                return step
        return None

    def next_level(self, level: ApprovalLevel) -> ApprovalLevel | None:
        """Lowest configured step level strictly above ``level``."""
        higher = [s.level for s in self.enabled_steps() if s.level > level]
        return min(higher) if higher else None

    def matrix_for_level(self, level: ApprovalLevel) -> tuple[MatrixEntry, ...]:
        return tuple(m for m in self.matrix if m.level == level and m.is_enabled)

    def permits_escalation(self, level: ApprovalLevel) -> bool:
        """True when some enabled matrix entry at ``level`` may escalate."""
        return any(m.can_escalate for m in self.matrix_for_level(level))


# =========================================================================
# Template
# =========================================================================


@dataclass(frozen=True)
class WorkflowTemplate:
    """A tenant-scoped, versioned approval workflow template.

    ``routing`` is an explicit condition tree; when absent the tree is
    compiled from ``rules`` on first use and cached on the instance.
    """

    tenant_id: UUID
    name: str
    code: str
    workflow_id: UUID = field(default_factory=uuid4)
    version: int = 1
    description: str | None = None
    status: WorkflowStatus = WorkflowStatus.DRAFT
    default_sla_hours: int = 24
    escalation_sla_hours: int = 12
    allow_escalation: bool = True
    allow_parallel_approval: bool = False
    require_comments_on_reject: bool = True
    auto_assign_to_role: bool = True
    rejection_behavior: RejectionBehavior = RejectionBehavior.END_WORKFLOW
    timeout_behavior: TimeoutBehavior = TimeoutBehavior.ESCALATE
    steps: tuple[WorkflowStep, ...] = ()
    rules: tuple[RoutingRule, ...] = ()
    matrix: tuple[MatrixEntry, ...] = ()
    routing: ConditionNode | None = None
    stats: WorkflowStats = field(default_factory=WorkflowStats)

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", self.code.upper())
        object.__setattr__(
            self, "steps", tuple(sorted(self.steps, key=lambda s: s.sequence))
        )

    @cached_property
    def routing_tree(self) -> ConditionNode | None:
        if self.routing is not None:
            return self.routing
        return build_routing_tree(self.rules)

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE

    # -- lifecycle --------------------------------------------------------

    def activation_errors(self) -> list[str]:
        """Reasons this template cannot run approvals; empty when it can."""
        errors = []
        if not any(s.is_enabled for s in self.steps):
            errors.append("no enabled workflow step")
        if not any(m.is_enabled for m in self.matrix):
            errors.append("no enabled approval matrix entry")
        for name in ("default_sla_hours", "escalation_sla_hours"):
            hours = getattr(self, name)
            if hours < 1:
                errors.append(f"{name} must be at least 1, got {hours}")
        sequences = Counter(s.sequence for s in self.steps)
        errors.extend(
            f"step sequence {seq} used {n} times"
            for seq, n in sorted(sequences.items()) if n > 1
        )
        pairs = Counter((m.level, m.required_role) for m in self.matrix)
        errors.extend(
            f"matrix entry ({level.name}, {role}) defined {n} times"
            for (level, role), n in sorted(pairs.items()) if n > 1
        )
        return errors

    def activate(self) -> WorkflowTemplate:
        """Return an ACTIVE copy; refuse templates that cannot run approvals."""
        errors = self.activation_errors()
        if errors:
            raise ConfigurationError(
                self.code, "cannot activate: " + "; ".join(errors)
            )
        return replace(self, status=WorkflowStatus.ACTIVE)

    def deactivate(self) -> WorkflowTemplate:
        return replace(self, status=WorkflowStatus.INACTIVE)

    def archive(self) -> WorkflowTemplate:
        return replace(self, status=WorkflowStatus.ARCHIVED)

    def clone(self, new_name: str, new_code: str) -> WorkflowTemplate:
        """Copy configuration under a new identity.  Stats are not carried."""
        return replace(
            self,
            workflow_id=uuid4(),
            name=new_name,
            code=new_code,
            version=1,
            status=WorkflowStatus.DRAFT,
            stats=WorkflowStats(),
        )

    def revise(self, **changes) -> WorkflowTemplate:
        """Next version of the same template, back in DRAFT."""
        return replace(
            self, version=self.version + 1, status=WorkflowStatus.DRAFT, **changes
        )

    # -- queries ----------------------------------------------------------

    def snapshot_policy(self) -> WorkflowPolicy:
        return WorkflowPolicy(
            workflow_id=self.workflow_id,
            workflow_code=self.code,
            workflow_version=self.version,
            default_sla_hours=self.default_sla_hours,
            escalation_sla_hours=self.escalation_sla_hours,
            allow_escalation=self.allow_escalation,
            allow_parallel_approval=self.allow_parallel_approval,
            require_comments_on_reject=self.require_comments_on_reject,
            auto_assign_to_role=self.auto_assign_to_role,
            rejection_behavior=self.rejection_behavior,
            timeout_behavior=self.timeout_behavior,
            steps=self.steps,
            matrix=self.matrix,
        )

    def first_step(self) -> WorkflowStep | None:
        return self.snapshot_policy().first_step()

    def step_for_level(self, level: ApprovalLevel) -> WorkflowStep | None:
        return self.snapshot_policy().step_for_level(level)

    def next_step(self, current_sequence: int) -> WorkflowStep | None:
        return self.snapshot_policy().next_step(current_sequence)

    def approvers_for_level(self, level: ApprovalLevel) -> tuple[MatrixEntry, ...]:
        return self.snapshot_policy().matrix_for_level(level)

    def can_role_approve_at_level(self, role: str, level: ApprovalLevel) -> bool:
        return any(m.required_role == role for m in self.approvers_for_level(level))
