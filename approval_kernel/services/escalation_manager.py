"""
EscalationManager -- moves an approval to the next level.

Responsibility:
    Validates that an escalation is possible, marks the current instance
    ESCALATED, persists its successor at the next configured level and
    announces both.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    approval_engines.

Invariants enforced:
    - Validate first, mutate second: the next level and its approver policy
      are resolved before anything changes, so a misconfigured workflow
      leaves the instance exactly as it was.
    - Exactly one successor per escalation: the escalated instance is saved
      with a version check before the successor is inserted.  A concurrent
      escalation loses with OptimisticLockError.
    - Chains are bounded by ``EngineSettings.max_escalation_chain``.
    - Events are held until the session commits.  A caller that already
      buffers (the SLA monitor, ApprovalService) passes its own buffer.

Failure modes:
    - InvalidStateTransitionError if the instance is no longer open.
    - OperationNotAllowedError("escalate", "no higher level configured").
    - OperationNotAllowedError if the workflow or matrix forbids escalation.
    - EscalationChainExceededError when the chain limit is reached.
    - NoEligibleApproverError when the next level has nobody to route to.
    - OptimisticLockError on a lost race.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_engines.matrix_resolver import (
    ApproverDirectory,
    ApproverPolicy,
    resolve,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.events import (
    ApprovalEvent,
    ApprovalEventType,
    EventPublisher,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.workflow import ApprovalLevel
from approval_kernel.exceptions import (
    InvalidStateTransitionError,
    OperationNotAllowedError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.events import (
    BufferedEventPublisher,
    SessionEventPublisher,
    publish_safely,
)
from approval_kernel.services.instance_store import InstanceStore

logger = get_logger("services.escalation")


@dataclass(frozen=True)
class EscalationResult:
    escalated: ApprovalInstance
    successor: ApprovalInstance
    approver_policy: ApproverPolicy


class EscalationManager:
    """Creates next-level instances on escalation."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        settings: EngineSettings | None = None,
        directory: ApproverDirectory | None = None,
    ) -> None:
        self._session = session
        self._store = InstanceStore(session)
        self._clock = clock or SystemClock()
        if isinstance(publisher, BufferedEventPublisher):
            self._publisher = publisher
        else:
            self._publisher = SessionEventPublisher(session, publisher)
        self._settings = settings or EngineSettings()
        self._directory = directory

    def prepare(
        self, instance: ApprovalInstance
    ) -> tuple[ApprovalLevel, ApproverPolicy]:
        """Next level and its approver policy, or raise without side effects."""
        if not instance.is_open:
            raise InvalidStateTransitionError(
                str(instance.instance_id), instance.status.value, "escalate"
            )
        next_level = instance.policy.next_level(instance.level)
        if next_level is None:
            raise OperationNotAllowedError("escalate", "no higher level configured")
        approver_policy = resolve(next_level, instance.policy.matrix, self._directory)
        return next_level, approver_policy

    def escalate(
        self,
        instance: ApprovalInstance,
        reason: str,
        escalated_by_id: UUID,
        escalated_by_name: str | None = None,
    ) -> EscalationResult:
        """Escalate ``instance`` as read at ``instance.version``."""
        with LogContext.bind(
            instance_id=instance.instance_id,
            tenant_id=instance.tenant_id,
            actor_id=escalated_by_id,
        ):
            next_level, approver_policy = self.prepare(instance)
            now = self._clock.now()
            escalated, successor = instance.escalate(
                reason,
                escalated_by_id,
                next_level,
                now,
                max_chain=self._settings.max_escalation_chain,
                escalated_by_name=escalated_by_name,
            )

            # The escalated row must leave the open set before the successor
            # enters it (one open instance per validation).
            self._store.update(escalated, expected_version=instance.version)
            self._store.add(successor)

            logger.info("approval_escalated", extra={
                "from_level": instance.level.name,
                "to_level": next_level.name,
                "successor_id": str(successor.instance_id),
                "escalation_depth": successor.escalation_depth,
                "reason": reason,
            })

            publish_safely(self._publisher, ApprovalEvent.for_instance(
                ApprovalEventType.APPROVAL_ESCALATED,
                escalated,
                escalated_by_id,
                now,
                reason=reason,
                to_level=int(next_level),
                successor_id=str(successor.instance_id),
            ))
            publish_safely(self._publisher, ApprovalEvent.for_instance(
                ApprovalEventType.APPROVAL_REQUESTED,
                successor,
                escalated_by_id,
                now,
                approver_roles=list(approver_policy.role_names),
                escalated_from_id=str(instance.instance_id),
                due_date=successor.due_date.isoformat(),
            ))
            return EscalationResult(escalated, successor, approver_policy)
