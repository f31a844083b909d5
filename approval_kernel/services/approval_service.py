"""
approval_kernel.services.approval_service -- Approval lifecycle management.

Responsibility:
    Entry point for every human action on an approval: starting the
    workflow for a validation outcome, assignment, approval, rejection,
    information requests, cancellation, comments and manual escalation.
    Each action loads the aggregate, applies the pure domain transition,
    saves it with a version check and announces the outcome.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    approval_engines.

Invariants enforced:
    - Lifecycle state machine enforced by the domain aggregate before
      anything is persisted.
    - Optimistic concurrency on every save.  Callers may pass the version
      they displayed (``expected_version``); a stale value fails fast.
    - One open approval per validation.
    - A rejection under a workflow whose rejection behaviour is ESCALATE
      moves the request to the next level instead of ending it.  Where no
      escalation is possible (top level, escalation disabled) it is a plain
      rejection.
    - Finished runs (approved, finally rejected, cancelled) are folded into
      the template statistics exactly once.
    - Events reach the publisher only after the session commits; a rolled
      back action announces nothing.

Failure modes:
    - ApprovalNotFoundError, WorkflowNotFoundError.
    - InvalidStateTransitionError, ValidationError.
    - DuplicateApprovalRequestError.
    - NoEligibleApproverError when the first level has nobody to route to.
    - OptimisticLockError on a lost race.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_engines import stats as stats_engine
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
from approval_kernel.domain.instance import (
    ApprovalInstance,
    create_instance,
)
from approval_kernel.domain.validation import ValidationSnapshot
from approval_kernel.domain.workflow import RejectionBehavior, WorkflowTemplate
from approval_kernel.exceptions import (
    DuplicateApprovalRequestError,
    OptimisticLockError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.escalation_manager import (
    EscalationManager,
    EscalationResult,
)
from approval_kernel.services.events import SessionEventPublisher, publish_safely
from approval_kernel.services.instance_store import InstanceStore
from approval_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.approval")


@dataclass(frozen=True)
class WorkflowStart:
    """Outcome of opening a workflow run for a validation."""

    instance: ApprovalInstance
    template: WorkflowTemplate
    approver_policy: ApproverPolicy


@dataclass(frozen=True)
class RejectionOutcome:
    """``escalation`` is set when the rejection moved the request up a level."""

    instance: ApprovalInstance
    escalation: EscalationResult | None = None

    @property
    def escalated(self) -> bool:
        return self.escalation is not None


class ApprovalService:
    """Manages the approval instance lifecycle."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        settings: EngineSettings | None = None,
        directory: ApproverDirectory | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._publisher = SessionEventPublisher(session, publisher)
        self._settings = settings or EngineSettings()
        self._directory = directory
        self._store = InstanceStore(session)
        self._workflows = WorkflowService(session)
        self._escalations = EscalationManager(
            session, self._clock, self._publisher, self._settings, directory
        )

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _load(self, instance_id: UUID, expected_version: int | None) -> ApprovalInstance:
        instance = self._store.get(instance_id, for_update=True)
        if expected_version is not None and instance.version != expected_version:
            raise OptimisticLockError(
                "ApprovalInstance", str(instance_id), expected_version
            )
        return instance

    def _save(self, before: ApprovalInstance, after: ApprovalInstance) -> ApprovalInstance:
        return self._store.update(after, expected_version=before.version)

    def _emit(
        self,
        event_type: ApprovalEventType,
        instance: ApprovalInstance,
        actor_id: UUID,
        **payload,
    ) -> None:
        publish_safely(self._publisher, ApprovalEvent.for_instance(
            event_type, instance, actor_id, self._clock.now(), **payload
        ))

    def _record_outcome(self, instance: ApprovalInstance) -> None:
        success = stats_engine.outcome_of(instance)
        if success is None or instance.resolved_at is None:
            return
        root = self._store.chain_root(instance)
        self._workflows.record_execution(
            instance.policy.workflow_id,
            instance.policy.workflow_version,
            success,
            stats_engine.completion_hours(root.requested_at, instance.resolved_at),
        )

    # -----------------------------------------------------------------
    # Starting a run
    # -----------------------------------------------------------------

    def start_workflow(
        self,
        snapshot: ValidationSnapshot,
        requested_by_id: UUID,
        requested_by_name: str | None = None,
        request_reason: str | None = None,
        priority: int = 2,
        category: str | None = None,
        tags: tuple[str, ...] = (),
    ) -> WorkflowStart | None:
        """Select the workflow for ``snapshot`` and open its first approval.

        Returns ``None`` when no active workflow matches; the caller applies
        its own fallback (auto-accept, default workflow, manual triage).
        """
        template = self._workflows.select_for(snapshot)
        if template is None:
            logger.info("approval_not_required", extra={
                "validation_id": str(snapshot.validation_id),
            })
            return None
        return self.request_approval(
            snapshot,
            template,
            requested_by_id,
            requested_by_name=requested_by_name,
            request_reason=request_reason,
            priority=priority,
            category=category,
            tags=tags,
        )

    def request_approval(
        self,
        snapshot: ValidationSnapshot,
        template: WorkflowTemplate,
        requested_by_id: UUID,
        requested_by_name: str | None = None,
        request_reason: str | None = None,
        priority: int = 2,
        category: str | None = None,
        tags: tuple[str, ...] = (),
    ) -> WorkflowStart:
        """Open the first approval of ``template`` for ``snapshot``."""
        with LogContext.bind(
            tenant_id=snapshot.tenant_id,
            actor_id=requested_by_id,
            workflow_id=template.workflow_id,
        ):
            existing = self._store.find_open_for_validation(snapshot.validation_id)
            if existing is not None:
                raise DuplicateApprovalRequestError(
                    str(snapshot.validation_id), str(existing.instance_id)
                )

            policy = template.snapshot_policy()
            now = self._clock.now()
            instance = create_instance(
                snapshot.tenant_id,
                snapshot.validation_id,
                policy,
                requested_by_id,
                now,
                requested_by_name=requested_by_name,
                request_reason=request_reason,
                priority=priority,
                category=category,
                tags=tags,
            )
            approver_policy = resolve(instance.level, policy.matrix, self._directory)
            self._store.add(instance)

            logger.info("approval_requested", extra={
                "instance_id": str(instance.instance_id),
                "validation_id": str(snapshot.validation_id),
                "workflow_code": template.code,
                "workflow_version": template.version,
                "approval_level": instance.level.name,
                "due_date": instance.due_date.isoformat(),
            })
            self._emit(
                ApprovalEventType.APPROVAL_REQUESTED,
                instance,
                requested_by_id,
                approver_roles=list(approver_policy.role_names),
                due_date=instance.due_date.isoformat(),
            )
            return WorkflowStart(instance, template, approver_policy)

    # -----------------------------------------------------------------
    # Human actions
    # -----------------------------------------------------------------

    def get(self, instance_id: UUID) -> ApprovalInstance:
        return self._store.get(instance_id)

    def assign(
        self,
        instance_id: UUID,
        assignee_id: UUID,
        assignee_name: str | None = None,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(instance_id=instance_id, actor_id=actor_id or assignee_id):
            instance = self._load(instance_id, expected_version)
            assigned = self._save(
                instance,
                instance.assign(assignee_id, self._clock.now(), assignee_name, actor_id),
            )
            logger.info("approval_assigned", extra={
                "assignee_id": str(assignee_id),
            })
            self._emit(
                ApprovalEventType.APPROVAL_ASSIGNED,
                assigned,
                actor_id or assignee_id,
                assignee_id=str(assignee_id),
                assignee_name=assignee_name,
            )
            return assigned

    def approve(
        self,
        instance_id: UUID,
        approver_id: UUID,
        approver_name: str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(instance_id=instance_id, actor_id=approver_id):
            instance = self._load(instance_id, expected_version)
            approved = self._save(
                instance,
                instance.approve(approver_id, self._clock.now(), approver_name, notes),
            )
            logger.info("approval_granted", extra={
                "approval_level": approved.level.name,
                "response_time_minutes": approved.response_time_minutes,
            })
            self._emit(
                ApprovalEventType.APPROVAL_GRANTED,
                approved,
                approver_id,
                response_time_minutes=approved.response_time_minutes,
            )
            self._record_outcome(approved)
            return approved

    def reject(
        self,
        instance_id: UUID,
        rejector_id: UUID,
        reason: str | None,
        rejector_name: str | None = None,
        expected_version: int | None = None,
    ) -> RejectionOutcome:
        """Reject, or escalate when the workflow treats rejection that way."""
        with LogContext.bind(instance_id=instance_id, actor_id=rejector_id):
            instance = self._load(instance_id, expected_version)
            instance.check_rejectable(reason)
            policy = instance.policy

            if (
                policy.rejection_behavior == RejectionBehavior.ESCALATE
                and policy.allow_escalation
                and policy.permits_escalation(instance.level)
                and policy.next_level(instance.level) is not None
            ):
                escalation = self._escalations.escalate(
                    instance,
                    f"Rejected at {instance.level.name}: {reason or 'no reason given'}",
                    rejector_id,
                    rejector_name,
                )
                return RejectionOutcome(escalation.escalated, escalation)

            rejected = self._save(
                instance,
                instance.reject(rejector_id, reason, self._clock.now(), rejector_name),
            )
            logger.info("approval_rejected", extra={
                "approval_level": rejected.level.name,
                "reason": reason,
            })
            self._emit(
                ApprovalEventType.APPROVAL_REJECTED,
                rejected,
                rejector_id,
                reason=reason,
            )
            self._record_outcome(rejected)
            return RejectionOutcome(rejected)

    def request_more_info(
        self,
        instance_id: UUID,
        actor_id: UUID,
        note: str,
        actor_name: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(instance_id=instance_id, actor_id=actor_id):
            instance = self._load(instance_id, expected_version)
            updated = self._save(
                instance,
                instance.request_more_info(actor_id, note, self._clock.now(), actor_name),
            )
            logger.info("approval_info_requested")
            self._emit(
                ApprovalEventType.APPROVAL_INFO_REQUESTED, updated, actor_id, note=note
            )
            return updated

    def provide_info(
        self,
        instance_id: UUID,
        actor_id: UUID,
        note: str,
        actor_name: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(instance_id=instance_id, actor_id=actor_id):
            instance = self._load(instance_id, expected_version)
            updated = self._save(
                instance,
                instance.provide_info(actor_id, note, self._clock.now(), actor_name),
            )
            logger.info("approval_info_provided")
            return updated

    def cancel(
        self,
        instance_id: UUID,
        actor_id: UUID,
        reason: str,
        actor_name: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(instance_id=instance_id, actor_id=actor_id):
            instance = self._load(instance_id, expected_version)
            cancelled = self._save(
                instance,
                instance.cancel(actor_id, reason, self._clock.now(), actor_name),
            )
            logger.info("approval_cancelled", extra={"reason": reason})
            self._emit(
                ApprovalEventType.APPROVAL_CANCELLED, cancelled, actor_id, reason=reason
            )
            self._record_outcome(cancelled)
            return cancelled

    def add_comment(
        self,
        instance_id: UUID,
        author_id: UUID,
        text: str,
        author_name: str | None = None,
        is_internal: bool = False,
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(instance_id=instance_id, actor_id=author_id):
            instance = self._load(instance_id, expected_version)
            commented = self._save(
                instance,
                instance.add_comment(
                    author_id, text, self._clock.now(), author_name, is_internal
                ),
            )
            logger.info("approval_commented", extra={"is_internal": is_internal})
            self._emit(
                ApprovalEventType.APPROVAL_COMMENTED,
                commented,
                author_id,
                is_internal=is_internal,
            )
            return commented

    def escalate(
        self,
        instance_id: UUID,
        reason: str,
        escalated_by_id: UUID,
        escalated_by_name: str | None = None,
        expected_version: int | None = None,
    ) -> EscalationResult:
        """Manual escalation to the next configured level."""
        instance = self._load(instance_id, expected_version)
        return self._escalations.escalate(
            instance, reason, escalated_by_id, escalated_by_name
        )
