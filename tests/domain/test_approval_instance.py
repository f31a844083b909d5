"""
Tests for the ApprovalInstance aggregate -- pure state machine, no database.

Covers:
- create_instance(): first level, due date, priority validation
- Lifecycle transitions and the terminal-status guard
- Mandatory rejection reason
- escalate(): successor shape, priority floor, chain bounds
- add_comment(), provide_info()
- apply_sla_status(): idempotence and one history entry per change
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.instance import (
    SYSTEM_ACTOR_ID,
    ApprovalStatus,
    HistoryAction,
    SlaStatus,
    create_instance,
)
from approval_kernel.domain.workflow import ApprovalLevel, MatrixEntry
from approval_kernel.exceptions import (
    ConfigurationError,
    EscalationChainExceededError,
    InvalidStateTransitionError,
    OperationNotAllowedError,
    ValidationError,
)

REQUESTER = uuid4()
REVIEWER = uuid4()


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def policy(template_factory):
    return template_factory().snapshot_policy()


@pytest.fixture
def pending(policy, clock, tenant_id):
    return create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now())


@pytest.fixture
def in_review(pending, clock):
    return pending.assign(REVIEWER, clock.now(), "Rita Reviewer")


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateInstance:
    def test_starts_pending_at_first_step_level(self, pending, clock):
        assert pending.status == ApprovalStatus.PENDING
        assert pending.level == ApprovalLevel.SUPERVISOR
        assert pending.step_sequence == 1
        assert pending.due_date == clock.now() + timedelta(hours=24)
        assert pending.version == 1
        assert [h.action for h in pending.history] == [HistoryAction.CREATED]

    def test_due_date_after_requested_at(self, policy, clock, tenant_id):
        instance = create_instance(
            tenant_id, uuid4(), policy, REQUESTER, clock.now(), sla_hours=1
        )
        assert instance.due_date > instance.requested_at

    def test_zero_sla_hours_rejected(self, policy, clock, tenant_id):
        with pytest.raises(ValidationError):
            create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now(), sla_hours=0)

    def test_priority_below_one_rejected(self, policy, clock, tenant_id):
        with pytest.raises(ValidationError) as exc_info:
            create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now(), priority=0)
        assert exc_info.value.field == "priority"

    def test_workflow_without_steps(self, template_factory, clock, tenant_id):
        policy = template_factory(levels=()).snapshot_policy()
        with pytest.raises(ConfigurationError):
            create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now())


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_assign_moves_to_in_review(self, in_review):
        assert in_review.status == ApprovalStatus.IN_REVIEW
        assert in_review.assigned_to_id == REVIEWER
        assert in_review.assigned_to_name == "Rita Reviewer"
        assert in_review.version == 2

    def test_assign_twice_fails(self, in_review, clock):
        with pytest.raises(InvalidStateTransitionError):
            in_review.assign(uuid4(), clock.now())

    def test_approve_records_response_time(self, in_review, clock):
        clock.advance(minutes=95)
        approved = in_review.approve(REVIEWER, clock.now(), notes="looks fine")
        assert approved.status == ApprovalStatus.APPROVED
        assert approved.resolved_at == clock.now()
        assert approved.response_time_minutes == 95
        assert approved.resolution_notes == "looks fine"

    def test_pending_cannot_be_approved_directly(self, pending, clock):
        with pytest.raises(InvalidStateTransitionError):
            pending.approve(REVIEWER, clock.now())

    def test_each_mutation_appends_one_history_entry(self, pending, clock):
        approved = pending.assign(REVIEWER, clock.now()).approve(REVIEWER, clock.now())
        assert len(approved.history) == len(pending.history) + 2
        assert approved.history[: len(pending.history)] == pending.history

    @pytest.mark.parametrize("finish", ["approve", "reject", "cancel"])
    def test_terminal_instances_refuse_every_transition(self, in_review, clock, finish):
        if finish == "approve":
            done = in_review.approve(REVIEWER, clock.now())
        elif finish == "reject":
            done = in_review.reject(REVIEWER, "wrong totals", clock.now())
        else:
            done = in_review.cancel(REVIEWER, "withdrawn", clock.now())
        assert done.is_terminal

        attempts = [
            lambda: done.assign(REVIEWER, clock.now()),
            lambda: done.approve(REVIEWER, clock.now()),
            lambda: done.reject(REVIEWER, "again", clock.now()),
            lambda: done.request_more_info(REVIEWER, "?", clock.now()),
            lambda: done.cancel(REVIEWER, "again", clock.now()),
            lambda: done.escalate("late", REVIEWER, ApprovalLevel.MANAGER, clock.now()),
            lambda: done.apply_sla_status(SlaStatus.BREACHED, clock.now()),
        ]
        for attempt in attempts:
            with pytest.raises(InvalidStateTransitionError):
                attempt()

    def test_more_info_round_trip(self, in_review, clock):
        waiting = in_review.request_more_info(REVIEWER, "send the source file", clock.now())
        assert waiting.status == ApprovalStatus.MORE_INFO_REQUIRED
        assert waiting.response_time_minutes is None

        resumed = waiting.provide_info(REQUESTER, "attached", clock.now())
        assert resumed.status == ApprovalStatus.IN_REVIEW
        assert resumed.history[-1].action == HistoryAction.INFO_PROVIDED

    def test_more_info_only_from_in_review(self, pending, clock):
        with pytest.raises(InvalidStateTransitionError):
            pending.request_more_info(REVIEWER, "?", clock.now())

    def test_provide_info_only_when_requested(self, in_review, clock):
        with pytest.raises(InvalidStateTransitionError):
            in_review.provide_info(REQUESTER, "unprompted", clock.now())


class TestRejectionReason:
    def test_empty_reason_rejected_when_required(self, in_review, clock):
        with pytest.raises(ValidationError):
            in_review.reject(REVIEWER, "", clock.now())
        with pytest.raises(ValidationError):
            in_review.reject(REVIEWER, "   ", clock.now())

    def test_reason_given(self, in_review, clock):
        rejected = in_review.reject(REVIEWER, "duplicate rows", clock.now())
        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.rejection_reason == "duplicate rows"

    def test_reason_optional_when_not_required(self, template_factory, clock, tenant_id):
        policy = template_factory(require_comments_on_reject=False).snapshot_policy()
        instance = create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now())
        rejected = instance.assign(REVIEWER, clock.now()).reject(REVIEWER, None, clock.now())
        assert rejected.status == ApprovalStatus.REJECTED


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


class TestEscalate:
    def test_produces_one_linked_successor(self, in_review, clock):
        clock.advance(hours=3)
        escalated, successor = in_review.escalate(
            "needs a manager", REVIEWER, ApprovalLevel.MANAGER, clock.now()
        )
        assert escalated.status == ApprovalStatus.ESCALATED
        assert escalated.is_escalated
        assert escalated.escalation_reason == "needs a manager"

        assert successor.status == ApprovalStatus.PENDING
        assert successor.level == ApprovalLevel.MANAGER
        assert successor.escalated_from_id == in_review.instance_id
        assert successor.escalation_depth == 1
        assert successor.validation_id == in_review.validation_id
        assert successor.requested_at == clock.now()
        assert successor.due_date == clock.now() + timedelta(hours=12)
        assert successor.notes == "Escalated: needs a manager"
        assert successor.step_sequence == 2
        assert successor.priority == max(1, in_review.priority - 1)

    def test_priority_floor(self, policy, clock, tenant_id):
        urgent = create_instance(
            tenant_id, uuid4(), policy, REQUESTER, clock.now(), priority=1
        )
        _, successor = urgent.escalate("late", SYSTEM_ACTOR_ID, ApprovalLevel.MANAGER, clock.now())
        assert successor.priority == 1

    def test_level_must_increase(self, in_review, clock):
        with pytest.raises(EscalationChainExceededError):
            in_review.escalate("sideways", REVIEWER, ApprovalLevel.SUPERVISOR, clock.now())

    def test_chain_bound(self, pending, clock):
        _, successor = pending.escalate("late", REVIEWER, ApprovalLevel.MANAGER, clock.now())
        with pytest.raises(EscalationChainExceededError) as exc_info:
            successor.escalate(
                "late again", REVIEWER, ApprovalLevel.DIRECTOR, clock.now(), max_chain=1
            )
        assert exc_info.value.depth == 1

    def test_successor_must_not_be_due_on_arrival(self, template_factory, clock, tenant_id):
        policy = template_factory(escalation_sla_hours=0).snapshot_policy()
        instance = create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now())

        with pytest.raises(ConfigurationError) as exc_info:
            instance.escalate("late", REVIEWER, ApprovalLevel.MANAGER, clock.now())
        assert exc_info.value.workflow_code == policy.workflow_code

    def test_disallowed_by_workflow(self, template_factory, clock, tenant_id):
        policy = template_factory(allow_escalation=False).snapshot_policy()
        instance = create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now())
        with pytest.raises(OperationNotAllowedError):
            instance.escalate("late", REVIEWER, ApprovalLevel.MANAGER, clock.now())

    def test_disallowed_by_matrix(self, template_factory, clock, tenant_id):
        matrix = (
            MatrixEntry(ApprovalLevel.SUPERVISOR, "Supervisor", can_escalate=False),
            MatrixEntry(ApprovalLevel.MANAGER, "Manager"),
        )
        policy = template_factory(
            levels=(ApprovalLevel.SUPERVISOR, ApprovalLevel.MANAGER), matrix=matrix
        ).snapshot_policy()
        instance = create_instance(tenant_id, uuid4(), policy, REQUESTER, clock.now())
        with pytest.raises(OperationNotAllowedError):
            instance.escalate("late", REVIEWER, ApprovalLevel.MANAGER, clock.now())


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class TestComments:
    def test_comment_allowed_after_resolution(self, in_review, clock):
        approved = in_review.approve(REVIEWER, clock.now())
        commented = approved.add_comment(REQUESTER, "thanks", clock.now(), is_internal=True)
        assert commented.status == ApprovalStatus.APPROVED
        assert commented.comments[-1].text == "thanks"
        assert commented.comments[-1].is_internal
        assert commented.history[-1].action == HistoryAction.COMMENT_ADDED

    def test_blank_comment_rejected(self, pending, clock):
        with pytest.raises(ValidationError):
            pending.add_comment(REQUESTER, "  ", clock.now())


# ---------------------------------------------------------------------------
# SLA status
# ---------------------------------------------------------------------------


class TestApplySlaStatus:
    def test_unchanged_status_is_a_no_op(self, pending, clock):
        assert pending.apply_sla_status(SlaStatus.ON_TIME, clock.now()) is pending

    def test_breach_sets_overdue_and_records_system_entry(self, pending, clock):
        breached = pending.apply_sla_status(SlaStatus.BREACHED, clock.now())
        assert breached.is_overdue
        assert breached.sla_status == SlaStatus.BREACHED
        assert breached.history[-1].action == HistoryAction.SLA_BREACHED
        assert breached.history[-1].actor_id == SYSTEM_ACTOR_ID
        assert breached.apply_sla_status(SlaStatus.BREACHED, clock.now()) is breached

    def test_at_risk_recorded(self, pending, clock):
        at_risk = pending.apply_sla_status(SlaStatus.AT_RISK, clock.now())
        assert at_risk.sla_status == SlaStatus.AT_RISK
        assert not at_risk.is_overdue
        assert at_risk.history[-1].action == HistoryAction.SLA_AT_RISK

    def test_return_to_on_time_recorded(self, pending, clock):
        at_risk = pending.apply_sla_status(SlaStatus.AT_RISK, clock.now())
        clock.advance(minutes=5)
        back = at_risk.apply_sla_status(SlaStatus.ON_TIME, clock.now())

        assert back.sla_status == SlaStatus.ON_TIME
        assert not back.is_overdue
        assert back.version == at_risk.version + 1
        assert len(back.history) == len(at_risk.history) + 1
        assert back.history[-1].action == HistoryAction.SLA_ON_TIME
        assert back.history[-1].actor_id == SYSTEM_ACTOR_ID
        assert back.history[-1].occurred_at == clock.now()
