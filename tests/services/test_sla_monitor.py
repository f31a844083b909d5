"""
Tests for SlaMonitor.

The monitor works in its own sessions, so every test commits the data it
sets up before sweeping and expires the test session before reading back.

Covers:
- the 24h lifecycle: on time, at risk, breached and escalated
- idempotent sweeps and the escalate-only-on-transition rule
- timeout behaviours that do not escalate
- top-level breaches reported as configuration problems
- resolved instances are left alone
- one broken instance or template never stops the rest of the sweep
- background start/stop
"""

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest

from approval_config.settings import EngineSettings
from approval_kernel.domain.events import ApprovalEventType
from approval_kernel.domain.instance import (
    SYSTEM_ACTOR_ID,
    ApprovalStatus,
    HistoryAction,
    SlaStatus,
)
from approval_kernel.domain.workflow import (
    ApprovalLevel,
    MatrixEntry,
    TimeoutBehavior,
)
from approval_kernel.services.instance_store import InstanceStore
from approval_kernel.services.sla_monitor import SLA_ESCALATION_REASON, SlaMonitor

REQUESTER = uuid4()
REVIEWER = uuid4()


@pytest.fixture
def monitor(session_factory, deterministic_clock, publisher, engine_settings):
    return SlaMonitor(session_factory, deterministic_clock, publisher, engine_settings)


@pytest.fixture
def open_committed(approval_service, snapshot_factory, session):
    """Start a workflow and commit it so the monitor can see it."""

    def _open():
        instance = approval_service.start_workflow(snapshot_factory(), REQUESTER).instance
        session.commit()
        return instance

    return _open


def reload(session, instance_id):
    session.expire_all()
    return InstanceStore(session).get(instance_id)


class TestSlaLifecycle:
    def test_twenty_four_hour_escalation_scenario(
        self, monitor, escalating_template, open_committed, session, deterministic_clock,
        publisher,
    ):
        session.commit()
        instance = open_committed()
        publisher.clear()

        deterministic_clock.advance(hours=19, minutes=59)
        report = monitor.sweep()
        assert report.on_time == 1
        assert reload(session, instance.instance_id).sla_status == SlaStatus.ON_TIME

        deterministic_clock.advance(hours=1, minutes=1)
        report = monitor.sweep()
        assert report.at_risk == 1
        at_risk = reload(session, instance.instance_id)
        assert at_risk.sla_status == SlaStatus.AT_RISK
        assert not at_risk.is_overdue
        assert len(publisher.of_type(ApprovalEventType.SLA_AT_RISK)) == 1

        deterministic_clock.advance(hours=4)
        report = monitor.sweep()
        assert report.newly_breached == 1
        assert report.escalated == 1
        assert report.configuration_errors == []

        escalated = reload(session, instance.instance_id)
        assert escalated.status == ApprovalStatus.ESCALATED
        assert escalated.is_overdue
        assert escalated.sla_status == SlaStatus.BREACHED
        assert escalated.escalation_reason == SLA_ESCALATION_REASON
        assert escalated.history[-1].actor_id == SYSTEM_ACTOR_ID
        assert [h.action for h in escalated.history][-2:] == [
            HistoryAction.SLA_BREACHED,
            HistoryAction.ESCALATED,
        ]

        successor = InstanceStore(session).find_open_for_validation(instance.validation_id)
        assert successor.level == ApprovalLevel.MANAGER
        assert successor.escalated_from_id == instance.instance_id
        assert successor.due_date == deterministic_clock.now() + timedelta(hours=12)

        assert len(publisher.of_type(ApprovalEventType.SLA_BREACHED)) == 1
        assert len(publisher.of_type(ApprovalEventType.APPROVAL_ESCALATED)) == 1

    def test_sweep_is_idempotent(self, monitor, escalating_template, open_committed, session,
                                 deterministic_clock, publisher):
        session.commit()
        instance = open_committed()
        deterministic_clock.advance(hours=25)

        first = monitor.sweep()
        events_after_first = len(publisher.events)
        second = monitor.sweep()

        assert first.escalated == 1
        assert second.newly_breached == 0
        assert second.escalated == 0
        assert len(publisher.events) == events_after_first

        stored = reload(session, instance.instance_id)
        breaches = [h for h in stored.history if h.action == HistoryAction.SLA_BREACHED]
        assert len(breaches) == 1

    def test_breach_without_escalation(self, monitor, registered_template, open_committed,
                                       session, deterministic_clock, publisher):
        registered_template(timeout_behavior=TimeoutBehavior.NOTIFY)
        session.commit()
        instance = open_committed()
        deterministic_clock.advance(hours=30)

        report = monitor.sweep()

        assert report.newly_breached == 1
        assert report.escalated == 0
        stored = reload(session, instance.instance_id)
        assert stored.status == ApprovalStatus.PENDING
        assert stored.is_overdue
        event = publisher.of_type(ApprovalEventType.SLA_BREACHED)[0]
        assert event.payload["timeout_behavior"] == TimeoutBehavior.NOTIFY.value

    def test_breach_at_top_level_reported(self, monitor, registered_template, open_committed,
                                          session, deterministic_clock, captured_logs):
        registered_template(
            levels=(ApprovalLevel.DIRECTOR,),
            timeout_behavior=TimeoutBehavior.ESCALATE,
        )
        session.commit()
        instance = open_committed()
        deterministic_clock.advance(hours=30)

        report = monitor.sweep()

        assert report.escalated == 0
        assert len(report.configuration_errors) == 1
        assert report.configuration_errors[0]["code"] == "OPERATION_NOT_ALLOWED"
        stored = reload(session, instance.instance_id)
        assert stored.status == ApprovalStatus.PENDING
        assert stored.sla_status == SlaStatus.BREACHED
        assert any(
            r["message"] == "sla_escalation_misconfigured" and r["level"] == "ERROR"
            for r in captured_logs()
        )

    def test_level_that_may_not_escalate(self, monitor, registered_template, open_committed,
                                         session, deterministic_clock):
        matrix = (
            MatrixEntry(ApprovalLevel.SUPERVISOR, "Supervisor", can_escalate=False),
            MatrixEntry(ApprovalLevel.MANAGER, "Manager"),
        )
        registered_template(
            levels=(ApprovalLevel.SUPERVISOR, ApprovalLevel.MANAGER),
            matrix=matrix,
            timeout_behavior=TimeoutBehavior.ESCALATE,
        )
        session.commit()
        instance = open_committed()
        deterministic_clock.advance(hours=30)

        report = monitor.sweep()

        assert report.newly_breached == 1
        assert report.escalated == 0
        assert report.configuration_errors == []
        assert reload(session, instance.instance_id).status == ApprovalStatus.PENDING

    def test_resolved_instances_ignored(self, monitor, escalating_template, open_committed,
                                        approval_service, session, deterministic_clock):
        session.commit()
        instance = open_committed()
        approval_service.assign(instance.instance_id, REVIEWER)
        approval_service.approve(instance.instance_id, REVIEWER)
        session.commit()
        deterministic_clock.advance(hours=30)

        report = monitor.sweep()

        assert report.checked == 0
        stored = reload(session, instance.instance_id)
        assert stored.status == ApprovalStatus.APPROVED
        assert not stored.is_overdue

    def test_custom_at_risk_window(self, session_factory, deterministic_clock, publisher,
                                   escalating_template, open_committed, session):
        session.commit()
        instance = open_committed()
        monitor = SlaMonitor(
            session_factory, deterministic_clock, publisher, EngineSettings(at_risk_hours=12)
        )
        deterministic_clock.advance(hours=13)

        assert monitor.sweep().at_risk == 1
        assert reload(session, instance.instance_id).sla_status == SlaStatus.AT_RISK


class TestSweepResilience:
    def test_template_that_cannot_escalate_is_reported(
        self, monitor, workflow_service, template_factory, open_committed, session,
        deterministic_clock, test_actor_id,
    ):
        # stored ACTIVE directly, as an older revision predating activation checks
        workflow_service.register(
            template_factory(escalation_sla_hours=0, timeout_behavior=TimeoutBehavior.ESCALATE),
            test_actor_id,
        )
        session.commit()
        first = open_committed()
        second = open_committed()
        deterministic_clock.advance(hours=25)

        report = monitor.sweep()

        assert report.checked == 2
        assert report.newly_breached == 2
        assert report.escalated == 0
        assert report.failed == 0
        assert [e["code"] for e in report.configuration_errors] == [
            "CONFIGURATION_ERROR",
            "CONFIGURATION_ERROR",
        ]
        for instance in (first, second):
            stored = reload(session, instance.instance_id)
            assert stored.status == ApprovalStatus.PENDING
            assert stored.sla_status == SlaStatus.BREACHED

    def test_unexpected_error_on_one_instance_does_not_stop_sweep(
        self, monitor, registered_template, open_committed, session, deterministic_clock,
        publisher, captured_logs,
    ):
        registered_template(timeout_behavior=TimeoutBehavior.NOTIFY)
        session.commit()
        broken = open_committed()
        healthy = open_committed()
        publisher.clear()
        deterministic_clock.advance(hours=30)

        original_update = InstanceStore.update

        def _update(store, instance, expected_version):
            if instance.instance_id == broken.instance_id:
                raise RuntimeError("disk full")
            return original_update(store, instance, expected_version)

        with patch.object(InstanceStore, "update", _update):
            report = monitor.sweep()

        assert report.failed == 1
        assert report.failures == [{
            "instance_id": str(broken.instance_id),
            "error_type": "RuntimeError",
            "error": "disk full",
        }]
        assert report.newly_breached == 1
        assert reload(session, healthy.instance_id).is_overdue
        assert not reload(session, broken.instance_id).is_overdue
        breached = publisher.of_type(ApprovalEventType.SLA_BREACHED)
        assert [e.instance_id for e in breached] == [healthy.instance_id]
        assert any(r["message"] == "sla_check_failed" for r in captured_logs())


class TestBackgroundRunner:
    def test_start_and_stop(self, session_factory, deterministic_clock, db_engine):
        monitor = SlaMonitor(
            session_factory, deterministic_clock, settings=EngineSettings(sweep_interval_seconds=1)
        )
        monitor.start()
        assert monitor.is_running
        monitor.stop(timeout=5)
        assert not monitor.is_running
