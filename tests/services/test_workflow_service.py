"""
Tests for WorkflowService -- template administration against the database.
"""

from uuid import uuid4

import pytest

from approval_engines import stats as stats_engine
from approval_kernel.domain.workflow import WorkflowStats, WorkflowStatus
from approval_kernel.exceptions import ConfigurationError, WorkflowNotFoundError
from approval_kernel.services.workflow_service import WorkflowService


class TestRegistration:
    def test_register_round_trips(self, workflow_service, template_factory, test_actor_id):
        template = template_factory(status=WorkflowStatus.DRAFT, description="errors > 5")
        stored = workflow_service.register(template, test_actor_id)
        assert stored == template
        assert workflow_service.get(template.workflow_id) == template

    def test_unknown_workflow(self, workflow_service, db_engine):
        with pytest.raises(WorkflowNotFoundError):
            workflow_service.get(uuid4())

    def test_unknown_version(self, workflow_service, registered_template):
        template = registered_template()
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            workflow_service.get(template.workflow_id, version=99)
        assert exc_info.value.version == 99

    def test_publish_definition_versions_by_code(
        self, workflow_service, template_factory, test_actor_id
    ):
        first = workflow_service.publish_definition(template_factory(), test_actor_id)
        second = workflow_service.publish_definition(
            template_factory(default_sla_hours=8), test_actor_id
        )

        assert first.version == 1
        assert second.version == 2
        assert second.workflow_id == first.workflow_id
        assert workflow_service.get(first.workflow_id, 1).status == WorkflowStatus.INACTIVE
        assert workflow_service.get(first.workflow_id, 2).is_active

    def test_publish_definition_as_draft(self, workflow_service, template_factory, test_actor_id):
        stored = workflow_service.publish_definition(
            template_factory(), test_actor_id, activate=False
        )
        assert stored.status == WorkflowStatus.DRAFT
        assert workflow_service.list_active(stored.tenant_id) == []


class TestLifecycle:
    def test_activate_retires_previous_revision(
        self, workflow_service, registered_template, test_actor_id
    ):
        template = registered_template()
        revised = workflow_service.revise(template.workflow_id, test_actor_id, default_sla_hours=8)
        assert revised.version == template.version + 1
        assert revised.status == WorkflowStatus.DRAFT

        workflow_service.activate(template.workflow_id, test_actor_id, revised.version)

        active = workflow_service.list_active(template.tenant_id)
        assert [(t.workflow_id, t.version) for t in active] == [
            (template.workflow_id, revised.version)
        ]
        assert workflow_service.get(template.workflow_id, template.version).status == (
            WorkflowStatus.INACTIVE
        )

    def test_activate_incomplete_template_refused(
        self, workflow_service, template_factory, test_actor_id
    ):
        stored = workflow_service.register(
            template_factory(status=WorkflowStatus.DRAFT, matrix=()), test_actor_id
        )
        with pytest.raises(ConfigurationError):
            workflow_service.activate(stored.workflow_id, test_actor_id)
        assert workflow_service.get(stored.workflow_id).status == WorkflowStatus.DRAFT

    def test_deactivate_and_archive(self, workflow_service, registered_template, test_actor_id):
        template = registered_template()
        assert workflow_service.deactivate(template.workflow_id, test_actor_id).status == (
            WorkflowStatus.INACTIVE
        )
        assert workflow_service.archive(template.workflow_id, test_actor_id).status == (
            WorkflowStatus.ARCHIVED
        )
        assert workflow_service.list_active(template.tenant_id) == []

    def test_clone(self, workflow_service, registered_template, test_actor_id):
        template = registered_template()
        copy = workflow_service.clone(template.workflow_id, "Copy", "copy", test_actor_id)
        assert copy.workflow_id != template.workflow_id
        assert copy.code == "COPY"
        assert copy.status == WorkflowStatus.DRAFT
        assert copy.steps == template.steps
        assert copy.matrix == template.matrix


class TestSelection:
    def test_select_for_uses_active_revisions_of_tenant(
        self, workflow_service, registered_template, snapshot_factory
    ):
        template = registered_template()
        registered_template(code="other_tenant", tenant_id=uuid4())

        selected = workflow_service.select_for(snapshot_factory(error_count=9))
        assert selected.workflow_id == template.workflow_id

    def test_inactive_templates_not_selected(
        self, workflow_service, registered_template, snapshot_factory, test_actor_id
    ):
        template = registered_template()
        workflow_service.deactivate(template.workflow_id, test_actor_id)
        assert workflow_service.select_for(snapshot_factory(error_count=9)) is None


class TestStatistics:
    def test_record_execution(self, workflow_service, registered_template):
        template = registered_template()
        workflow_service.record_execution(template.workflow_id, template.version, True, 2.0)
        updated = workflow_service.record_execution(
            template.workflow_id, template.version, False, 4.0
        )

        assert updated.stats == WorkflowStats(2, 1, 3.0)
        assert workflow_service.get(template.workflow_id).stats == updated.stats
        assert stats_engine.success_rate(updated.stats) == pytest.approx(50.0)

    def test_runs_finishing_in_other_sessions_are_all_counted(
        self, workflow_service, registered_template, session, session_factory
    ):
        template = registered_template()
        session.commit()
        other = WorkflowService(session_factory())
        other.get(template.workflow_id)

        workflow_service.record_execution(template.workflow_id, template.version, True, 2.0)
        session.commit()
        updated = other.record_execution(template.workflow_id, template.version, False, 4.0)
        other.session.commit()

        assert updated.stats == WorkflowStats(2, 1, 3.0)
        expected = stats_engine.record_execution(
            stats_engine.record_execution(WorkflowStats(), True, 2.0), False, 4.0
        )
        assert updated.stats == expected

    def test_statistics_do_not_conflict_with_template_edits(
        self, workflow_service, registered_template, session, session_factory, test_actor_id
    ):
        template = registered_template()
        session.commit()
        workflow_service.get(template.workflow_id)

        runner = WorkflowService(session_factory())
        runner.record_execution(template.workflow_id, template.version, True, 1.0)
        runner.session.commit()

        deactivated = workflow_service.deactivate(template.workflow_id, test_actor_id)
        session.commit()

        assert deactivated.status == WorkflowStatus.INACTIVE
        session.expire_all()
        assert workflow_service.get(template.workflow_id).stats.total_executions == 1
