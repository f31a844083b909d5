"""
WorkflowService -- workflow template administration and selection.

Responsibility:
    Registers template revisions, drives their lifecycle (activate,
    deactivate, archive, revise, clone), selects the template for a
    validation outcome and folds finished runs into template statistics.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    approval_engines.

Invariants enforced:
    - Template edits create a new revision row; existing revisions keep
      their definition, so instances created from them are unaffected.
    - At most one ACTIVE revision per workflow: activating a revision
      deactivates the previously active one.
    - Activation is refused without an enabled step and matrix entry.
    - Selection only ever sees the snapshot tenant's ACTIVE revisions.

Failure modes:
    - WorkflowNotFoundError for an unknown id/version.
    - ConfigurationError on activation of an incomplete template.
    - OptimisticLockError when two transactions change the same revision
      concurrently.  Statistics updates are applied in place and never take
      part in that check.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.workflow_selector import select as select_workflow
from approval_kernel.domain.validation import ValidationSnapshot
from approval_kernel.domain.workflow import WorkflowStatus, WorkflowTemplate
from approval_kernel.exceptions import OptimisticLockError, WorkflowNotFoundError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.workflow import WorkflowTemplateModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.workflow")


class WorkflowService(BaseService):
    """Write-side operations on workflow templates."""

    # -- loading ----------------------------------------------------------

    def _load_model(self, workflow_id: UUID, version: int | None = None) -> WorkflowTemplateModel:
        stmt = select(WorkflowTemplateModel).where(
            WorkflowTemplateModel.workflow_id == workflow_id
        )
        if version is None:
            stmt = stmt.order_by(WorkflowTemplateModel.version.desc()).limit(1)
        else:
            stmt = stmt.where(WorkflowTemplateModel.version == version)
        model = self.session.execute(stmt).scalars().first()
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id), version)
        return model

    def get(self, workflow_id: UUID, version: int | None = None) -> WorkflowTemplate:
        """A specific revision, or the latest one when ``version`` is None."""
        return self._load_model(workflow_id, version).to_dto()

    def list_active(self, tenant_id: UUID) -> list[WorkflowTemplate]:
        models = self.session.execute(
            select(WorkflowTemplateModel)
            .where(
                WorkflowTemplateModel.tenant_id == tenant_id,
                WorkflowTemplateModel.status == WorkflowStatus.ACTIVE.value,
            )
            .order_by(WorkflowTemplateModel.code)
        ).scalars()
        return [m.to_dto() for m in models]

    def _flush(self, model: WorkflowTemplateModel) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(
                "WorkflowTemplate", str(model.workflow_id)
            ) from exc

    # -- registration -----------------------------------------------------

    def register(self, template: WorkflowTemplate, actor_id: UUID) -> WorkflowTemplate:
        """Store a new template revision exactly as given."""
        model = WorkflowTemplateModel.from_dto(template, created_by_id=actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info("workflow_registered", extra={
            "workflow_id": str(template.workflow_id),
            "workflow_code": template.code,
            "workflow_version": template.version,
            "status": template.status.value,
        })
        return model.to_dto()

    def publish_definition(
        self,
        template: WorkflowTemplate,
        actor_id: UUID,
        activate: bool = True,
    ) -> WorkflowTemplate:
        """Store a loaded definition as the next revision of its code.

        A code seen before keeps its workflow id and gets the next version
        number; a new code starts at version 1.
        """
        existing = self.session.execute(
            select(WorkflowTemplateModel.workflow_id).where(
                WorkflowTemplateModel.tenant_id == template.tenant_id,
                WorkflowTemplateModel.code == template.code,
            ).limit(1)
        ).scalar_one_or_none()
        revision = replace(
            template,
            workflow_id=existing or template.workflow_id,
            version=self.next_version(template.tenant_id, template.code),
            status=WorkflowStatus.DRAFT,
        )
        stored = self.register(revision, actor_id)
        if activate:
            return self.activate(stored.workflow_id, actor_id, stored.version)
        return stored

    # -- lifecycle --------------------------------------------------------

    def _set_status(
        self,
        model: WorkflowTemplateModel,
        template: WorkflowTemplate,
        actor_id: UUID,
    ) -> WorkflowTemplate:
        model.status = template.status.value
        model.updated_by_id = actor_id
        self._flush(model)
        logger.info("workflow_status_changed", extra={
            "workflow_id": str(template.workflow_id),
            "workflow_code": template.code,
            "workflow_version": template.version,
            "status": template.status.value,
        })
        return template

    def activate(
        self, workflow_id: UUID, actor_id: UUID, version: int | None = None
    ) -> WorkflowTemplate:
        """Activate a revision and retire the previously active one."""
        model = self._load_model(workflow_id, version)
        activated = model.to_dto().activate()

        previous = self.session.execute(
            select(WorkflowTemplateModel).where(
                WorkflowTemplateModel.workflow_id == workflow_id,
                WorkflowTemplateModel.status == WorkflowStatus.ACTIVE.value,
                WorkflowTemplateModel.version != model.version,
            )
        ).scalars().all()
        for other in previous:
            self._set_status(other, other.to_dto().deactivate(), actor_id)

        with LogContext.bind(workflow_id=workflow_id, actor_id=actor_id):
            return self._set_status(model, activated, actor_id)

    def deactivate(
        self, workflow_id: UUID, actor_id: UUID, version: int | None = None
    ) -> WorkflowTemplate:
        model = self._load_model(workflow_id, version)
        return self._set_status(model, model.to_dto().deactivate(), actor_id)

    def archive(
        self, workflow_id: UUID, actor_id: UUID, version: int | None = None
    ) -> WorkflowTemplate:
        model = self._load_model(workflow_id, version)
        return self._set_status(model, model.to_dto().archive(), actor_id)

    def revise(self, workflow_id: UUID, actor_id: UUID, **changes) -> WorkflowTemplate:
        """Create the next DRAFT revision of the latest one with ``changes``."""
        latest = self.get(workflow_id)
        revision = latest.revise(**changes)
        return self.register(revision, actor_id)

    def clone(
        self,
        workflow_id: UUID,
        new_name: str,
        new_code: str,
        actor_id: UUID,
    ) -> WorkflowTemplate:
        source = self.get(workflow_id)
        return self.register(source.clone(new_name, new_code), actor_id)

    # -- selection --------------------------------------------------------

    def select_for(self, snapshot: ValidationSnapshot) -> WorkflowTemplate | None:
        """Template that applies to ``snapshot``; ``None`` when nothing matches."""
        return select_workflow(snapshot, self.list_active(snapshot.tenant_id))

    # -- statistics -------------------------------------------------------

    def record_execution(
        self,
        workflow_id: UUID,
        version: int,
        success: bool,
        completion_hours: float,
    ) -> WorkflowTemplate:
        """Fold one finished run into the revision's statistics.

        One UPDATE on the current column values; ``row_version`` is left
        alone, so runs finishing concurrently on one revision all add up.
        """
        model = WorkflowTemplateModel
        total = model.total_executions
        result = self.session.execute(
            update(model)
            .where(model.workflow_id == workflow_id, model.version == version)
            .values(
                total_executions=total + 1,
                successful_executions=model.successful_executions + (1 if success else 0),
                average_completion_time_hours=(
                    (model.average_completion_time_hours * total + completion_hours)
                    / (total + 1)
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise WorkflowNotFoundError(str(workflow_id), version)

        row = self._load_model(workflow_id, version)
        self.session.refresh(row)
        template = row.to_dto()
        logger.info("workflow_execution_recorded", extra={
            "workflow_id": str(workflow_id),
            "workflow_version": version,
            "success": success,
            "completion_hours": round(completion_hours, 4),
            "total_executions": template.stats.total_executions,
        })
        return template

    def next_version(self, tenant_id: UUID, code: str) -> int:
        current = self.session.execute(
            select(func.max(WorkflowTemplateModel.version)).where(
                WorkflowTemplateModel.tenant_id == tenant_id,
                WorkflowTemplateModel.code == code.upper(),
            )
        ).scalar_one_or_none()
        return (current or 0) + 1
