"""SQLAlchemy ORM models for the approval kernel."""

from approval_kernel.models.instance import (
    ApprovalCommentModel,
    ApprovalHistoryModel,
    ApprovalInstanceModel,
)
from approval_kernel.models.workflow import WorkflowTemplateModel

__all__ = [
    "ApprovalCommentModel",
    "ApprovalHistoryModel",
    "ApprovalInstanceModel",
    "WorkflowTemplateModel",
]
