"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_service import (
    ApprovalService,
    RejectionOutcome,
    WorkflowStart,
)
from approval_kernel.services.escalation_manager import EscalationManager, EscalationResult
from approval_kernel.services.events import (
    BufferedEventPublisher,
    InMemoryEventPublisher,
    LoggingEventPublisher,
    publish_safely,
)
from approval_kernel.services.instance_store import InstanceStore
from approval_kernel.services.sla_monitor import SlaMonitor, SweepReport
from approval_kernel.services.workflow_service import WorkflowService

__all__ = [
    "ApprovalService",
    "BufferedEventPublisher",
    "EscalationManager",
    "EscalationResult",
    "InMemoryEventPublisher",
    "InstanceStore",
    "LoggingEventPublisher",
    "RejectionOutcome",
    "SlaMonitor",
    "SweepReport",
    "WorkflowService",
    "WorkflowStart",
    "publish_safely",
]
