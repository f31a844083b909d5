"""
Approval events (``approval_kernel.domain.events``).

Responsibility
--------------
Typed notifications the engine emits when an approval changes.  Delivery
(e-mail, in-app, audit store) is an external concern reached through the
``EventPublisher`` protocol; the engine never waits on it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects plus a protocol.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID, uuid4

from approval_kernel.domain.instance import ApprovalInstance


class ApprovalEventType(str, Enum):
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_ASSIGNED = "approval_assigned"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_ESCALATED = "approval_escalated"
    APPROVAL_CANCELLED = "approval_cancelled"
    APPROVAL_INFO_REQUESTED = "approval_info_requested"
    APPROVAL_COMMENTED = "approval_commented"
    SLA_AT_RISK = "sla_at_risk"
    SLA_BREACHED = "sla_breached"


@dataclass(frozen=True)
class ApprovalEvent:
    """One emitted notification.  ``payload`` holds event-specific details."""

    event_type: ApprovalEventType
    instance_id: UUID
    tenant_id: UUID
    validation_id: UUID
    workflow_id: UUID
    level: int
    actor_id: UUID
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)

    @classmethod
    def for_instance(
        cls,
        event_type: ApprovalEventType,
        instance: ApprovalInstance,
        actor_id: UUID,
        occurred_at: datetime,
        **payload: Any,
    ) -> ApprovalEvent:
        return cls(
            event_type=event_type,
            instance_id=instance.instance_id,
            tenant_id=instance.tenant_id,
            validation_id=instance.validation_id,
            workflow_id=instance.workflow_id,
            level=int(instance.level),
            actor_id=actor_id,
            occurred_at=occurred_at,
            payload=payload,
        )


class EventPublisher(Protocol):
    """Pluggable sink for approval events."""

    def publish(self, event: ApprovalEvent) -> None:
        ...
