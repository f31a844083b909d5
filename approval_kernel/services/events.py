"""
Event publishers (``approval_kernel.services.events``).

Implementations of the ``EventPublisher`` protocol plus the fire-and-forget
delivery helper every service uses.  A failing subscriber is logged and
never fails the approval action that produced the event.

Services never hand an event to a subscriber before the change it
describes has committed: they publish into a ``BufferedEventPublisher``
that is released after commit and discarded on rollback.
"""

from __future__ import annotations

import threading

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from approval_kernel.domain.events import ApprovalEvent, EventPublisher
from approval_kernel.logging_config import get_logger

logger = get_logger("services.events")


def publish_safely(publisher: EventPublisher | None, event: ApprovalEvent) -> None:
    """Deliver ``event``; log and drop any delivery failure."""
    if publisher is None:
        return
    try:
        publisher.publish(event)
    except Exception:
        logger.exception("event_publish_failed", extra={
            "event_type": event.event_type.value,
            "event_id": str(event.event_id),
            "instance_id": str(event.instance_id),
        })


class InMemoryEventPublisher:
    """Collects events in memory.  Thread-safe."""

    def __init__(self) -> None:
        self._events: list[ApprovalEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: ApprovalEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ApprovalEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type) -> list[ApprovalEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventPublisher:
    """Writes every event as a structured log record."""

    def publish(self, event: ApprovalEvent) -> None:
        logger.info(event.event_type.value, extra={
            "event_id": str(event.event_id),
            "instance_id": str(event.instance_id),
            "tenant_id": str(event.tenant_id),
            "validation_id": str(event.validation_id),
            "approval_level": event.level,
            "event_actor_id": str(event.actor_id),
            "occurred_at": event.occurred_at.isoformat(),
            "payload": event.payload,
        })


class BufferedEventPublisher:
    """Holds events until the surrounding transaction has committed.

    ``release()`` forwards the buffered events to the target; ``discard()``
    drops them after a rollback.
    """

    def __init__(self, target: EventPublisher | None) -> None:
        self._target = target
        self._pending: list[ApprovalEvent] = []

    def publish(self, event: ApprovalEvent) -> None:
        self._pending.append(event)

    def release(self) -> int:
        pending, self._pending = self._pending, []
        for event in pending:
            publish_safely(self._target, event)
        return len(pending)

    def discard(self) -> None:
        self._pending.clear()


class SessionEventPublisher(BufferedEventPublisher):
    """Buffer bound to a session's transactions.

    Released by the session's ``after_commit`` event, discarded by
    ``after_rollback``.  Events published inside a transaction that never
    commits are never delivered.
    """

    def __init__(self, session: Session, target: EventPublisher | None) -> None:
        super().__init__(target)
        sa_event.listen(session, "after_commit", self._on_commit)
        sa_event.listen(session, "after_rollback", self._on_rollback)

    def _on_commit(self, session: Session) -> None:
        self.release()

    def _on_rollback(self, session: Session) -> None:
        self.discard()
