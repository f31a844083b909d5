"""
SlaMonitor -- periodic SLA sweep with automatic escalation.

Contract:
    ``sweep()`` visits every open approval of every tenant, recomputes its
    SLA status from the injected clock and, on a new breach, escalates it
    when the workflow asks for that.  ``start()`` / ``stop()`` run the sweep
    on a background thread every ``sweep_interval_seconds``.

Architecture: approval_kernel/services.  Uses approval_engines.sla for the
    pure status computation and EscalationManager for escalation.

Invariants enforced:
    - One transaction per instance: a failure on one approval never rolls
      back the others.
    - The instance is re-read inside its transaction and its status checked
      again immediately before mutating; a human action that won the race
      simply takes the instance out of the sweep.
    - Idempotent: a sweep at the same instant changes nothing twice, and a
      breach escalates only on the transition into BREACHED.
    - Events are released only after the transaction commits.

Failure modes:
    - OptimisticLockError: logged as a warning and counted as a conflict.
    - OperationNotAllowedError, NoEligibleApproverError,
      EscalationChainExceededError or ConfigurationError while escalating:
      a configuration problem.  Logged at ERROR and listed in the sweep
      report; the breach itself is still recorded.
    - Any other error on one instance: that transaction is rolled back, the
      error is logged and listed in ``SweepReport.failures``, and the sweep
      moves on to the next instance.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_engines.matrix_resolver import ApproverDirectory
from approval_engines.sla import compute_sla_status
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.events import (
    ApprovalEvent,
    ApprovalEventType,
    EventPublisher,
)
from approval_kernel.domain.instance import (
    SYSTEM_ACTOR_ID,
    SYSTEM_ACTOR_NAME,
    ApprovalInstance,
    SlaStatus,
)
from approval_kernel.domain.workflow import TimeoutBehavior
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    ConfigurationError,
    EscalationChainExceededError,
    NoEligibleApproverError,
    OperationNotAllowedError,
    OptimisticLockError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.escalation_manager import EscalationManager
from approval_kernel.services.events import BufferedEventPublisher
from approval_kernel.services.instance_store import InstanceStore

logger = get_logger("services.sla_monitor")

SLA_ESCALATION_REASON = "SLA exceeded"


@dataclass
class SweepReport:
    """Counters and problems of one sweep."""

    checked: int = 0
    on_time: int = 0
    at_risk: int = 0
    breached: int = 0
    newly_breached: int = 0
    escalated: int = 0
    conflicts: int = 0
    skipped: int = 0
    failed: int = 0
    configuration_errors: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)


class SlaMonitor:
    """Recomputes SLA status and escalates on breach.

    Non-goals:
        - NOT a distributed scheduler: run one monitor per deployment.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        settings: EngineSettings | None = None,
        directory: ApproverDirectory | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._publisher = publisher
        self._settings = settings or EngineSettings()
        self._directory = directory
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def sweep(self) -> SweepReport:
        """Run one pass over all open approvals."""
        report = SweepReport()
        session = self._session_factory()
        try:
            instance_ids = InstanceStore(session).open_instance_ids()
        finally:
            session.close()

        for instance_id in instance_ids:
            if self._stop_event.is_set():
                break
            self._check_instance(instance_id, report)

        logger.info("sla_sweep_completed", extra={
            "checked": report.checked,
            "at_risk": report.at_risk,
            "breached": report.breached,
            "newly_breached": report.newly_breached,
            "escalated": report.escalated,
            "conflicts": report.conflicts,
            "failed": report.failed,
            "configuration_errors": len(report.configuration_errors),
        })
        return report

    def _check_instance(self, instance_id: UUID, report: SweepReport) -> None:
        session = self._session_factory()
        events = BufferedEventPublisher(self._publisher)
        try:
            with LogContext.bind(instance_id=instance_id):
                self._process(session, instance_id, events, report)
            session.commit()
            events.release()
        except OptimisticLockError:
            session.rollback()
            events.discard()
            report.conflicts += 1
            logger.warning("sla_check_conflict", extra={
                "instance_id": str(instance_id),
            })
        except ApprovalNotFoundError:
            session.rollback()
            events.discard()
            report.skipped += 1
        except Exception as exc:
            session.rollback()
            events.discard()
            report.failed += 1
            report.failures.append({
                "instance_id": str(instance_id),
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            logger.exception("sla_check_failed", extra={
                "instance_id": str(instance_id),
            })
        finally:
            session.close()

    def _process(
        self,
        session: Session,
        instance_id: UUID,
        events: BufferedEventPublisher,
        report: SweepReport,
    ) -> None:
        store = InstanceStore(session)
        instance = store.get(instance_id, fresh=True, for_update=True)
        if not instance.is_open:
            report.skipped += 1
            return

        report.checked += 1
        now = self._clock.now()
        status = compute_sla_status(now, instance.due_date, self._settings.at_risk_window)
        self._count(status, report)

        updated = instance.apply_sla_status(status, now)
        if updated is instance:
            return
        store.update(updated, expected_version=instance.version)

        if status == SlaStatus.AT_RISK:
            events.publish(ApprovalEvent.for_instance(
                ApprovalEventType.SLA_AT_RISK,
                updated,
                SYSTEM_ACTOR_ID,
                now,
                due_date=updated.due_date.isoformat(),
            ))
            logger.info("sla_at_risk", extra={"due_date": updated.due_date.isoformat()})
            return

        if status != SlaStatus.BREACHED:
            return

        report.newly_breached += 1
        events.publish(ApprovalEvent.for_instance(
            ApprovalEventType.SLA_BREACHED,
            updated,
            SYSTEM_ACTOR_ID,
            now,
            due_date=updated.due_date.isoformat(),
            timeout_behavior=updated.policy.timeout_behavior.value,
        ))
        logger.warning("sla_breached", extra={
            "due_date": updated.due_date.isoformat(),
            "approval_level": updated.level.name,
        })

        if self._should_escalate(updated):
            self._escalate(session, updated, events, report)

    @staticmethod
    def _count(status: SlaStatus, report: SweepReport) -> None:
        if status == SlaStatus.BREACHED:
            report.breached += 1
        elif status == SlaStatus.AT_RISK:
            report.at_risk += 1
        else:
            report.on_time += 1

    @staticmethod
    def _should_escalate(instance: ApprovalInstance) -> bool:
        policy = instance.policy
        return (
            policy.timeout_behavior == TimeoutBehavior.ESCALATE
            and policy.allow_escalation
            and policy.permits_escalation(instance.level)
        )

    def _escalate(
        self,
        session: Session,
        instance: ApprovalInstance,
        events: BufferedEventPublisher,
        report: SweepReport,
    ) -> None:
        manager = EscalationManager(
            session, self._clock, events, self._settings, self._directory
        )
        try:
            result = manager.escalate(
                instance, SLA_ESCALATION_REASON, SYSTEM_ACTOR_ID, SYSTEM_ACTOR_NAME
            )
        except (
            OperationNotAllowedError,
            NoEligibleApproverError,
            EscalationChainExceededError,
            ConfigurationError,
        ) as exc:
            report.configuration_errors.append({
                "instance_id": str(instance.instance_id),
                "workflow_code": instance.policy.workflow_code,
                "level": instance.level.name,
                "code": exc.code,
                "error": str(exc),
            })
            logger.error("sla_escalation_misconfigured", extra={
                "workflow_code": instance.policy.workflow_code,
                "approval_level": instance.level.name,
                "error_code": exc.code,
                "error": str(exc),
            })
            return
        report.escalated += 1
        logger.info("sla_escalation_created", extra={
            "successor_id": str(result.successor.instance_id),
            "to_level": result.successor.level.name,
        })

    # -------------------------------------------------------------------------
    # Background operation
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start sweeping in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="sla-monitor",
            daemon=True,
        )
        self._thread.start()
        logger.info("sla_monitor_started", extra={
            "sweep_interval_seconds": self._settings.sweep_interval_seconds,
        })

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sla_monitor_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("sla_sweep_failed")
            self._stop_event.wait(timeout=self._settings.sweep_interval_seconds)
