"""Tests for approval_kernel.logging_config: JSON lines, LogContext, setup."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import ApprovalLevel
from approval_kernel.exceptions import OptimisticLockError, WorkflowNotFoundError
from approval_kernel.logging_config import (
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def log_stream():
    """Fresh logging setup writing JSON lines into a StringIO."""
    reset_logging()
    LogContext.clear()
    stream = StringIO()
    configure_logging(stream=stream, level="DEBUG")

    def _lines() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _lines
    LogContext.clear()
    reset_logging()


class TestJsonLines:
    def test_header_fields(self, log_stream):
        get_logger("services.approval_service").info("approval_granted")

        (line,) = log_stream()
        assert line["message"] == "approval_granted"
        assert line["level"] == "INFO"
        assert line["logger"] == "approval_kernel.services.approval_service"
        assert datetime.fromisoformat(line["ts"]).tzinfo is not None

    def test_extra_values_serialized(self, log_stream):
        successor = uuid4()
        due = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
        get_logger("test").info("approval_escalated", extra={
            "successor_id": successor,
            "due_date": due,
            "to_level": ApprovalLevel.MANAGER,
            "amount": Decimal("1000.50"),
            "tags": ("payroll", "q1"),
        })

        (line,) = log_stream()
        assert line["successor_id"] == str(successor)
        assert line["due_date"] == "2024-01-02T12:00:00+00:00"
        assert line["to_level"] == 3
        assert line["amount"] == "1000.50"
        assert line["tags"] == ["payroll", "q1"]

    def test_extra_cannot_override_header(self, log_stream):
        get_logger("test").info("approval_requested", extra={"logger": "spoofed"})

        (line,) = log_stream()
        assert line["logger"] == "approval_kernel.test"

    def test_level_threshold(self, log_stream):
        reset_logging()
        stream = StringIO()
        configure_logging(stream=stream)
        logger = get_logger("test")
        logger.debug("sla_checked")
        logger.warning("approval_version_conflict")

        messages = [json.loads(line)["message"] for line in stream.getvalue().splitlines()]
        assert messages == ["approval_version_conflict"]


class TestExceptionFields:
    def test_plain_exception(self, log_stream):
        try:
            raise ValueError("bad threshold")
        except ValueError:
            get_logger("test").error("rule_failed", exc_info=True)

        (line,) = log_stream()
        assert line["exc_type"] == "ValueError"
        assert line["exc_message"] == "bad threshold"
        assert "exc_code" not in line
        assert "ValueError" in line["traceback"]

    def test_kernel_exception_attributes(self, log_stream):
        try:
            raise WorkflowNotFoundError("wf-1", 3)
        except WorkflowNotFoundError:
            get_logger("test").error("workflow_lookup_failed", exc_info=True)

        (line,) = log_stream()
        assert line["exc_code"] == "WORKFLOW_NOT_FOUND"
        assert line["exc_workflow_id"] == "wf-1"
        assert line["exc_version"] == 3

    def test_concurrency_error_code(self, log_stream):
        instance_id = str(uuid4())
        try:
            raise OptimisticLockError("ApprovalInstance", instance_id, 2)
        except OptimisticLockError:
            get_logger("test").warning("approval_version_conflict", exc_info=True)

        (line,) = log_stream()
        assert line["exc_code"] == OptimisticLockError.code
        assert instance_id in line["exc_message"]


class TestLogContext:
    def test_bound_fields_stamped_on_lines(self, log_stream):
        tenant, instance = uuid4(), uuid4()
        logger = get_logger("test")
        with LogContext.bind(tenant_id=tenant, instance_id=instance):
            logger.info("inside")
        logger.info("outside")

        inside, outside = log_stream()
        assert inside["tenant_id"] == str(tenant)
        assert inside["instance_id"] == str(instance)
        assert "tenant_id" not in outside
        assert "instance_id" not in outside

    def test_nested_bind_restores_outer(self):
        LogContext.set(correlation_id="outer", actor_id="a")
        with LogContext.bind(correlation_id="inner", workflow_id="w"):
            assert LogContext.get_all() == {
                "correlation_id": "inner",
                "actor_id": "a",
                "workflow_id": "w",
            }
        assert LogContext.get_all() == {"correlation_id": "outer", "actor_id": "a"}

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(instance_id="i"):
                raise RuntimeError("boom")
        assert "instance_id" not in LogContext.get_all()

    def test_none_does_not_overwrite(self):
        LogContext.set(tenant_id="t")
        LogContext.set(tenant_id=None, actor_id="a")
        assert LogContext.get_all() == {"tenant_id": "t", "actor_id": "a"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(approval_level="MANAGER")

    def test_clear(self):
        LogContext.set(correlation_id="c", tenant_id="t")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_only_first_call_configures(self):
        reset_logging()
        try:
            assert configure_logging(handler=logging.NullHandler())
            assert not configure_logging(handler=logging.NullHandler())
            assert len(logging.getLogger("approval_kernel").handlers) == 1
        finally:
            reset_logging()

    def test_level_by_name(self):
        reset_logging()
        try:
            configure_logging(level="warning", handler=logging.NullHandler())
            assert logging.getLogger("approval_kernel").level == logging.WARNING
        finally:
            reset_logging()

    def test_child_logger_names(self):
        assert get_logger("services.sla_monitor").name == "approval_kernel.services.sla_monitor"
