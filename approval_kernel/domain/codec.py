"""
Definition codec (``approval_kernel.domain.codec``).

Converts workflow configuration between frozen domain objects and plain
JSON-compatible dicts.  Used by the ORM models (template definitions and
instance policy snapshots are stored as JSON) and by
``approval_config.loader`` (YAML documents parse to the same dict shape).

Enum fields are strict: an unknown level, status or behaviour raises
``ValueError``.  Rule ``condition_type`` / ``operator`` are lenient and are
kept as plain strings when unknown, so a single bad rule degrades to a
non-match at evaluation time and is reported by the config validator.

Condition tree shape::

    {"rule": {...}} | {"all": [node, ...]} | {"any": [node, ...]}
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from approval_kernel.domain.conditions import (
    AllOf,
    AnyOf,
    ConditionNode,
    ConditionOperator,
    ConditionType,
    Leaf,
    RoutingRule,
)
from approval_kernel.domain.workflow import (
    ApprovalLevel,
    MatrixEntry,
    RejectionBehavior,
    StepAction,
    TimeoutBehavior,
    WorkflowPolicy,
    WorkflowStats,
    WorkflowStatus,
    WorkflowStep,
    WorkflowTemplate,
)


def parse_level(value: Any) -> ApprovalLevel:
    """Accept ``3``, ``"3"``, ``"manager"`` or ``"MANAGER"``."""
    if isinstance(value, ApprovalLevel):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return ApprovalLevel(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return ApprovalLevel(int(text))
        try:
            return ApprovalLevel[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown approval level: {value!r}") from None
    raise ValueError(f"Unknown approval level: {value!r}")


def _lenient(enum_cls, value: Any):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return str(value)


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


# =========================================================================
# Steps, rules, matrix
# =========================================================================


def step_from_dict(data: dict[str, Any]) -> WorkflowStep:
    return WorkflowStep(
        sequence=int(data["sequence"]),
        level=parse_level(data["level"]),
        action=StepAction(str(data.get("action", "approve")).lower()),
        timeout_hours=int(data.get("timeout_hours", 24)),
        name=data.get("name"),
        description=data.get("description"),
        can_skip=bool(data.get("can_skip", False)),
        requires_comment=bool(data.get("requires_comment", False)),
        notify_on_entry=bool(data.get("notify_on_entry", True)),
        notify_on_exit=bool(data.get("notify_on_exit", True)),
        is_enabled=bool(data.get("is_enabled", True)),
    )


def step_to_dict(step: WorkflowStep) -> dict[str, Any]:
    return {
        "sequence": step.sequence,
        "level": step.level.name.lower(),
        "action": step.action.value,
        "timeout_hours": step.timeout_hours,
        "name": step.name,
        "description": step.description,
        "can_skip": step.can_skip,
        "requires_comment": step.requires_comment,
        "notify_on_entry": step.notify_on_entry,
        "notify_on_exit": step.notify_on_exit,
        "is_enabled": step.is_enabled,
    }


def rule_from_dict(data: dict[str, Any]) -> RoutingRule:
    return RoutingRule(
        condition_type=_lenient(ConditionType, data["condition_type"]),
        operator=_lenient(ConditionOperator, data["operator"]),
        value=str(data["value"]),
        priority=int(data.get("priority", 0)),
        name=data.get("name"),
        logical_group=data.get("logical_group"),
        use_and=bool(data.get("use_and", True)),
        is_enabled=bool(data.get("is_enabled", True)),
    )


def rule_to_dict(rule: RoutingRule) -> dict[str, Any]:
    return {
        "condition_type": _enum_value(rule.condition_type),
        "operator": _enum_value(rule.operator),
        "value": rule.value,
        "priority": rule.priority,
        "name": rule.name,
        "logical_group": rule.logical_group,
        "use_and": rule.use_and,
        "is_enabled": rule.is_enabled,
    }


def matrix_from_dict(data: dict[str, Any]) -> MatrixEntry:
    return MatrixEntry(
        level=parse_level(data["level"]),
        required_role=str(data["required_role"]),
        min_approvers=_optional_int(data.get("min_approvers")),
        can_escalate=bool(data.get("can_escalate", True)),
        can_delegate=bool(data.get("can_delegate", False)),
        is_enabled=bool(data.get("is_enabled", True)),
        max_error_count=_optional_int(data.get("max_error_count")),
        max_amount=_optional_decimal(data.get("max_amount")),
        specific_user_ids=tuple(str(u) for u in data.get("specific_user_ids") or ()),
        delegate_user_ids=tuple(str(u) for u in data.get("delegate_user_ids") or ()),
    )


def matrix_to_dict(entry: MatrixEntry) -> dict[str, Any]:
    return {
        "level": entry.level.name.lower(),
        "required_role": entry.required_role,
        "min_approvers": entry.min_approvers,
        "can_escalate": entry.can_escalate,
        "can_delegate": entry.can_delegate,
        "is_enabled": entry.is_enabled,
        "max_error_count": entry.max_error_count,
        "max_amount": str(entry.max_amount) if entry.max_amount is not None else None,
        "specific_user_ids": list(entry.specific_user_ids),
        "delegate_user_ids": list(entry.delegate_user_ids),
    }


def node_from_dict(data: dict[str, Any]) -> ConditionNode:
    if "rule" in data:
        return Leaf(rule_from_dict(data["rule"]))
    if "all" in data:
        return AllOf(tuple(node_from_dict(c) for c in data["all"]))
    if "any" in data:
        return AnyOf(tuple(node_from_dict(c) for c in data["any"]))
    raise ValueError(f"Condition node needs one of rule/all/any, got {sorted(data)}")


def node_to_dict(node: ConditionNode) -> dict[str, Any]:
    if isinstance(node, Leaf):
        return {"rule": rule_to_dict(node.rule)}
    key = "all" if isinstance(node, AllOf) else "any"
    return {key: [node_to_dict(c) for c in node.children]}


# =========================================================================
# Template and policy
# =========================================================================


_FLAG_FIELDS = (
    "allow_escalation",
    "allow_parallel_approval",
    "require_comments_on_reject",
    "auto_assign_to_role",
)

_FLAG_DEFAULTS = {
    "allow_escalation": True,
    "allow_parallel_approval": False,
    "require_comments_on_reject": True,
    "auto_assign_to_role": True,
}


def _common_from_dict(data: dict[str, Any]) -> dict[str, Any]:
    common: dict[str, Any] = {
        "default_sla_hours": int(data.get("default_sla_hours", 24)),
        "escalation_sla_hours": int(data.get("escalation_sla_hours", 12)),
        "rejection_behavior": RejectionBehavior(
            str(data.get("rejection_behavior", "end_workflow")).lower()
        ),
        "timeout_behavior": TimeoutBehavior(
            str(data.get("timeout_behavior", "escalate")).lower()
        ),
        "steps": tuple(step_from_dict(s) for s in data.get("steps") or ()),
        "matrix": tuple(matrix_from_dict(m) for m in data.get("matrix") or ()),
    }
    for name in _FLAG_FIELDS:
        common[name] = bool(data.get(name, _FLAG_DEFAULTS[name]))
    return common


def _common_to_dict(obj: WorkflowTemplate | WorkflowPolicy) -> dict[str, Any]:
    data: dict[str, Any] = {
        "default_sla_hours": obj.default_sla_hours,
        "escalation_sla_hours": obj.escalation_sla_hours,
        "rejection_behavior": obj.rejection_behavior.value,
        "timeout_behavior": obj.timeout_behavior.value,
        "steps": [step_to_dict(s) for s in obj.steps],
        "matrix": [matrix_to_dict(m) for m in obj.matrix],
    }
    for name in _FLAG_FIELDS:
        data[name] = getattr(obj, name)
    return data


def template_from_dict(
    data: dict[str, Any],
    tenant_id: UUID | None = None,
) -> WorkflowTemplate:
    """Build a template from a definition dict.

    ``tenant_id`` overrides the value in the document when given.
    """
    tenant = tenant_id if tenant_id is not None else UUID(str(data["tenant_id"]))
    extra: dict[str, Any] = {}
    if data.get("workflow_id"):
        extra["workflow_id"] = UUID(str(data["workflow_id"]))
    stats = data.get("stats") or {}
    routing = data.get("routing")
    return WorkflowTemplate(
        tenant_id=tenant,
        name=str(data["name"]),
        code=str(data["code"]),
        version=int(data.get("version", 1)),
        description=data.get("description"),
        status=WorkflowStatus(str(data.get("status", "draft")).lower()),
        rules=tuple(rule_from_dict(r) for r in data.get("rules") or ()),
        routing=node_from_dict(routing) if routing else None,
        stats=WorkflowStats(
            total_executions=int(stats.get("total_executions", 0)),
            successful_executions=int(stats.get("successful_executions", 0)),
            average_completion_time_hours=float(
                stats.get("average_completion_time_hours", 0.0)
            ),
        ),
        **_common_from_dict(data),
        **extra,
    )


def template_to_dict(template: WorkflowTemplate) -> dict[str, Any]:
    """Definition dict of a template.  Identity and stats are included."""
    data = {
        "workflow_id": str(template.workflow_id),
        "tenant_id": str(template.tenant_id),
        "name": template.name,
        "code": template.code,
        "version": template.version,
        "description": template.description,
        "status": template.status.value,
        "rules": [rule_to_dict(r) for r in template.rules],
        "routing": node_to_dict(template.routing) if template.routing else None,
        "stats": {
            "total_executions": template.stats.total_executions,
            "successful_executions": template.stats.successful_executions,
            "average_completion_time_hours": template.stats.average_completion_time_hours,
        },
    }
    data.update(_common_to_dict(template))
    return data


def policy_from_dict(data: dict[str, Any]) -> WorkflowPolicy:
    return WorkflowPolicy(
        workflow_id=UUID(str(data["workflow_id"])),
        workflow_code=str(data["workflow_code"]),
        workflow_version=int(data["workflow_version"]),
        **_common_from_dict(data),
    )


def policy_to_dict(policy: WorkflowPolicy) -> dict[str, Any]:
    data = {
        "workflow_id": str(policy.workflow_id),
        "workflow_code": policy.workflow_code,
        "workflow_version": policy.workflow_version,
    }
    data.update(_common_to_dict(policy))
    return data
