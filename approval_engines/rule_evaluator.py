"""
approval_engines.rule_evaluator -- Routing rule evaluation.

Responsibility:
    Decide whether a routing rule (or a whole condition tree) holds for a
    validation snapshot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Never raises.  Unknown condition types, unknown operators and
      unparseable numeric operands all evaluate to ``False``.
    - Numeric comparisons use ``Decimal`` on both sides; there is no float
      path and no fallback to string comparison.
    - Equality, containment and set membership compare string forms.
      Enum-valued attributes compare by their ``value``.

Failure modes:
    - None by contract.  A misconfigured rule is a non-match and is logged
      at DEBUG so it can be traced without flooding production logs.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from approval_kernel.domain.conditions import (
    AllOf,
    AnyOf,
    ConditionNode,
    ConditionOperator,
    ConditionType,
    Leaf,
    RoutingRule,
)
from approval_kernel.domain.validation import ValidationSnapshot
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.rule_evaluator")

_FIELD_BY_TYPE: dict[ConditionType, str] = {
    ConditionType.ERROR_COUNT: "error_count",
    ConditionType.WARNING_COUNT: "warning_count",
    ConditionType.FILE_TYPE: "file_type",
    ConditionType.FILE_SIZE: "file_size",
    ConditionType.RECORD_COUNT: "record_count",
    ConditionType.VALIDATION_STATUS: "status",
}


def _as_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _as_decimal(text: str) -> Decimal | None:
    try:
        number = Decimal(text.strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def _split_set(value: str) -> set[str]:
    return {item.strip() for item in value.split(",")}


def extract_value(condition_type: ConditionType | str, snapshot: ValidationSnapshot) -> Any:
    """Snapshot attribute inspected by ``condition_type``; ``None`` if unknown."""
    try:
        ctype = ConditionType(condition_type)
    except ValueError:
        return None
    return getattr(snapshot, _FIELD_BY_TYPE[ctype])


def compare(operator: ConditionOperator | str, actual: str, expected: str) -> bool:
    """Apply ``operator`` to the string forms of both operands."""
    try:
        op = ConditionOperator(operator)
    except ValueError:
        return False

    if op == ConditionOperator.EQUALS:
        return actual == expected
    if op == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if op == ConditionOperator.CONTAINS:
        return expected in actual
    if op == ConditionOperator.STARTS_WITH:
        return actual.startswith(expected)
    if op == ConditionOperator.ENDS_WITH:
        return actual.endswith(expected)
    if op == ConditionOperator.IN:
        return actual in _split_set(expected)
    if op == ConditionOperator.NOT_IN:
        return actual not in _split_set(expected)

    left = _as_decimal(actual)
    right = _as_decimal(expected)
    if left is None or right is None:
        return False
    if op == ConditionOperator.GREATER_THAN:
        return left > right
    if op == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return left >= right
    if op == ConditionOperator.LESS_THAN:
        return left < right
    if op == ConditionOperator.LESS_THAN_OR_EQUAL:
        return left <= right
    return False


def evaluate(rule: RoutingRule, snapshot: ValidationSnapshot) -> bool:
    """True when ``rule`` holds for ``snapshot``.  Never raises."""
    actual = extract_value(rule.condition_type, snapshot)
    if actual is None:
        logger.debug("routing_rule_unknown_type", extra={
            "rule_name": rule.name,
            "condition_type": _as_text(rule.condition_type),
        })
        return False
    result = compare(rule.operator, _as_text(actual), rule.value)
    logger.debug("routing_rule_evaluated", extra={
        "rule_name": rule.name,
        "condition_type": _as_text(rule.condition_type),
        "operator": _as_text(rule.operator),
        "matched": result,
    })
    return result


def evaluate_tree(node: ConditionNode | None, snapshot: ValidationSnapshot) -> bool:
    """Evaluate a condition tree.

    ``None`` and empty groups are false.  Children are visited in order and
    evaluation short-circuits.
    """
    if node is None:
        return False
    if isinstance(node, Leaf):
        return evaluate(node.rule, snapshot)
    if isinstance(node, AllOf):
        return bool(node.children) and all(
            evaluate_tree(child, snapshot) for child in node.children
        )
    if isinstance(node, AnyOf):
        return any(evaluate_tree(child, snapshot) for child in node.children)
    return False
