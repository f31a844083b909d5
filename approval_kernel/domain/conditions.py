"""
Routing conditions (``approval_kernel.domain.conditions``).

Responsibility
--------------
Typed representation of workflow routing rules and of the condition tree
they are composed into.  A template's rules are compiled into a tree once,
when the template is loaded, and the tree is evaluated repeatedly by
``approval_engines.rule_evaluator`` without re-parsing anything.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Composition
-----------
``ConditionNode`` is a tagged union::

    Leaf(rule) | AllOf(children) | AnyOf(children)

``build_routing_tree`` turns the flat rule list stored on a template into a
tree:

* Rules without a ``logical_group`` are independent alternatives.
* Rules sharing a ``logical_group`` form one group.  The group is an
  ``AllOf`` when every member has ``use_and=True``, otherwise an ``AnyOf``.
* The top level is an ``AnyOf`` over groups and ungrouped rules, ordered by
  the lowest priority they contain (ascending = evaluated first).
* Disabled rules are dropped.  No enabled rules -> ``None`` (never matches).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class ConditionType(str, Enum):
    """Validation attribute a routing rule inspects."""

    ERROR_COUNT = "error_count"
    WARNING_COUNT = "warning_count"
    FILE_TYPE = "file_type"
    FILE_SIZE = "file_size"
    RECORD_COUNT = "record_count"
    VALIDATION_STATUS = "validation_status"


class ConditionOperator(str, Enum):
    """Comparison applied between the extracted value and the rule value."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


NUMERIC_OPERATORS: frozenset[ConditionOperator] = frozenset({
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN,
    ConditionOperator.LESS_THAN_OR_EQUAL,
})


@dataclass(frozen=True)
class RoutingRule:
    """A single routing condition.

    ``condition_type`` and ``operator`` are normally enum members; the
    loader keeps unknown values as plain strings so that one misconfigured
    rule degrades to a non-match instead of failing the whole template.
    """

    condition_type: ConditionType | str
    operator: ConditionOperator | str
    value: str
    priority: int = 0
    name: str | None = None
    logical_group: str | None = None
    use_and: bool = True
    is_enabled: bool = True


# =========================================================================
# Condition tree
# =========================================================================


@dataclass(frozen=True)
class Leaf:
    """A single rule."""

    rule: RoutingRule


@dataclass(frozen=True)
class AllOf:
    """Every child must hold.  An empty AllOf is false."""

    children: tuple[ConditionNode, ...]


@dataclass(frozen=True)
class AnyOf:
    """At least one child must hold."""

    children: tuple[ConditionNode, ...]


ConditionNode = Union[Leaf, AllOf, AnyOf]


def min_priority(node: ConditionNode) -> int:
    """Lowest rule priority reachable from ``node``."""
    if isinstance(node, Leaf):
        return node.rule.priority
    priorities = [min_priority(child) for child in node.children]
    return min(priorities) if priorities else 0


def iter_rules(node: ConditionNode | None):
    """Yield every rule in the tree, depth first."""
    if node is None:
        return
    if isinstance(node, Leaf):
        yield node.rule
        return
    for child in node.children:
        yield from iter_rules(child)


def build_routing_tree(rules: tuple[RoutingRule, ...]) -> ConditionNode | None:
    """Compile a template's flat rule list into a condition tree."""
    enabled = sorted(
        (r for r in rules if r.is_enabled),
        key=lambda r: r.priority,
    )
    if not enabled:
        return None

    groups: dict[str, list[RoutingRule]] = {}
    alternatives: list[ConditionNode] = []
    for rule in enabled:
        if rule.logical_group:
            groups.setdefault(rule.logical_group, []).append(rule)
        else:
            alternatives.append(Leaf(rule))

    for members in groups.values():
        leaves = tuple(Leaf(r) for r in members)
        if all(r.use_and for r in members):
            alternatives.append(AllOf(leaves))
        else:
            alternatives.append(AnyOf(leaves))

    alternatives.sort(key=min_priority)
    if len(alternatives) == 1:
        return alternatives[0]
    return AnyOf(tuple(alternatives))
