"""
Workflow Definition Validator (``approval_config.validator``).

Responsibility
--------------
Checks parsed workflow templates for structural problems before they are
published, so a broken definition is caught at load time rather than when
the first validation is routed through it.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called after
``approval_config.loader`` and before ``WorkflowService.publish_definition``.

Invariants enforced
-------------------
Errors (the template MUST NOT be published):

* no enabled step, or no enabled matrix entry;
* a default or escalation SLA of less than one hour;
* duplicate step sequence numbers;
* duplicate ``(level, required_role)`` matrix entries;
* an enabled step level without an enabled matrix entry;
* a routing rule whose condition type or operator is unknown;
* a numeric comparison whose value is not a finite number.

Warnings (publishable, should be reviewed):

* step levels that do not increase with the sequence;
* no enabled routing rule and no explicit routing tree, so the template
  never matches;
* a numeric comparison on a text attribute.

Failure modes
-------------
None: problems are reported in the result, never raised.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from approval_kernel.domain.conditions import (
    NUMERIC_OPERATORS,
    ConditionOperator,
    ConditionType,
    iter_rules,
)
from approval_kernel.domain.workflow import WorkflowTemplate

_TEXT_CONDITIONS = frozenset({ConditionType.FILE_TYPE, ConditionType.VALIDATION_STATUS})


@dataclass
class ConfigValidationResult:
    """
    Result of definition validation.

    ``is_valid`` is ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def merge(self, other: ConfigValidationResult) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


def validate_template(template: WorkflowTemplate) -> ConfigValidationResult:
    """Validate one template."""
    result = ConfigValidationResult()
    _validate_steps(template, result)
    _validate_sla(template, result)
    _validate_matrix(template, result)
    _validate_rules(template, result)
    return result


def validate_templates(templates: Iterable[WorkflowTemplate]) -> ConfigValidationResult:
    """Validate several templates plus code uniqueness per tenant."""
    result = ConfigValidationResult()
    templates = list(templates)
    for template in templates:
        result.merge(validate_template(template))

    codes = Counter((t.tenant_id, t.code, t.version) for t in templates)
    for (tenant_id, code, version), count in sorted(codes.items(), key=lambda kv: kv[0][1]):
        if count > 1:
            result.add_error(
                f"Workflow {code} v{version} defined {count} times for tenant {tenant_id}"
            )
    return result


def _validate_steps(template: WorkflowTemplate, result: ConfigValidationResult) -> None:
    code = template.code
    enabled = template.snapshot_policy().enabled_steps()
    if not enabled:
        result.add_error(f"{code}: no enabled workflow step")

    sequences = Counter(s.sequence for s in template.steps)
    for sequence, count in sorted(sequences.items()):
        if count > 1:
            result.add_error(f"{code}: step sequence {sequence} used {count} times")

    for earlier, later in zip(enabled, enabled[1:]):
        if later.level <= earlier.level:
            result.add_warning(
                f"{code}: step {later.sequence} level {later.level.name} does not "
                f"increase over step {earlier.sequence} level {earlier.level.name}"
            )


def _validate_sla(template: WorkflowTemplate, result: ConfigValidationResult) -> None:
    for name in ("default_sla_hours", "escalation_sla_hours"):
        hours = getattr(template, name)
        if hours < 1:
            result.add_error(f"{template.code}: {name} must be at least 1, got {hours}")


def _validate_matrix(template: WorkflowTemplate, result: ConfigValidationResult) -> None:
    code = template.code
    enabled = [m for m in template.matrix if m.is_enabled]
    if not enabled:
        result.add_error(f"{code}: no enabled approval matrix entry")

    pairs = Counter((m.level, m.required_role) for m in template.matrix)
    for (level, role), count in sorted(pairs.items()):
        if count > 1:
            result.add_error(
                f"{code}: matrix entry ({level.name}, {role}) defined {count} times"
            )

    covered = {m.level for m in enabled}
    for step in template.steps:
        if step.is_enabled and step.level not in covered:
            result.add_error(
                f"{code}: step {step.sequence} level {step.level.name} has no "
                f"enabled matrix entry"
            )


def _validate_rules(template: WorkflowTemplate, result: ConfigValidationResult) -> None:
    code = template.code
    rules = list(template.rules)
    if template.routing is not None:
        rules.extend(iter_rules(template.routing))

    if template.routing is None and not any(r.is_enabled for r in template.rules):
        result.add_warning(f"{code}: no enabled routing rule; template never matches")

    for rule in rules:
        label = rule.name or f"{rule.condition_type}/{rule.operator}"
        if not isinstance(rule.condition_type, ConditionType):
            result.add_error(f"{code}: rule {label}: unknown condition type {rule.condition_type!r}")
        if not isinstance(rule.operator, ConditionOperator):
            result.add_error(f"{code}: rule {label}: unknown operator {rule.operator!r}")
            continue
        if rule.operator in NUMERIC_OPERATORS:
            if not _is_finite_number(rule.value):
                result.add_error(
                    f"{code}: rule {label}: value {rule.value!r} is not a number"
                )
            if rule.condition_type in _TEXT_CONDITIONS:
                result.add_warning(
                    f"{code}: rule {label}: numeric comparison on "
                    f"{rule.condition_type.value}"
                )


def _is_finite_number(value: str) -> bool:
    try:
        return Decimal(str(value).strip()).is_finite()
    except InvalidOperation:
        return False
