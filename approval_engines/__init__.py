"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    approval engines: routing-rule evaluation, workflow selection, approver
    resolution, SLA status and template statistics.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain, approval_kernel/exceptions and
    the logger factory.  MUST NOT import approval_kernel.services.

Invariants enforced:
    - Purity: engines never read the clock.  ``now`` is always a parameter
      and callers (services) provide it.
    - Determinism: identical inputs always produce identical outputs.
    - Numeric rule comparisons use ``Decimal``.

Failure modes:
    - NoEligibleApproverError from approver resolution.
    - Malformed rules never raise; they evaluate to a non-match.

Usage:
    from approval_engines.rule_evaluator import evaluate_tree
    from approval_engines.workflow_selector import select
    from approval_engines.matrix_resolver import resolve
    from approval_engines.sla import compute_sla_status
"""

from approval_engines.matrix_resolver import (
    ApproverDirectory,
    ApproverPolicy,
    PoolSource,
    RoleApproverPolicy,
    check_authority,
    permits_escalation,
)
from approval_engines.rule_evaluator import evaluate, evaluate_tree
from approval_engines.sla import DEFAULT_AT_RISK_WINDOW, compute_sla_status
from approval_engines.stats import record_execution, success_rate

__all__ = [
    "ApproverDirectory",
    "ApproverPolicy",
    "DEFAULT_AT_RISK_WINDOW",
    "PoolSource",
    "RoleApproverPolicy",
    "check_authority",
    "compute_sla_status",
    "evaluate",
    "evaluate_tree",
    "permits_escalation",
    "record_execution",
    "success_rate",
]
