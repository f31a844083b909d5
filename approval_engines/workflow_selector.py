"""
approval_engines.workflow_selector -- Pick the workflow for a validation.

Responsibility:
    Given a validation snapshot and the candidate templates, return the one
    template whose routing conditions match, or ``None``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Only ACTIVE templates belonging to the snapshot's tenant are
      considered.  No cross-tenant routing.
    - Deterministic ordering: candidates are tried by their lowest rule
      priority, then by code.  First match wins.
    - A template without enabled rules (and without an explicit tree)
      never matches.  Callers apply their own fallback.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_engines.rule_evaluator import evaluate_tree
from approval_kernel.domain.conditions import min_priority
from approval_kernel.domain.validation import ValidationSnapshot
from approval_kernel.domain.workflow import WorkflowTemplate
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.workflow_selector")


def _ordering_key(template: WorkflowTemplate) -> tuple[int, str]:
    tree = template.routing_tree
    return (min_priority(tree) if tree is not None else 0, template.code)


def eligible_candidates(
    snapshot: ValidationSnapshot,
    candidates: Iterable[WorkflowTemplate],
) -> list[WorkflowTemplate]:
    """Active, same-tenant templates with a routing tree, in trial order."""
    eligible = [
        t for t in candidates
        if t.is_active
        and t.tenant_id == snapshot.tenant_id
        and t.routing_tree is not None
    ]
    return sorted(eligible, key=_ordering_key)


def select(
    snapshot: ValidationSnapshot,
    candidates: Iterable[WorkflowTemplate],
) -> WorkflowTemplate | None:
    """First eligible template whose routing tree holds for ``snapshot``."""
    ordered = eligible_candidates(snapshot, candidates)
    for template in ordered:
        if evaluate_tree(template.routing_tree, snapshot):
            logger.info("workflow_selected", extra={
                "validation_id": str(snapshot.validation_id),
                "workflow_code": template.code,
                "workflow_version": template.version,
                "candidates": len(ordered),
            })
            return template

    logger.info("workflow_not_matched", extra={
        "validation_id": str(snapshot.validation_id),
        "candidates": len(ordered),
    })
    return None
