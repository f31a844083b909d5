"""
approval_engines.matrix_resolver -- Approval matrix resolution.

Responsibility:
    Turn the matrix entries configured for a level into an approver policy:
    which roles may approve, how many approvals each needs, the authority
    ceilings of each role and the pool of people who can act on it.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Availability of role holders is answered by an injected
    ``ApproverDirectory``; the engine never looks people up itself.

Invariants enforced:
    - Only enabled entries at the requested level are considered.
    - The pool of an entry is its explicit user allow-list when one is
      configured, otherwise every holder of the role.
    - When the directory reports no available primary approver, the
      delegate list replaces the pool only if the entry allows delegation
      and names delegates.  Otherwise the entry contributes no pool.
    - A policy always has at least one role with a pool.

Failure modes:
    - ``NoEligibleApproverError`` when no entry yields a pool.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

from approval_kernel.domain.workflow import ApprovalLevel, MatrixEntry
from approval_kernel.exceptions import NoEligibleApproverError
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.matrix_resolver")


class PoolSource(str, Enum):
    SPECIFIC_USERS = "specific_users"
    ROLE_HOLDERS = "role_holders"
    DELEGATES = "delegates"


class ApproverDirectory(Protocol):
    """Pluggable availability lookup for approver pools."""

    def has_available_approver(
        self, role: str, user_ids: tuple[str, ...]
    ) -> bool:
        """True if someone in the primary pool can act right now.

        ``user_ids`` is empty when the pool is "any holder of ``role``".
        """
        ...


@dataclass(frozen=True)
class RoleApproverPolicy:
    """Resolved authority of one role at one level."""

    role: str
    quorum: int
    pool_source: PoolSource
    user_ids: tuple[str, ...] = ()
    max_error_count: int | None = None
    max_amount: Decimal | None = None
    can_escalate: bool = True
    can_delegate: bool = False


@dataclass(frozen=True)
class ApproverPolicy:
    """Everything the assignment boundary needs to route a level."""

    level: ApprovalLevel
    roles: tuple[RoleApproverPolicy, ...]

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(r.role for r in self.roles)

    def for_role(self, role: str) -> RoleApproverPolicy | None:
        for entry in self.roles:
            if entry.role == role:
                return entry
        return None


def entries_for_level(
    level: ApprovalLevel, entries: Iterable[MatrixEntry]
) -> tuple[MatrixEntry, ...]:
    return tuple(e for e in entries if e.level == level and e.is_enabled)


def _resolve_entry(
    entry: MatrixEntry,
    directory: ApproverDirectory | None,
) -> RoleApproverPolicy | None:
    if entry.specific_user_ids:
        source, pool = PoolSource.SPECIFIC_USERS, entry.specific_user_ids
    else:
        source, pool = PoolSource.ROLE_HOLDERS, ()

    available = directory is None or directory.has_available_approver(
        entry.required_role, pool
    )
    if not available:
        if entry.can_delegate and entry.delegate_user_ids:
            source, pool = PoolSource.DELEGATES, entry.delegate_user_ids
        else:
            logger.info("approver_pool_unavailable", extra={
                "approval_level": entry.level.name,
                "role": entry.required_role,
                "can_delegate": entry.can_delegate,
            })
            return None

    return RoleApproverPolicy(
        role=entry.required_role,
        quorum=entry.quorum,
        pool_source=source,
        user_ids=tuple(pool),
        max_error_count=entry.max_error_count,
        max_amount=entry.max_amount,
        can_escalate=entry.can_escalate,
        can_delegate=entry.can_delegate,
    )


def resolve(
    level: ApprovalLevel,
    entries: Iterable[MatrixEntry],
    directory: ApproverDirectory | None = None,
) -> ApproverPolicy:
    """Resolve the approver policy for ``level``.

    Without a directory every primary pool is assumed available.
    """
    level_entries = entries_for_level(level, entries)
    if not level_entries:
        raise NoEligibleApproverError(level.name, "no approval matrix entry for level")

    roles = tuple(
        policy
        for policy in (_resolve_entry(e, directory) for e in level_entries)
        if policy is not None
    )
    if not roles:
        raise NoEligibleApproverError(
            level.name, "no available approver and no permitted delegate"
        )

    logger.debug("approver_policy_resolved", extra={
        "approval_level": level.name,
        "roles": [r.role for r in roles],
    })
    return ApproverPolicy(level=level, roles=roles)


def check_authority(
    role_policy: RoleApproverPolicy,
    error_count: int,
    amount: Decimal | None = None,
) -> bool:
    """True when the role's ceilings cover the validation being approved."""
    if role_policy.max_error_count is not None and error_count > role_policy.max_error_count:
        return False
    if (
        role_policy.max_amount is not None
        and amount is not None
        and amount > role_policy.max_amount
    ):
        return False
    return True


def can_role_approve(
    role: str, level: ApprovalLevel, entries: Iterable[MatrixEntry]
) -> bool:
    return any(e.required_role == role for e in entries_for_level(level, entries))


def permits_escalation(level: ApprovalLevel, entries: Iterable[MatrixEntry]) -> bool:
    """True when some enabled entry at ``level`` allows escalation.

    A level without entries does not permit escalation.
    """
    return any(e.can_escalate for e in entries_for_level(level, entries))
