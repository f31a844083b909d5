"""
Module: approval_kernel.selectors.base
Responsibility: Base class for read-only approval queries.
Architecture position: Kernel > Selectors.  May import from db/ and models/.

Invariants enforced:
    - Read-only: selectors never add, flush, delete or commit.
    - Selectors return DTOs, never ORM rows.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Stores the caller's session for subclass queries."""

    def __init__(self, session: Session):
        self.session = session
