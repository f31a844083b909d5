"""
BaseService -- abstract base for kernel write services.

Responsibility:
    Common constructor and session-handling contract for the services in
    the kernel layer.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back themselves.  The caller (API handler,
    SLA monitor, test harness) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide reporting queries -- those belong in
          ``approval_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
