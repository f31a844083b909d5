"""
Module: approval_kernel.db.base
Responsibility: The declarative base every approval table derives from, plus
    the two column types that keep SQLite and PostgreSQL interchangeable:
    ``GUID`` for identifiers and ``UTCTimestamp`` for every point in time.
Architecture position: Kernel > DB.  Lowest import target of the kernel's
    persistence side; must not import models/, services/ or selectors/.

Invariants enforced:
    - Every row has a surrogate ``id`` (uuid4).  Business identifiers
      (instance_id, workflow_id + version) are separate, unique columns.
    - A timestamp read back from storage is timezone-aware UTC, whatever the
      dialect kept.  SLA arithmetic compares these against ``Clock.now()``
      and would fail on a naive value.
    - Decimal columns are ``Numeric(38, 9)``: monetary authority ceilings
      never pass through float.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class GUID(TypeDecorator):
    """UUID stored as its 36-character text form on every dialect."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCTimestamp(TypeDecorator):
    """Aware datetime normalised to UTC on write and on read.

    Naive input is taken to be UTC already.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: GUID(),
        datetime: UTCTimestamp(),
        Decimal: Numeric(38, 9),
        dict[str, Any]: JSON,
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class AuthoredBase(Base):
    """Rows edited by administrators: who created them, who touched them last."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]
