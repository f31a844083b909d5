"""
Validation snapshot (``approval_kernel.domain.validation``).

The read-only view of a validation outcome handed to the engine by the
validation pipeline.  The engine never mutates it and never reaches back into
the pipeline for more data.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class ValidationSnapshot:
    """Attributes of a finished validation that routing rules may inspect.

    ``amount`` is optional: only files that carry a monetary total populate
    it, and only matrix authority ceilings consult it.
    """

    validation_id: UUID
    tenant_id: UUID
    error_count: int
    warning_count: int
    file_type: str
    file_size: int
    record_count: int
    status: str
    file_name: str = ""
    amount: Decimal | None = None
