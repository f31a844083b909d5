"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.approval_selector import (
    ApprovalSelector,
    ApprovalStatistics,
    DailySlaReport,
    LevelStats,
)

__all__ = [
    "ApprovalSelector",
    "ApprovalStatistics",
    "DailySlaReport",
    "LevelStats",
]
