"""
Paper Options Ledger - Analytics Module
"""
from paper_ledger.core.analytics.performance import (
    PerformanceAggregator,
    PerformanceSnapshot,
    PerformanceWindow,
    PeriodPnL,
    TimeFrame
)

__all__ = [
    "PerformanceAggregator",
    "PerformanceSnapshot",
    "PerformanceWindow",
    "PeriodPnL",
    "TimeFrame"
]
