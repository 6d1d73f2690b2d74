"""
Paper Options Ledger - Trading Module

Core trading functionality including:
- Position lifecycle and mark-to-market
- Exit condition evaluation
"""
from paper_ledger.core.trading.exit_conditions import (
    ExitConditionEngine,
    ExitSignal
)
from paper_ledger.core.trading.position_ledger import (
    PositionLedger,
    LedgerSnapshot,
    TickerExposure
)

__all__ = [
    # Exit Conditions
    "ExitConditionEngine",
    "ExitSignal",

    # Ledger
    "PositionLedger",
    "LedgerSnapshot",
    "TickerExposure"
]
