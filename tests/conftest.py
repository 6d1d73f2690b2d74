"""
Paper Options Ledger - Test Configuration
Shared fixtures and test configuration.
"""
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

# Set test environment before settings are imported
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from paper_ledger.core.models import (  # noqa: E402
    Position,
    ContractType,
    PositionSide,
    PositionStatus,
    ExitReason,
)
from paper_ledger.core.trading.position_ledger import PositionLedger  # noqa: E402


NOW = datetime(2024, 10, 15, 14, 30, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock for service tests."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =========================
# Time Fixtures
# =========================

@pytest.fixture
def now() -> datetime:
    """Fixed aware UTC reference time."""
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =========================
# Ledger Fixtures
# =========================

@pytest.fixture
def ledger() -> PositionLedger:
    """Empty ledger."""
    return PositionLedger()


@pytest.fixture
def spy_call_payload() -> dict:
    """Long 5x SPY 580 call bought at 2.45."""
    return {
        "ticker": "SPY",
        "contractType": "CALL",
        "strike": "580",
        "expiration": "2024-12-20",
        "side": "LONG",
        "quantity": 5,
        "entryPrice": "2.45",
    }


@pytest.fixture
def make_closed():
    """Factory for closed positions with a given realized P&L."""
    counter = {"n": 0}

    def _make(
        pnl,
        exit_at: datetime,
        held: timedelta = timedelta(days=1),
        entry_price: str = "1.00",
        quantity: int = 1,
        ticker: str = "SPY",
        position_id: Optional[str] = None,
    ) -> Position:
        counter["n"] += 1
        entry = Decimal(entry_price)
        realized = Decimal(str(pnl))
        units = quantity * 100
        return Position(
            id=position_id or f"pos_{counter['n']:04d}",
            ticker=ticker,
            option_symbol=f"{ticker}241220C00580000",
            contract_type=ContractType.CALL,
            strike=Decimal("580"),
            expiration=date(2024, 12, 20),
            side=PositionSide.LONG,
            quantity=quantity,
            entry_price=entry,
            entry_timestamp=exit_at - held,
            current_price=entry + realized / units,
            exit_price=entry + realized / units,
            exit_timestamp=exit_at,
            exit_reason=ExitReason.MANUAL,
            realized_pnl=realized,
            unrealized_pnl=realized,
            status=PositionStatus.CLOSED,
        )

    return _make
