"""
Unit Tests - Performance Aggregator
Tests for win/loss statistics, streaks, drawdown and Sharpe ratio.
"""
import math
import random
from datetime import date, timedelta
from decimal import Decimal

import pytest

from paper_ledger.core.analytics.performance import (
    PerformanceAggregator,
    PerformanceWindow,
    TimeFrame,
)
from paper_ledger.core.models import Position, ContractType, PositionSide
from paper_ledger.utils.exceptions import ComputationUndefined, ValidationError, is_defined


@pytest.fixture
def aggregator():
    return PerformanceAggregator(initial_balance=Decimal("100000"))


class TestTradeStatistics:
    """Tests for counts, averages and profit factor."""

    def test_one_win_one_loss(self, aggregator, make_closed, now):
        trades = [
            make_closed(100, now - timedelta(days=2)),
            make_closed(-50, now - timedelta(days=1)),
        ]
        result = aggregator.compute(trades, [], TimeFrame.ALL, now)

        assert result.total_trades == 2
        assert result.winning_trades == 1
        assert result.losing_trades == 1
        assert result.win_rate == 0.5
        assert result.profit_factor == Decimal("2")
        assert result.best_trade == Decimal("100")
        assert result.worst_trade == Decimal("-50")
        assert result.average_win == Decimal("100")
        assert result.average_loss == Decimal("-50")
        assert result.total_pnl == Decimal("50")

    def test_empty_window(self, aggregator, now):
        result = aggregator.compute([], [], TimeFrame.ALL, now)

        assert result.total_trades == 0
        assert result.win_rate == 0.0
        assert result.profit_factor == Decimal("0")
        assert isinstance(result.best_trade, ComputationUndefined)
        assert isinstance(result.worst_trade, ComputationUndefined)
        assert isinstance(result.sharpe_ratio, ComputationUndefined)
        assert result.account_balance == Decimal("100000")

    def test_only_wins_profit_factor_undefined(self, aggregator, make_closed, now):
        trades = [make_closed(100, now), make_closed(40, now)]
        result = aggregator.compute(trades, [], TimeFrame.ALL, now)

        assert not is_defined(result.profit_factor)
        assert "profit_factor" in result.undefined_metrics
        assert result.to_dict()["profit_factor"] is None

    def test_only_losses_profit_factor_zero(self, aggregator, make_closed, now):
        result = aggregator.compute([make_closed(-10, now)], [], TimeFrame.ALL, now)
        assert result.profit_factor == Decimal("0")

    def test_flat_trade_neither_win_nor_loss(self, aggregator, make_closed, now):
        result = aggregator.compute([make_closed(0, now)], [], TimeFrame.ALL, now)

        assert result.total_trades == 1
        assert result.winning_trades == 0
        assert result.losing_trades == 0
        assert result.win_rate == 0.0

    def test_independent_of_append_order(self, aggregator, make_closed, now):
        trades = [
            make_closed(pnl, now - timedelta(hours=i), held=timedelta(hours=3 + i))
            for i, pnl in enumerate([120, -40, 75, -10, 0, 300, -220, 15])
        ]
        shuffled = list(trades)
        random.Random(7).shuffle(shuffled)

        expected = aggregator.compute(trades, [], TimeFrame.ALL, now).to_dict()
        assert aggregator.compute(shuffled, [], TimeFrame.ALL, now).to_dict() == expected
        assert aggregator.compute(list(reversed(trades)), [], TimeFrame.ALL, now).to_dict() == expected


class TestStreaks:
    """Tests for consecutive wins and losses."""

    def test_longest_runs_in_exit_order(self, aggregator, make_closed, now):
        pnls = [1, 1, 1, -1, -1, 0, -1]
        trades = [
            make_closed(pnl, now - timedelta(hours=len(pnls) - i))
            for i, pnl in enumerate(pnls)
        ]
        result = aggregator.compute(list(reversed(trades)), [], TimeFrame.ALL, now)

        assert result.consecutive_wins == 3
        assert result.consecutive_losses == 2


class TestDrawdown:
    """Tests for drawdown on the realized curve."""

    def test_peak_to_trough(self, make_closed, now):
        aggregator = PerformanceAggregator(initial_balance=Decimal("1000"))
        trades = [
            make_closed(pnl, now - timedelta(hours=10 - i))
            for i, pnl in enumerate([100, -300, 50, -100])
        ]
        result = aggregator.compute(trades, [], TimeFrame.ALL, now)

        assert result.max_drawdown == Decimal("350")
        assert result.max_drawdown_percent == pytest.approx(350 / 1100 * 100)

    def test_starts_from_balance_at_window_start(self, make_closed, now):
        aggregator = PerformanceAggregator(initial_balance=Decimal("1000"))
        trades = [
            make_closed(1000, now - timedelta(days=20)),
            make_closed(-500, now - timedelta(days=2)),
        ]
        result = aggregator.compute(trades, [], TimeFrame.WEEK, now)

        assert result.total_trades == 1
        assert result.max_drawdown == Decimal("500")
        assert result.max_drawdown_percent == pytest.approx(25.0)

    def test_no_losses_no_drawdown(self, aggregator, make_closed, now):
        result = aggregator.compute([make_closed(10, now)], [], TimeFrame.ALL, now)
        assert result.max_drawdown == Decimal("0")
        assert result.max_drawdown_percent == 0.0


class TestSharpeRatio:
    """Tests for the per-trade Sharpe ratio."""

    def test_single_trade_undefined(self, aggregator, make_closed, now):
        result = aggregator.compute([make_closed(10, now)], [], TimeFrame.ALL, now)
        assert isinstance(result.sharpe_ratio, ComputationUndefined)
        assert result.to_dict()["sharpe_ratio"] is None

    def test_identical_returns_undefined(self, aggregator, make_closed, now):
        trades = [make_closed(50, now), make_closed(50, now - timedelta(days=1))]
        result = aggregator.compute(trades, [], TimeFrame.ALL, now)
        assert isinstance(result.sharpe_ratio, ComputationUndefined)

    def test_annualized_by_holding_period(self, aggregator, make_closed, now):
        # Cost basis 100 each: returns 0.10 and -0.05, held one day
        trades = [make_closed(10, now), make_closed(-5, now - timedelta(days=1))]
        result = aggregator.compute(trades, [], TimeFrame.ALL, now)

        expected = 0.025 / (0.075 * math.sqrt(2)) * math.sqrt(365)
        assert result.sharpe_ratio == pytest.approx(expected)

    def test_short_holdings_floored_at_one_day(self, aggregator, make_closed, now):
        daily = [make_closed(10, now), make_closed(-5, now)]
        hourly = [
            make_closed(10, now, held=timedelta(hours=1)),
            make_closed(-5, now, held=timedelta(hours=1)),
        ]

        assert aggregator.compute(hourly, [], TimeFrame.ALL, now).sharpe_ratio == pytest.approx(
            aggregator.compute(daily, [], TimeFrame.ALL, now).sharpe_ratio
        )

    def test_longer_holdings_scale_down(self, aggregator, make_closed, now):
        trades = [
            make_closed(10, now, held=timedelta(days=4)),
            make_closed(-5, now, held=timedelta(days=4)),
        ]
        result = aggregator.compute(trades, [], TimeFrame.ALL, now)

        expected = 0.025 / (0.075 * math.sqrt(2)) * math.sqrt(365 / 4)
        assert result.sharpe_ratio == pytest.approx(expected)
        assert result.average_holding_period_hours == pytest.approx(96.0)


class TestWindows:
    """Tests for time window resolution and filtering."""

    def test_week_filters_by_exit_time(self, aggregator, make_closed, now):
        trades = [
            make_closed(10, now - timedelta(days=3)),
            make_closed(20, now - timedelta(days=10)),
        ]
        result = aggregator.compute(trades, [], TimeFrame.WEEK, now)

        assert result.total_trades == 1
        assert result.total_pnl == Decimal("10")
        assert result.window_start == now - timedelta(days=7)
        assert result.window_end == now

    def test_bounds_inclusive(self, aggregator, make_closed, now):
        trades = [make_closed(10, now - timedelta(days=7)), make_closed(20, now)]
        result = aggregator.compute(trades, [], "1W", now)
        assert result.total_trades == 2

    def test_explicit_window(self, aggregator, make_closed, now):
        trades = [
            make_closed(10, now - timedelta(days=3)),
            make_closed(20, now - timedelta(days=1)),
        ]
        window = PerformanceWindow(start=now - timedelta(days=4), end=now - timedelta(days=2))
        result = aggregator.compute(trades, [], window, now)

        assert result.total_trades == 1
        assert result.total_pnl == Decimal("10")

    def test_start_after_end_rejected(self, now):
        with pytest.raises(ValidationError):
            PerformanceWindow(start=now, end=now - timedelta(days=1))

    def test_unknown_period_rejected(self, aggregator, now):
        with pytest.raises(ValidationError):
            aggregator.compute([], [], "2Y", now)

    @pytest.mark.parametrize("label,expected", [
        ("1d", TimeFrame.DAY),
        ("week", TimeFrame.WEEK),
        ("1M", TimeFrame.MONTH),
        ("quarter", TimeFrame.QUARTER),
        ("ALL", TimeFrame.ALL),
    ])
    def test_time_frame_labels(self, label, expected):
        assert TimeFrame(label) == expected

    def test_month_is_thirty_days(self, now):
        window = PerformanceWindow.from_time_frame(TimeFrame.MONTH, now)
        assert window.end - window.start == timedelta(days=30)


class TestAccountBalance:
    """Tests for balance and returns."""

    def test_balance_includes_all_history_and_unrealized(self, aggregator, make_closed, now):
        closed = [
            make_closed(100, now - timedelta(days=1)),
            make_closed(-30, now - timedelta(days=200)),
        ]
        open_position = Position(
            id="pos_open",
            ticker="SPY",
            option_symbol="SPY241220C00580000",
            contract_type=ContractType.CALL,
            strike=Decimal("580"),
            expiration=date(2024, 12, 20),
            side=PositionSide.LONG,
            quantity=5,
            entry_price=Decimal("2.45"),
            entry_timestamp=now,
            unrealized_pnl=Decimal("165"),
        )
        result = aggregator.compute(closed, [open_position], TimeFrame.WEEK, now, benchmark="SPY")

        assert result.total_trades == 1
        assert result.account_balance == Decimal("100235")
        assert result.unrealized_pnl == Decimal("165")
        assert result.open_positions == 1
        assert result.returns_percent == pytest.approx(0.235)
        assert result.benchmark == "SPY"
        assert result.to_dict()["benchmark"] == "SPY"


class TestPeriodBreakdown:
    """Tests for calendar grouping."""

    def test_daily_rows(self, aggregator, make_closed, now):
        trades = [
            make_closed(100, now - timedelta(days=1)),
            make_closed(-40, now),
            make_closed(25, now + timedelta(minutes=5)),
        ]
        rows = aggregator.period_breakdown(trades, "daily")

        assert [r.period for r in rows] == ["2024-10-14", "2024-10-15"]
        assert rows[0].realized_pnl == Decimal("100")
        assert rows[1].realized_pnl == Decimal("-15")
        assert rows[1].cumulative_pnl == Decimal("85")
        assert rows[1].trades == 2
        assert rows[1].winning_trades == 1

    def test_monthly_rows(self, aggregator, make_closed, now):
        trades = [make_closed(10, now), make_closed(10, now - timedelta(days=30))]
        rows = aggregator.period_breakdown(trades, "monthly")
        assert [r.period for r in rows] == ["2024-09", "2024-10"]

    def test_unknown_period_rejected(self, aggregator):
        with pytest.raises(ValidationError):
            aggregator.period_breakdown([], "hourly")
