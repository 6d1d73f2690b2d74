"""
Performance Analytics Service

Derives trading performance statistics from the ledger's closed history
and the current open-position snapshot:
- Win/loss statistics (win rate, profit factor, averages, best/worst)
- Streaks and drawdown on the realized P&L curve
- Risk-adjusted return (Sharpe, annualized by average holding period)
- Account balance including unrealized P&L

Every computation is a pure function of its inputs. "Now" is always
passed in explicitly.
"""
import numpy as np
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Iterable, Union

from paper_ledger.config import settings
from paper_ledger.core.models import Position
from paper_ledger.utils.exceptions import (
    ComputationUndefined,
    ValidationError,
    is_defined,
)


Metric = Union[Decimal, float, ComputationUndefined]


class TimeFrame(str, Enum):
    """Preset aggregation window, counted back from now."""
    DAY = "1D"
    WEEK = "1W"
    MONTH = "1M"
    QUARTER = "3M"
    YEAR = "1Y"
    ALL = "ALL"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().upper()
            aliases = {
                "DAY": cls.DAY, "WEEK": cls.WEEK, "MONTH": cls.MONTH,
                "QUARTER": cls.QUARTER, "YEAR": cls.YEAR, "ALL_TIME": cls.ALL,
            }
            for member in cls:
                if member.value == key:
                    return member
            return aliases.get(key)
        return None


_TIME_FRAME_OFFSETS = {
    TimeFrame.DAY: timedelta(days=1),
    TimeFrame.WEEK: timedelta(days=7),
    TimeFrame.MONTH: timedelta(days=30),
    TimeFrame.QUARTER: timedelta(days=90),
    TimeFrame.YEAR: timedelta(days=365),
}


@dataclass(frozen=True)
class PerformanceWindow:
    """Inclusive [start, end] window on exit timestamps. None means unbounded."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValidationError(
                message="Window start is after window end",
                details={"start": self.start.isoformat(), "end": self.end.isoformat()}
            )

    @classmethod
    def from_time_frame(cls, time_frame: Union[TimeFrame, str], now: datetime) -> "PerformanceWindow":
        """Resolve a preset against an explicit now."""
        try:
            time_frame = TimeFrame(time_frame)
        except ValueError:
            raise ValidationError(
                message=f"Unknown period: {time_frame}",
                details={"allowed": [t.value for t in TimeFrame]}
            )
        if time_frame == TimeFrame.ALL:
            return cls()
        return cls(start=now - _TIME_FRAME_OFFSETS[time_frame], end=now)

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


@dataclass
class PerformanceSnapshot:
    """Performance statistics for one window."""
    # Trade counts
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    # Realized P&L
    total_pnl: Decimal = Decimal("0")
    gross_profit: Decimal = Decimal("0")
    gross_loss: Decimal = Decimal("0")
    average_win: Decimal = Decimal("0")
    average_loss: Decimal = Decimal("0")
    profit_factor: Metric = Decimal("0")
    best_trade: Metric = ComputationUndefined("no trades in window")
    worst_trade: Metric = ComputationUndefined("no trades in window")

    # Streaks
    consecutive_wins: int = 0
    consecutive_losses: int = 0

    # Risk
    max_drawdown: Decimal = Decimal("0")
    max_drawdown_percent: float = 0.0
    sharpe_ratio: Metric = ComputationUndefined("fewer than 2 trades")
    average_holding_period_hours: float = 0.0

    # Account
    initial_balance: Decimal = Decimal("0")
    account_balance: Decimal = Decimal("0")
    returns_percent: float = 0.0
    unrealized_pnl: Decimal = Decimal("0")
    open_positions: int = 0

    # Window
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    as_of: Optional[datetime] = None
    benchmark: Optional[str] = None

    @property
    def undefined_metrics(self) -> Dict[str, str]:
        """Names of metrics without a defined value, with the reason."""
        return {
            name: getattr(self, name).reason
            for name in ("profit_factor", "best_trade", "worst_trade", "sharpe_ratio")
            if not is_defined(getattr(self, name))
        }

    def to_dict(self) -> dict:
        def _num(value: Metric) -> Optional[float]:
            return float(value) if is_defined(value) else None

        return {
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': self.win_rate,
            'total_pnl': float(self.total_pnl),
            'gross_profit': float(self.gross_profit),
            'gross_loss': float(self.gross_loss),
            'average_win': float(self.average_win),
            'average_loss': float(self.average_loss),
            'profit_factor': _num(self.profit_factor),
            'best_trade': _num(self.best_trade),
            'worst_trade': _num(self.worst_trade),
            'consecutive_wins': self.consecutive_wins,
            'consecutive_losses': self.consecutive_losses,
            'max_drawdown': float(self.max_drawdown),
            'max_drawdown_percent': self.max_drawdown_percent,
            'sharpe_ratio': _num(self.sharpe_ratio),
            'average_holding_period_hours': self.average_holding_period_hours,
            'initial_balance': float(self.initial_balance),
            'account_balance': float(self.account_balance),
            'returns_percent': self.returns_percent,
            'unrealized_pnl': float(self.unrealized_pnl),
            'open_positions': self.open_positions,
            'window_start': self.window_start.isoformat() if self.window_start else None,
            'window_end': self.window_end.isoformat() if self.window_end else None,
            'as_of': self.as_of.isoformat() if self.as_of else None,
            'benchmark': self.benchmark,
            'undefined': self.undefined_metrics,
        }


@dataclass
class PeriodPnL:
    """Realized P&L for one calendar period."""
    period: str  # "2024-10-15", "2024-W42", "2024-10"
    start_date: datetime
    end_date: datetime
    realized_pnl: Decimal
    cumulative_pnl: Decimal
    trades: int
    winning_trades: int

    def to_dict(self) -> dict:
        return {
            'period': self.period,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'realized_pnl': float(self.realized_pnl),
            'cumulative_pnl': float(self.cumulative_pnl),
            'trades': self.trades,
            'winning_trades': self.winning_trades,
        }


def _exit_order(position: Position):
    # Ties on exit time are broken by id so results never depend on append order
    return (position.exit_timestamp, position.id)


class PerformanceAggregator:
    """
    Performance aggregator over ledger history.

    Holds no positions of its own; every call receives a read-only
    snapshot from the ledger.
    """

    def __init__(
        self,
        initial_balance: Optional[Decimal] = None,
        days_per_year: Optional[int] = None
    ):
        self.initial_balance = Decimal(str(
            initial_balance if initial_balance is not None else settings.INITIAL_BALANCE
        ))
        self.days_per_year = days_per_year if days_per_year is not None else settings.DAYS_PER_YEAR

    def compute(
        self,
        closed_history: Iterable[Position],
        open_positions: Iterable[Position],
        window: Union[PerformanceWindow, TimeFrame, str, None],
        now: datetime,
        benchmark: Optional[str] = None
    ) -> PerformanceSnapshot:
        """
        Calculate performance statistics.

        Args:
            closed_history: Closed positions (any order)
            open_positions: Current open positions
            window: PerformanceWindow, TimeFrame preset, or None for all history
            now: Reference time used to resolve presets
            benchmark: Optional benchmark label echoed into the result

        Returns:
            PerformanceSnapshot
        """
        if window is None:
            window = PerformanceWindow()
        elif not isinstance(window, PerformanceWindow):
            window = PerformanceWindow.from_time_frame(window, now)

        closed = sorted(
            (p for p in closed_history if p.realized_pnl is not None and p.exit_timestamp),
            key=_exit_order
        )
        open_positions = list(open_positions)
        trades = [p for p in closed if window.contains(p.exit_timestamp)]

        snapshot = PerformanceSnapshot(
            initial_balance=self.initial_balance,
            window_start=window.start,
            window_end=window.end,
            as_of=now,
            benchmark=benchmark,
        )

        self._fill_trade_statistics(snapshot, trades)
        self._fill_streaks(snapshot, trades)
        self._fill_drawdown(snapshot, closed, trades, window)
        snapshot.sharpe_ratio = self._calculate_sharpe(trades)
        snapshot.average_holding_period_hours = self._average_holding_hours(trades)

        # Account balance spans all history, not just the window
        realized_all = sum((p.realized_pnl for p in closed), Decimal("0"))
        unrealized = sum((p.unrealized_pnl for p in open_positions), Decimal("0"))
        snapshot.unrealized_pnl = unrealized
        snapshot.open_positions = len(open_positions)
        snapshot.account_balance = self.initial_balance + realized_all + unrealized
        if self.initial_balance > 0:
            snapshot.returns_percent = float(
                (snapshot.account_balance - self.initial_balance) / self.initial_balance * 100
            )

        return snapshot

    def _fill_trade_statistics(self, snapshot: PerformanceSnapshot, trades: List[Position]) -> None:
        pnls = [p.realized_pnl for p in trades]
        wins = [pnl for pnl in pnls if pnl > 0]
        losses = [pnl for pnl in pnls if pnl < 0]

        snapshot.total_trades = len(pnls)
        snapshot.winning_trades = len(wins)
        snapshot.losing_trades = len(losses)
        snapshot.win_rate = len(wins) / len(pnls) if pnls else 0.0

        snapshot.total_pnl = sum(pnls, Decimal("0"))
        snapshot.gross_profit = sum(wins, Decimal("0"))
        snapshot.gross_loss = sum(losses, Decimal("0"))
        snapshot.average_win = snapshot.gross_profit / len(wins) if wins else Decimal("0")
        snapshot.average_loss = snapshot.gross_loss / len(losses) if losses else Decimal("0")

        if losses:
            snapshot.profit_factor = snapshot.gross_profit / abs(snapshot.gross_loss)
        elif wins:
            snapshot.profit_factor = ComputationUndefined("no losing trades")
        else:
            snapshot.profit_factor = Decimal("0")

        if pnls:
            snapshot.best_trade = max(pnls)
            snapshot.worst_trade = min(pnls)

    @staticmethod
    def _fill_streaks(snapshot: PerformanceSnapshot, trades: List[Position]) -> None:
        max_wins = max_losses = 0
        current_wins = current_losses = 0

        for trade in trades:
            if trade.realized_pnl > 0:
                current_wins += 1
                current_losses = 0
            elif trade.realized_pnl < 0:
                current_losses += 1
                current_wins = 0
            else:
                # Flat trade ends both runs
                current_wins = current_losses = 0
            max_wins = max(max_wins, current_wins)
            max_losses = max(max_losses, current_losses)

        snapshot.consecutive_wins = max_wins
        snapshot.consecutive_losses = max_losses

    def _fill_drawdown(
        self,
        snapshot: PerformanceSnapshot,
        closed: List[Position],
        trades: List[Position],
        window: PerformanceWindow
    ) -> None:
        # Balance carried into the window from earlier realized trades
        balance = self.initial_balance
        if window.start is not None:
            balance += sum(
                (p.realized_pnl for p in closed if p.exit_timestamp < window.start),
                Decimal("0")
            )

        peak = balance
        max_dd = Decimal("0")
        max_dd_pct = 0.0
        for trade in trades:
            balance += trade.realized_pnl
            if balance > peak:
                peak = balance
            drawdown = peak - balance
            if drawdown > max_dd:
                max_dd = drawdown
                max_dd_pct = float(drawdown / peak * 100) if peak > 0 else 0.0

        snapshot.max_drawdown = max_dd
        snapshot.max_drawdown_percent = max_dd_pct

    def _calculate_sharpe(self, trades: List[Position]) -> Metric:
        """
        Per-trade Sharpe ratio.

        mean / sample stdev of per-trade returns on cost basis, scaled by
        sqrt(trades per year) where trades per year follows from the
        average holding period (floored at one day).
        """
        returns = np.array([
            float(p.return_fraction) for p in trades if p.return_fraction is not None
        ])
        if len(returns) < 2:
            return ComputationUndefined("fewer than 2 trades")

        std = float(np.std(returns, ddof=1))
        if std <= 1e-12:
            return ComputationUndefined("zero return volatility")

        holding_days = max(self._average_holding_hours(trades) / 24.0, 1.0)
        periods_per_year = self.days_per_year / holding_days
        return float(np.mean(returns) / std * np.sqrt(periods_per_year))

    @staticmethod
    def _average_holding_hours(trades: List[Position]) -> float:
        hours = [
            p.holding_period.total_seconds() / 3600.0
            for p in trades if p.holding_period is not None
        ]
        return float(np.mean(hours)) if hours else 0.0

    def period_breakdown(
        self,
        closed_history: Iterable[Position],
        period: str = "daily",
        window: Optional[PerformanceWindow] = None
    ) -> List[PeriodPnL]:
        """
        Group realized P&L by calendar period of exit.

        Args:
            closed_history: Closed positions
            period: "daily", "weekly" or "monthly"
            window: Optional window on exit timestamps

        Returns:
            List of PeriodPnL in chronological order
        """
        if period not in ("daily", "weekly", "monthly"):
            raise ValidationError(
                message=f"Unknown breakdown period: {period}",
                details={"allowed": ["daily", "weekly", "monthly"]}
            )
        window = window or PerformanceWindow()

        trades = sorted(
            (
                p for p in closed_history
                if p.realized_pnl is not None and p.exit_timestamp
                and window.contains(p.exit_timestamp)
            ),
            key=_exit_order
        )

        groups: "OrderedDict[str, List[Position]]" = OrderedDict()
        for trade in trades:
            ts = trade.exit_timestamp
            if period == "daily":
                key = ts.strftime("%Y-%m-%d")
            elif period == "weekly":
                iso = ts.isocalendar()
                key = f"{iso[0]}-W{iso[1]:02d}"
            else:
                key = f"{ts.year}-{ts.month:02d}"
            groups.setdefault(key, []).append(trade)

        results = []
        cumulative = Decimal("0")
        for key, group in groups.items():
            realized = sum((p.realized_pnl for p in group), Decimal("0"))
            cumulative += realized
            results.append(PeriodPnL(
                period=key,
                start_date=group[0].exit_timestamp,
                end_date=group[-1].exit_timestamp,
                realized_pnl=realized,
                cumulative_pnl=cumulative,
                trades=len(group),
                winning_trades=sum(1 for p in group if p.realized_pnl > 0),
            ))

        return results
