"""
Paper Trading Service

Boundary between a transport layer (HTTP, RPC) and the ledger core.
Owns the clock, validates payloads, calls the ledger, then persists the
result outside the ledger lock.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Callable, Dict, List, Mapping, Union

from paper_ledger.config import settings
from paper_ledger.core.analytics.performance import (
    PerformanceAggregator,
    PerformanceSnapshot,
    PerformanceWindow,
    PeriodPnL,
    TimeFrame,
)
from paper_ledger.core.models import Position, ExitReason
from paper_ledger.core.trading.position_ledger import PositionLedger
from paper_ledger.db.repositories.position import PositionRepository
from paper_ledger.utils.logger import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PaperTradingService:
    """
    Service for paper option trading operations.

    Usage:
        service = PaperTradingService(repository=PositionRepository(session))
        await service.load_state()

        position = await service.create_position({
            "ticker": "SPY", "contractType": "CALL", "strike": 580,
            "expiration": "2024-12-20", "side": "LONG",
            "quantity": 5, "entryPrice": 2.45,
        })
        await service.apply_market_update(position.id, 2.78)
        metrics = await service.get_performance("1M")
    """

    def __init__(
        self,
        ledger: Optional[PositionLedger] = None,
        aggregator: Optional[PerformanceAggregator] = None,
        repository: Optional[PositionRepository] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ledger = ledger if ledger is not None else PositionLedger()
        self.aggregator = aggregator if aggregator is not None else PerformanceAggregator()
        self.repository = repository
        self.clock = clock

    # ==================== State ====================

    async def load_state(self) -> PositionLedger:
        """Restore the ledger from the repository, if one is configured."""
        if self.repository is None:
            return self.ledger
        await self.repository.load_ledger(self.ledger)
        return self.ledger

    async def _persist(self, position: Position) -> None:
        if self.repository is None:
            return
        if position.is_open:
            await self.repository.upsert_open(position)
        else:
            await self.repository.append_closed(position)

    # ==================== Positions ====================

    async def list_positions(
        self,
        status: Optional[str] = None,
        ticker: Optional[str] = None
    ) -> List[Position]:
        """List positions, optionally filtered by status and ticker substring."""
        return self.ledger.list(status=status, ticker=ticker)

    async def get_position(self, position_id: str) -> Position:
        return self.ledger.get(position_id)

    async def create_position(self, payload: Mapping[str, Any]) -> Position:
        """
        Open a position at the current clock time.

        Args:
            payload: Position fields (camelCase or snake_case keys)

        Returns:
            The created position
        """
        position = self.ledger.open(payload, as_of=self.clock())
        await self._persist(position)
        return position

    async def adjust_position(self, position_id: str, payload: Mapping[str, Any]) -> Position:
        """Change exit conditions. Present keys overwrite, nulls clear."""
        position = self.ledger.adjust_exit_conditions(position_id, payload)
        await self._persist(position)
        return position

    async def close_position(
        self,
        position_id: str,
        exit_price: Any = None,
        reason: Union[ExitReason, str] = ExitReason.MANUAL
    ) -> Position:
        """Close a position; without exit_price the last applied price is used."""
        position = self.ledger.close(position_id, exit_price, reason, as_of=self.clock())
        await self._persist(position)
        return position

    async def apply_market_update(
        self,
        position_id: str,
        price: Any,
        greeks: Optional[Mapping[str, Any]] = None
    ) -> Position:
        """
        Apply a price tick to one position.

        Returns:
            The updated position; CLOSED if an exit condition fired
        """
        position = self.ledger.apply_price_update(
            position_id, price, greeks, as_of=self.clock()
        )
        if not position.is_open:
            logger.info(f"{position_id} auto-closed by {position.exit_reason.value}")
        await self._persist(position)
        return position

    async def mark_to_market(
        self,
        prices: Mapping[str, Any],
        greeks: Optional[Mapping[str, Any]] = None
    ) -> List[Position]:
        """Apply a batch of option quotes keyed by option symbol."""
        updated = self.ledger.mark_to_market(prices, as_of=self.clock(), greeks=greeks)
        for position in updated:
            await self._persist(position)
        return updated

    async def expire_positions(self) -> List[Position]:
        """Close every position past its expiration date."""
        expired = self.ledger.expire_positions(as_of=self.clock())
        for position in expired:
            await self._persist(position)
        if expired:
            logger.info(f"Expired {len(expired)} positions")
        return expired

    async def close_all_positions(
        self,
        reason: Union[ExitReason, str] = ExitReason.MANUAL
    ) -> List[Position]:
        """Force-close every priced open position at its last price."""
        closed = self.ledger.close_all(reason, as_of=self.clock())
        for position in closed:
            await self._persist(position)
        return closed

    async def get_exposure(self) -> Dict[str, Dict[str, Any]]:
        """Open exposure and unrealized P&L per ticker."""
        return {
            ticker: row.to_dict()
            for ticker, row in self.ledger.exposure_by_ticker().items()
        }

    # ==================== Performance ====================

    async def get_performance(
        self,
        period: Union[TimeFrame, str, None] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        benchmark: Optional[str] = None
    ) -> PerformanceSnapshot:
        """
        Compute performance metrics.

        Args:
            period: Preset window (1D, 1W, 1M, 3M, 1Y, ALL); defaults to
                DEFAULT_TIME_FRAME when no explicit bounds are given
            start: Explicit window start (inclusive)
            end: Explicit window end (inclusive)
            benchmark: Benchmark label echoed into the result

        Returns:
            PerformanceSnapshot
        """
        if start is not None or end is not None:
            window: Union[PerformanceWindow, TimeFrame, str] = PerformanceWindow(start=start, end=end)
        else:
            window = period or settings.DEFAULT_TIME_FRAME

        snapshot = self.ledger.snapshot()
        return self.aggregator.compute(
            snapshot.closed_history,
            snapshot.open_positions,
            window,
            now=self.clock(),
            benchmark=benchmark,
        )

    async def get_period_breakdown(self, period: str = "daily") -> List[PeriodPnL]:
        """Realized P&L grouped by day, week or month of exit."""
        return self.aggregator.period_breakdown(self.ledger.closed_history(), period)

    async def get_summary(self) -> Dict[str, Any]:
        """Open positions and all-time performance in one payload."""
        snapshot = self.ledger.snapshot()
        metrics = self.aggregator.compute(
            snapshot.closed_history,
            snapshot.open_positions,
            TimeFrame.ALL,
            now=self.clock(),
        )
        return {
            "open_positions": [p.to_dict() for p in snapshot.open_positions],
            "closed_count": len(snapshot.closed_history),
            "performance": metrics.to_dict(),
        }
