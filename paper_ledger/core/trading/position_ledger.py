"""
Paper Options Ledger - Position Ledger

Owns the authoritative set of paper option positions for one account,
applies the OPEN -> CLOSED lifecycle, and keeps live P&L current from
injected price ticks.

All mutations are serialized by a single lock over the position table.
Reads take the same lock and return copies, so callers never observe a
partially updated position. Nothing inside the lock performs I/O.
"""
import bisect
import threading
import uuid
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Iterable, Mapping, Tuple, Union

from loguru import logger

from paper_ledger.config import settings
from paper_ledger.core.models import (
    Position,
    PositionSide,
    PositionStatus,
    ExitReason,
    Greeks,
    occ_symbol,
)
from paper_ledger.core.trading.exit_conditions import ExitConditionEngine, ExitSignal
from paper_ledger.schemas.position import (
    PositionCreate,
    ExitConditionsUpdate,
    PositionClose,
    PositionFilter,
    PriceUpdate,
    GreeksSchema,
    parse_payload,
)
from paper_ledger.utils.exceptions import (
    ValidationError,
    NotFoundError,
    AlreadyClosedError,
)


GreeksInput = Union[Greeks, GreeksSchema, Mapping[str, Any], None]


@dataclass
class LedgerSnapshot:
    """Consistent copy of the ledger taken under one lock acquisition."""
    open_positions: List[Position] = field(default_factory=list)
    closed_history: List[Position] = field(default_factory=list)


@dataclass
class TickerExposure:
    """Open exposure aggregated for one underlying."""
    ticker: str
    positions: int = 0
    contracts: int = 0
    exposure: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "positions": self.positions,
            "contracts": self.contracts,
            "exposure": float(self.exposure),
            "pnl": float(self.unrealized_pnl),
        }


def _new_position_id() -> str:
    return f"pos_{uuid.uuid4().hex[:16]}"


def _parse_price_update(price: Any, greeks: GreeksInput) -> Tuple[Decimal, Optional[Greeks]]:
    if isinstance(greeks, Greeks):
        greeks = asdict(greeks)
    request = parse_payload(PriceUpdate, {"price": price, "greeks": greeks})
    if request.greeks is None:
        return request.price, None
    return request.price, Greeks(**request.greeks.model_dump())


class PositionLedger:
    """
    Position Ledger

    Responsible for:
    - Opening positions from validated specs
    - Marking open positions to market and tracking excursions
    - Auto-closing positions when an exit condition triggers
    - Manual closes and exit-condition adjustments
    - Keeping the closed history ordered by exit timestamp

    Usage:
        ledger = PositionLedger()
        position = ledger.open({...}, as_of=now)
        ledger.apply_price_update(position.id, Decimal("2.78"), as_of=now)
        ledger.close(position.id, as_of=now)
    """

    def __init__(
        self,
        exit_engine: Optional[ExitConditionEngine] = None,
        multiplier: Optional[int] = None,
        id_factory=_new_position_id,
    ):
        self.exit_engine = exit_engine if exit_engine is not None else ExitConditionEngine()
        self.multiplier = multiplier if multiplier is not None else settings.CONTRACT_MULTIPLIER
        if self.multiplier <= 0:
            raise ValidationError(
                message=f"Contract multiplier must be positive, got {self.multiplier}",
                details={"field": "multiplier"}
            )
        self._id_factory = id_factory
        self._lock = threading.RLock()
        self._open: Dict[str, Position] = {}
        self._closed: List[Position] = []
        self._closed_ids: set = set()
        self._issued_ids: set = set()

    # ==================== Lifecycle ====================

    def open(self, payload: Union[PositionCreate, Mapping[str, Any]], *, as_of: datetime) -> Position:
        """
        Open a new paper position.

        Args:
            payload: PositionCreate or mapping with ticker, contractType, strike,
                expiration, side, quantity and optional entryPrice
            as_of: Acquisition time, recorded as the entry timestamp

        Returns:
            Copy of the created position

        Raises:
            ValidationError: required field missing or malformed
        """
        request = parse_payload(PositionCreate, payload)

        quantity = request.quantity
        if quantity < 0:
            # A negative quantity is an alternate encoding of SHORT
            if request.side != PositionSide.SHORT:
                raise ValidationError(
                    message="Negative quantity conflicts with side LONG",
                    details={"field": "quantity"}
                )
            quantity = -quantity

        if request.expiration < as_of.date():
            raise ValidationError(
                message=(
                    f"Expiration {request.expiration.isoformat()} is before "
                    f"entry date {as_of.date().isoformat()}"
                ),
                details={"field": "expiration"}
            )

        option_symbol = request.option_symbol or occ_symbol(
            request.ticker, request.expiration, request.contract_type, request.strike
        )

        with self._lock:
            position_id = self._next_id()
            position = Position(
                id=position_id,
                ticker=request.ticker,
                option_symbol=option_symbol,
                contract_type=request.contract_type,
                strike=request.strike,
                expiration=request.expiration,
                side=request.side,
                quantity=quantity,
                entry_price=request.entry_price,
                entry_timestamp=as_of,
                multiplier=self.multiplier,
                current_price=request.entry_price,
                updated_at=as_of,
                stop_loss=request.stop_loss,
                profit_target=request.profit_target,
                trailing_stop=request.trailing_stop,
                confidence=request.confidence,
                conviction=request.conviction,
                regime=request.regime,
            )
            self._open[position_id] = position

            logger.info(
                f"Opened {position.side.value} {position.quantity}x {position.option_symbol} "
                f"@ {position.entry_price} as {position_id}"
            )
            return replace(position)

    def apply_price_update(
        self,
        position_id: str,
        price: Any,
        greeks: GreeksInput = None,
        *,
        as_of: datetime
    ) -> Position:
        """
        Mark an open position to a new price.

        Recomputes unrealized P&L and excursions, replaces the Greeks
        snapshot, then closes the position if an exit condition triggers.

        Args:
            position_id: Position ID
            price: Latest option price
            greeks: Latest Greeks; None keeps the current snapshot
            as_of: Time of the tick

        Returns:
            Copy of the position after the update (CLOSED if an exit fired)

        Raises:
            ValidationError: malformed, negative or non-finite price,
                malformed greeks, or a tick before the entry timestamp
            NotFoundError: unknown position
            AlreadyClosedError: position already CLOSED
        """
        price, new_greeks = _parse_price_update(price, greeks)

        with self._lock:
            position = self._get_open(position_id)
            self._check_not_before_entry(position, as_of)
            self._apply_locked(position, price, new_greeks, as_of)
            return replace(position)

    def mark_to_market(
        self,
        prices: Mapping[str, Any],
        *,
        as_of: datetime,
        greeks: Optional[Mapping[str, GreeksInput]] = None
    ) -> List[Position]:
        """
        Apply option quotes to every open position holding those contracts.

        The batch is all-or-nothing: every quote is validated against every
        target before any position is marked.

        Args:
            prices: Dict of option symbol -> price
            as_of: Time of the quotes
            greeks: Optional dict of option symbol -> Greeks

        Returns:
            Copies of the updated positions, including any auto-closed ones

        Raises:
            ValidationError: any quote malformed, or as_of before the entry
                timestamp of any target; no position is changed
        """
        greeks = greeks if greeks is not None else {}
        quotes = {}
        for symbol, price in prices.items():
            try:
                quotes[symbol] = _parse_price_update(price, greeks.get(symbol))
            except ValidationError as e:
                e.details["symbol"] = symbol
                raise

        with self._lock:
            targets = [p for p in self._open.values() if p.option_symbol in quotes]
            for position in targets:
                self._check_not_before_entry(position, as_of)

            updated = []
            for position in targets:
                price, new_greeks = quotes[position.option_symbol]
                self._apply_locked(position, price, new_greeks, as_of)
                updated.append(replace(position))
            return updated

    def adjust_exit_conditions(
        self,
        position_id: str,
        update: Union[ExitConditionsUpdate, Mapping[str, Any]]
    ) -> Position:
        """
        Change stop loss, profit target or trailing stop on an open position.

        Args:
            position_id: Position ID
            update: ExitConditionsUpdate or mapping. Present keys overwrite,
                explicit nulls clear, omitted keys are left unchanged.

        Returns:
            Copy of the updated position

        Raises:
            ValidationError: no field provided, or a non-positive value
            NotFoundError: unknown position
            AlreadyClosedError: position already CLOSED
        """
        request = parse_payload(ExitConditionsUpdate, update)
        changes = request.provided()
        if not changes:
            raise ValidationError(
                message=(
                    "At least one adjustment parameter "
                    "(stopLoss, profitTarget, trailingStop) is required"
                )
            )

        with self._lock:
            position = self._get_open(position_id)
            for name, value in changes.items():
                setattr(position, name, value)
            position.version += 1

            logger.info(f"Adjusted exit conditions on {position_id}: {changes}")
            return replace(position)

    def close(
        self,
        position_id: str,
        exit_price: Any = None,
        reason: Union[ExitReason, str] = ExitReason.MANUAL,
        *,
        as_of: datetime
    ) -> Position:
        """
        Close an open position.

        Args:
            position_id: Position ID
            exit_price: Fill price; defaults to the last applied price
            reason: Exit reason (default MANUAL)
            as_of: Exit time

        Returns:
            Copy of the closed position

        Raises:
            ValidationError: no price available, bad reason, or exit before entry
            NotFoundError: unknown position
            AlreadyClosedError: position already CLOSED
        """
        with self._lock:
            # State is checked before arguments: a second close always
            # reports AlreadyClosedError
            position = self._get_open(position_id)

            request = parse_payload(PositionClose, {"exit_price": exit_price, "reason": reason})
            self._close_locked(position, request.exit_price, request.reason, as_of)
            return replace(position)

    def expire_positions(self, *, as_of: datetime) -> List[Position]:
        """
        Close every open position whose expiration date has passed.

        Positions are closed at their last known price with reason EXPIRATION.
        Positions that were never priced are skipped.

        Returns:
            Copies of the positions closed
        """
        expired = []
        with self._lock:
            for position in list(self._open.values()):
                if as_of.date() <= position.expiration:
                    continue
                if position.current_price is None:
                    logger.warning(f"Cannot expire {position.id}: no price has been applied")
                    continue
                self._close_locked(position, None, ExitReason.EXPIRATION, as_of)
                expired.append(replace(position))
        return expired

    def close_all(
        self,
        reason: Union[ExitReason, str] = ExitReason.MANUAL,
        *,
        as_of: datetime
    ) -> List[Position]:
        """
        Force-close every open position at its last known price.

        Positions that were never priced are skipped and stay open.

        Args:
            reason: Exit reason recorded on every close (default MANUAL)
            as_of: Exit time

        Returns:
            Copies of the positions closed, in entry order

        Raises:
            ValidationError: bad reason, or as_of before the entry timestamp
                of any priced position; nothing is closed
        """
        reason = parse_payload(PositionClose, {"reason": reason}).reason

        with self._lock:
            targets = []
            for position in self._open.values():
                if position.current_price is None:
                    logger.warning(f"Cannot close {position.id}: no price has been applied")
                    continue
                self._check_not_before_entry(position, as_of)
                targets.append(position)

            closed = []
            for position in targets:
                self._close_locked(position, None, reason, as_of)
                closed.append(replace(position))

        logger.info(f"Force closed {len(closed)} positions ({reason.value})")
        return closed

    # ==================== Reads ====================

    def get(self, position_id: str) -> Position:
        """Get a copy of a position, open or closed."""
        with self._lock:
            position = self._open.get(position_id)
            if position is None:
                position = next((p for p in self._closed if p.id == position_id), None)
            if position is None:
                raise NotFoundError(position_id)
            return replace(position)

    def list(
        self,
        status: Optional[str] = None,
        ticker: Optional[str] = None
    ) -> List[Position]:
        """
        List positions.

        Args:
            status: OPEN or CLOSED, case-insensitive exact match
            ticker: Case-insensitive substring of the ticker

        Returns:
            Copies of matching positions: open ones in entry order,
            then closed ones in exit order
        """
        filters = parse_payload(PositionFilter, {"status": status, "ticker": ticker})
        needle = filters.ticker.lower() if filters.ticker else None

        with self._lock:
            positions = list(self._open.values()) + self._closed
            return [
                replace(p) for p in positions
                if (filters.status is None or p.status == filters.status)
                and (needle is None or needle in p.ticker.lower())
            ]

    def open_positions(self) -> List[Position]:
        with self._lock:
            return [replace(p) for p in self._open.values()]

    def closed_history(self) -> List[Position]:
        with self._lock:
            return [replace(p) for p in self._closed]

    def exposure_by_ticker(self) -> Dict[str, TickerExposure]:
        """
        Aggregate open positions per underlying.

        Exposure is the market value of the contracts at the last applied
        price. Unpriced positions count toward positions and contracts only.

        Returns:
            Dict of ticker -> TickerExposure, sorted by ticker
        """
        rows: Dict[str, TickerExposure] = {}
        with self._lock:
            for position in self._open.values():
                row = rows.setdefault(position.ticker, TickerExposure(ticker=position.ticker))
                row.positions += 1
                row.contracts += position.quantity
                if position.current_price is not None:
                    row.exposure += position.current_price * position.quantity * position.multiplier
                row.unrealized_pnl += position.unrealized_pnl
        return {ticker: rows[ticker] for ticker in sorted(rows)}

    def snapshot(self) -> LedgerSnapshot:
        """Copy open positions and closed history atomically."""
        with self._lock:
            return LedgerSnapshot(
                open_positions=[replace(p) for p in self._open.values()],
                closed_history=[replace(p) for p in self._closed],
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._open) + len(self._closed)

    # ==================== Restore ====================

    def restore(
        self,
        open_positions: Iterable[Position],
        closed_history: Iterable[Position]
    ) -> None:
        """
        Rebuild ledger state from persisted records.

        Args:
            open_positions: Records from the open-position table
            closed_history: Records from the closed-position log

        Raises:
            ValidationError: ledger not empty, duplicate ids, or a record
                whose status does not match its table
        """
        open_positions = [replace(p) for p in open_positions]
        closed_history = [replace(p) for p in closed_history]

        seen = set()
        for p in open_positions + closed_history:
            if p.id in seen:
                raise ValidationError(message=f"Duplicate position id {p.id}")
            seen.add(p.id)
        for p in open_positions:
            if p.status != PositionStatus.OPEN:
                raise ValidationError(message=f"Open table holds non-open position {p.id}")
        for p in closed_history:
            if p.status != PositionStatus.CLOSED or p.exit_timestamp is None or p.realized_pnl is None:
                raise ValidationError(message=f"Closed log holds incomplete record {p.id}")

        with self._lock:
            if self._open or self._closed:
                raise ValidationError(message="Cannot restore into a non-empty ledger")
            self._open = {p.id: p for p in sorted(open_positions, key=lambda p: p.entry_timestamp)}
            self._closed = sorted(closed_history, key=lambda p: p.exit_timestamp)
            self._closed_ids = {p.id for p in self._closed}
            self._issued_ids |= seen

        logger.info(
            f"Restored ledger: {len(open_positions)} open, {len(closed_history)} closed"
        )

    # ==================== Internals ====================

    def _next_id(self) -> str:
        position_id = self._id_factory()
        while position_id in self._issued_ids:
            position_id = self._id_factory()
        self._issued_ids.add(position_id)
        return position_id

    def _get_open(self, position_id: str) -> Position:
        position = self._open.get(position_id)
        if position is not None:
            return position
        if position_id in self._closed_ids:
            logger.warning(f"Rejected operation on closed position {position_id}")
            raise AlreadyClosedError(position_id)
        raise NotFoundError(position_id)

    @staticmethod
    def _check_not_before_entry(position: Position, as_of: datetime) -> None:
        if as_of < position.entry_timestamp:
            raise ValidationError(
                message=f"Price update for {position.id} precedes entry timestamp",
                details={"field": "as_of", "position_id": position.id}
            )

    def _apply_locked(
        self,
        position: Position,
        price: Decimal,
        greeks: Optional[Greeks],
        as_of: datetime
    ) -> None:
        self._mark(position, price, as_of)
        if greeks is not None:
            position.greeks = greeks

        logger.debug(
            f"{position.id} marked @ {price}: pnl={position.unrealized_pnl} "
            f"({position.unrealized_pnl_percent}%)"
        )

        signal = self.exit_engine.evaluate(position, price, as_of)
        if signal is not None:
            self._close_triggered(position, signal, as_of)

    @staticmethod
    def _mark(position: Position, price: Decimal, as_of: datetime) -> None:
        """Recompute live P&L and excursions at price."""
        if position.entry_price is None:
            # First observed price is the fill
            position.entry_price = price

        pnl = position.pnl_at(price)
        position.current_price = price
        position.unrealized_pnl = pnl
        position.unrealized_pnl_percent = position.pnl_percent_at(price)
        if pnl > position.max_favorable_excursion:
            position.max_favorable_excursion = pnl
        if pnl < position.max_adverse_excursion:
            position.max_adverse_excursion = pnl
        position.updated_at = as_of
        position.version += 1

    def _close_triggered(self, position: Position, signal: ExitSignal, as_of: datetime) -> None:
        logger.info(f"Auto-exit {position.id}: {signal.reason.value} - {signal.message}")
        self._close_locked(position, signal.exit_price, signal.reason, as_of)

    def _close_locked(
        self,
        position: Position,
        exit_price: Optional[Decimal],
        reason: ExitReason,
        as_of: datetime
    ) -> None:
        if exit_price is None:
            exit_price = position.current_price
        if exit_price is None:
            raise ValidationError(
                message=f"No exit price supplied and no price applied to {position.id}",
                details={"field": "exit_price"}
            )
        if as_of < position.entry_timestamp:
            raise ValidationError(
                message="Exit timestamp precedes entry timestamp",
                details={"field": "as_of"}
            )

        self._mark(position, exit_price, as_of)
        position.realized_pnl = position.unrealized_pnl
        position.exit_price = exit_price
        position.exit_timestamp = as_of
        position.exit_reason = reason
        position.status = PositionStatus.CLOSED

        del self._open[position.id]
        bisect.insort(self._closed, position, key=lambda p: p.exit_timestamp)
        self._closed_ids.add(position.id)

        logger.info(
            f"Closed {position.id} @ {exit_price} ({reason.value}): "
            f"realized P&L {position.realized_pnl}"
        )
