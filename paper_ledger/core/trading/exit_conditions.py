"""
Paper Options Ledger - Exit Condition Engine

Decides whether an open position should be closed at a given price.

Rules are evaluated in fixed precedence, first match wins:
1. Stop loss
2. Profit target
3. Trailing stop
4. Expiration

The engine keeps no state. The running favorable extreme needed by the
trailing stop is derived from the position's max favorable excursion,
which the ledger maintains. The trailing stop only arms once that
excursion is positive.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Callable, List, Tuple

from paper_ledger.core.models import Position, PositionSide, ExitReason


@dataclass(frozen=True)
class ExitSignal:
    """An exit decision for one position."""
    position_id: str
    reason: ExitReason
    exit_price: Decimal
    message: str

    def to_dict(self) -> dict:
        return {
            'position_id': self.position_id,
            'reason': self.reason.value,
            'exit_price': float(self.exit_price),
            'message': self.message
        }


class ExitConditionEngine:
    """
    Exit condition evaluator.

    Pure function of (position, price, timestamp). A position with no
    exit configuration can still exit on expiration.
    """

    def __init__(self):
        self._rules: List[Tuple[ExitReason, Callable[[Position, Decimal, datetime], Optional[str]]]] = [
            (ExitReason.STOP_LOSS, self._check_stop_loss),
            (ExitReason.PROFIT_TARGET, self._check_profit_target),
            (ExitReason.TRAILING_STOP, self._check_trailing_stop),
            (ExitReason.EXPIRATION, self._check_expiration),
        ]

    def evaluate(
        self,
        position: Position,
        price: Decimal,
        as_of: datetime
    ) -> Optional[ExitSignal]:
        """
        Evaluate exit rules against the latest price.

        Args:
            position: Position with risk state already updated for this price
            price: Latest option price
            as_of: Timestamp of the price update

        Returns:
            ExitSignal for the first matching rule, or None
        """
        for reason, rule in self._rules:
            message = rule(position, price, as_of)
            if message:
                return ExitSignal(
                    position_id=position.id,
                    reason=reason,
                    exit_price=price,
                    message=message
                )
        return None

    @staticmethod
    def _check_stop_loss(position: Position, price: Decimal, as_of: datetime) -> Optional[str]:
        stop = position.stop_loss
        if stop is None:
            return None

        if position.side == PositionSide.LONG and price <= stop:
            return f"Stop loss {stop} hit: price {price} at or below stop"
        if position.side == PositionSide.SHORT and price >= stop:
            return f"Stop loss {stop} hit: price {price} at or above stop"
        return None

    @staticmethod
    def _check_profit_target(position: Position, price: Decimal, as_of: datetime) -> Optional[str]:
        target = position.profit_target
        if target is None:
            return None

        if position.side == PositionSide.LONG and price >= target:
            return f"Profit target {target} reached: price {price}"
        if position.side == PositionSide.SHORT and price <= target:
            return f"Profit target {target} reached: price {price}"
        return None

    @staticmethod
    def _check_trailing_stop(position: Position, price: Decimal, as_of: datetime) -> Optional[str]:
        distance = position.trailing_stop
        extreme = position.favorable_extreme_price
        if distance is None or extreme is None:
            return None
        # Armed only once the position has been in profit
        if position.max_favorable_excursion <= 0:
            return None

        # Retrace measured against the direction of the position
        retrace = (extreme - price) * position.side.sign
        if retrace > distance:
            return (
                f"Trailing stop triggered: {retrace} retrace from extreme "
                f"{extreme} exceeds {distance}"
            )
        return None

    @staticmethod
    def _check_expiration(position: Position, price: Decimal, as_of: datetime) -> Optional[str]:
        if as_of.date() > position.expiration:
            return f"Contract expired on {position.expiration.isoformat()}"
        return None
