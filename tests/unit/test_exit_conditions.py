"""
Unit Tests - Exit Condition Engine
Tests for rule evaluation and precedence.
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from paper_ledger.core.models import Position, ContractType, PositionSide, ExitReason
from paper_ledger.core.trading.exit_conditions import ExitConditionEngine


def make_position(
    side: PositionSide = PositionSide.LONG,
    entry: str = "2.45",
    stop_loss=None,
    profit_target=None,
    trailing_stop=None,
    max_favorable_excursion: str = "0",
    expiration: date = date(2024, 12, 20),
    entry_timestamp=None,
) -> Position:
    return Position(
        id="pos_test",
        ticker="SPY",
        option_symbol="SPY241220C00580000",
        contract_type=ContractType.CALL,
        strike=Decimal("580"),
        expiration=expiration,
        side=side,
        quantity=5,
        entry_price=Decimal(entry),
        entry_timestamp=entry_timestamp,
        max_favorable_excursion=Decimal(max_favorable_excursion),
        stop_loss=Decimal(stop_loss) if stop_loss else None,
        profit_target=Decimal(profit_target) if profit_target else None,
        trailing_stop=Decimal(trailing_stop) if trailing_stop else None,
    )


@pytest.fixture
def engine():
    return ExitConditionEngine()


class TestStopLossAndTarget:
    """Tests for fixed price exits."""

    def test_no_configuration_no_exit(self, engine, now):
        position = make_position(entry_timestamp=now)
        assert engine.evaluate(position, Decimal("0.10"), now) is None

    def test_long_stop_at_threshold(self, engine, now):
        position = make_position(stop_loss="2.00", entry_timestamp=now)
        signal = engine.evaluate(position, Decimal("2.00"), now)

        assert signal.reason == ExitReason.STOP_LOSS
        assert signal.exit_price == Decimal("2.00")
        assert signal.position_id == "pos_test"

    def test_long_target(self, engine, now):
        position = make_position(profit_target="3.00", entry_timestamp=now)
        assert engine.evaluate(position, Decimal("2.99"), now) is None
        assert engine.evaluate(position, Decimal("3.00"), now).reason == ExitReason.PROFIT_TARGET

    def test_short_directions_inverted(self, engine, now):
        """Short stops trigger on rises and targets on falls."""
        position = make_position(
            side=PositionSide.SHORT, stop_loss="3.00", profit_target="1.50", entry_timestamp=now
        )

        assert engine.evaluate(position, Decimal("3.10"), now).reason == ExitReason.STOP_LOSS
        assert engine.evaluate(position, Decimal("1.40"), now).reason == ExitReason.PROFIT_TARGET
        assert engine.evaluate(position, Decimal("2.00"), now) is None

    def test_stop_loss_wins_over_target(self, engine, now):
        """When both fire on the same tick the stop loss is reported."""
        position = make_position(stop_loss="3.00", profit_target="2.00", entry_timestamp=now)
        signal = engine.evaluate(position, Decimal("2.50"), now)

        assert signal.reason == ExitReason.STOP_LOSS

    def test_stop_loss_wins_over_expiration(self, engine, now):
        position = make_position(stop_loss="2.00", expiration=now.date(), entry_timestamp=now)
        signal = engine.evaluate(position, Decimal("1.00"), now + timedelta(days=1))

        assert signal.reason == ExitReason.STOP_LOSS


class TestTrailingStop:
    """Tests for trailing stop retrace."""

    def test_long_retrace_beyond_distance(self, engine, now):
        # Extreme 3.00: 5 contracts x 100 x 0.55
        position = make_position(
            trailing_stop="0.30", max_favorable_excursion="275", entry_timestamp=now
        )

        assert position.favorable_extreme_price == Decimal("3.00")
        assert engine.evaluate(position, Decimal("2.75"), now) is None
        assert engine.evaluate(position, Decimal("2.69"), now).reason == ExitReason.TRAILING_STOP

    def test_retrace_equal_to_distance_holds(self, engine, now):
        position = make_position(
            trailing_stop="0.30", max_favorable_excursion="275", entry_timestamp=now
        )
        assert engine.evaluate(position, Decimal("2.70"), now) is None

    def test_short_retrace(self, engine, now):
        # Short extreme 2.00: price fell 0.45 from entry
        position = make_position(
            side=PositionSide.SHORT,
            trailing_stop="0.30",
            max_favorable_excursion="225",
            entry_timestamp=now,
        )

        assert position.favorable_extreme_price == Decimal("2.00")
        assert engine.evaluate(position, Decimal("2.25"), now) is None
        assert engine.evaluate(position, Decimal("2.35"), now).reason == ExitReason.TRAILING_STOP

    @pytest.mark.parametrize("side,price", [
        (PositionSide.LONG, "2.20"),
        (PositionSide.SHORT, "2.70"),
    ])
    def test_not_armed_without_favorable_excursion(self, engine, now, side, price):
        """Losing from entry is the stop loss's job, not the trailing stop's."""
        position = make_position(side=side, trailing_stop="0.20", entry_timestamp=now)

        assert position.favorable_extreme_price == Decimal("2.45")
        assert engine.evaluate(position, Decimal(price), now) is None


class TestExpiration:
    """Tests for expiration."""

    def test_on_expiration_date_holds(self, engine, now):
        position = make_position(expiration=now.date(), entry_timestamp=now)
        assert engine.evaluate(position, Decimal("1.00"), now) is None

    def test_after_expiration_date_exits(self, engine, now):
        position = make_position(expiration=now.date(), entry_timestamp=now)
        signal = engine.evaluate(position, Decimal("1.00"), now + timedelta(days=1))

        assert signal.reason == ExitReason.EXPIRATION
        assert signal.to_dict()["reason"] == "EXPIRATION"
