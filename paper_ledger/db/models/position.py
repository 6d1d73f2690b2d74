"""
Paper Options Ledger - Position Records

Two tables back the ledger:
- open_positions: keyed by position id, overwritten on every mark
- closed_positions: append-only log, read back in exit order

SQLite drops timezone info, so timestamps are stored as UTC and read
back as aware UTC datetimes.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Integer, String, Numeric, Float, Date, DateTime, JSON

from paper_ledger.core.models import (
    Position,
    ContractType,
    PositionSide,
    PositionStatus,
    ExitReason,
    MarketRegime,
    Greeks,
)
from paper_ledger.db.database import Base


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PositionColumns:
    """Columns shared by the open table and the closed log."""

    id = Column(String(32), primary_key=True)

    # Contract
    ticker = Column(String(10), nullable=False, index=True)
    option_symbol = Column(String(32), nullable=False)
    contract_type = Column(String(4), nullable=False)
    strike = Column(Numeric(18, 6), nullable=False)
    expiration = Column(Date, nullable=False)

    # Terms
    side = Column(String(5), nullable=False)
    quantity = Column(Integer, nullable=False)
    multiplier = Column(Integer, nullable=False, default=100)
    entry_price = Column(Numeric(18, 6), nullable=True)
    entry_timestamp = Column(DateTime, nullable=False)

    # Risk state
    current_price = Column(Numeric(18, 6), nullable=True)
    unrealized_pnl = Column(Numeric(20, 6), default=Decimal("0"))
    unrealized_pnl_percent = Column(Numeric(12, 4), default=Decimal("0"))
    max_favorable_excursion = Column(Numeric(20, 6), default=Decimal("0"))
    max_adverse_excursion = Column(Numeric(20, 6), default=Decimal("0"))
    greeks = Column(JSON, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=0)

    # Exit configuration
    stop_loss = Column(Numeric(18, 6), nullable=True)
    profit_target = Column(Numeric(18, 6), nullable=True)
    trailing_stop = Column(Numeric(18, 6), nullable=True)

    status = Column(String(6), nullable=False, default=PositionStatus.OPEN.value)

    # Entry context
    confidence = Column(Float, nullable=True)
    conviction = Column(Float, nullable=True)
    regime = Column(String(10), nullable=True)

    def update_from(self, position: Position) -> None:
        """Copy every field of a domain position onto this record."""
        self.id = position.id
        self.ticker = position.ticker
        self.option_symbol = position.option_symbol
        self.contract_type = position.contract_type.value
        self.strike = position.strike
        self.expiration = position.expiration
        self.side = position.side.value
        self.quantity = position.quantity
        self.multiplier = position.multiplier
        self.entry_price = position.entry_price
        self.entry_timestamp = _to_utc(position.entry_timestamp)
        self.current_price = position.current_price
        self.unrealized_pnl = position.unrealized_pnl
        self.unrealized_pnl_percent = position.unrealized_pnl_percent
        self.max_favorable_excursion = position.max_favorable_excursion
        self.max_adverse_excursion = position.max_adverse_excursion
        self.greeks = position.greeks.to_dict()
        self.updated_at = _to_utc(position.updated_at)
        self.version = position.version
        self.stop_loss = position.stop_loss
        self.profit_target = position.profit_target
        self.trailing_stop = position.trailing_stop
        self.status = position.status.value
        self.confidence = position.confidence
        self.conviction = position.conviction
        self.regime = position.regime.value if position.regime else None

    def _domain_fields(self) -> dict:
        return dict(
            id=self.id,
            ticker=self.ticker,
            option_symbol=self.option_symbol,
            contract_type=ContractType(self.contract_type),
            strike=self.strike,
            expiration=self.expiration,
            side=PositionSide(self.side),
            quantity=self.quantity,
            multiplier=self.multiplier,
            entry_price=self.entry_price,
            entry_timestamp=_from_utc(self.entry_timestamp),
            current_price=self.current_price,
            unrealized_pnl=self.unrealized_pnl or Decimal("0"),
            unrealized_pnl_percent=self.unrealized_pnl_percent or Decimal("0"),
            max_favorable_excursion=self.max_favorable_excursion or Decimal("0"),
            max_adverse_excursion=self.max_adverse_excursion or Decimal("0"),
            greeks=Greeks(**(self.greeks or {})),
            updated_at=_from_utc(self.updated_at),
            version=self.version or 0,
            stop_loss=self.stop_loss,
            profit_target=self.profit_target,
            trailing_stop=self.trailing_stop,
            status=PositionStatus(self.status),
            confidence=self.confidence,
            conviction=self.conviction,
            regime=MarketRegime(self.regime) if self.regime else None,
        )

    def to_domain(self) -> Position:
        return Position(**self._domain_fields())

    @classmethod
    def from_domain(cls, position: Position):
        record = cls()
        record.update_from(position)
        return record


class OpenPositionRecord(PositionColumns, Base):
    """Row in the open-position table."""

    __tablename__ = "open_positions"

    def __repr__(self):
        return f"<OpenPositionRecord {self.id} {self.option_symbol}>"


class ClosedPositionRecord(PositionColumns, Base):
    """Entry in the append-only closed-position log."""

    __tablename__ = "closed_positions"

    exit_timestamp = Column(DateTime, nullable=False, index=True)
    exit_price = Column(Numeric(18, 6), nullable=False)
    exit_reason = Column(String(16), nullable=False)
    realized_pnl = Column(Numeric(20, 6), nullable=False)

    def update_from(self, position: Position) -> None:
        super().update_from(position)
        self.exit_timestamp = _to_utc(position.exit_timestamp)
        self.exit_price = position.exit_price
        self.exit_reason = position.exit_reason.value
        self.realized_pnl = position.realized_pnl

    def to_domain(self) -> Position:
        fields = self._domain_fields()
        fields.update(
            exit_timestamp=_from_utc(self.exit_timestamp),
            exit_price=self.exit_price,
            exit_reason=ExitReason(self.exit_reason),
            realized_pnl=self.realized_pnl,
        )
        return Position(**fields)

    def __repr__(self):
        return f"<ClosedPositionRecord {self.id} {self.exit_reason} pnl={self.realized_pnl}>"
