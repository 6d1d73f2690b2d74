"""
Paper Options Ledger - Position Model

An option position tracked on paper from OPEN to CLOSED.

Money values are Decimal. Prices are per share; P&L is scaled by
quantity and the contract multiplier (100 shares for equity options).
"""
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Any, Dict


PCT_QUANT = Decimal("0.0001")


class ContractType(str, Enum):
    """Option contract type."""
    CALL = "CALL"
    PUT = "PUT"


class PositionSide(str, Enum):
    """Direction of the position."""
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is PositionSide.LONG else -1


class PositionStatus(str, Enum):
    """Lifecycle status. CLOSED is terminal."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    """Why a position was closed."""
    MANUAL = "MANUAL"
    STOP_LOSS = "STOP_LOSS"
    PROFIT_TARGET = "PROFIT_TARGET"
    TRAILING_STOP = "TRAILING_STOP"
    EXPIRATION = "EXPIRATION"


class MarketRegime(str, Enum):
    """Market regime tag recorded at entry."""
    BULL = "BULL"
    BEAR = "BEAR"
    NEUTRAL = "NEUTRAL"


def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def occ_symbol(ticker: str, expiration: date, contract_type: ContractType, strike: Decimal) -> str:
    """
    Build the OCC option symbol, e.g. SPY241220C00580000.

    Strike is encoded in thousandths, zero padded to 8 digits.
    """
    strike_code = int((to_decimal(strike) * 1000).to_integral_value(rounding=ROUND_HALF_UP))
    return f"{ticker.upper()}{expiration:%y%m%d}{contract_type.value[0]}{strike_code:08d}"


@dataclass(frozen=True)
class Greeks:
    """Option sensitivities snapshot."""
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0
    implied_volatility: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Position:
    """Paper option position."""
    # Identity
    id: str
    ticker: str
    option_symbol: str
    contract_type: ContractType
    strike: Decimal
    expiration: date

    # Static terms
    side: PositionSide
    quantity: int  # Always positive; direction comes from side
    entry_price: Optional[Decimal]  # None until the first fill price is known
    entry_timestamp: datetime
    multiplier: int = 100

    # Mutable risk state
    current_price: Optional[Decimal] = None
    unrealized_pnl: Decimal = Decimal("0")
    unrealized_pnl_percent: Decimal = Decimal("0")
    max_favorable_excursion: Decimal = Decimal("0")
    max_adverse_excursion: Decimal = Decimal("0")
    greeks: Greeks = field(default_factory=Greeks)
    updated_at: Optional[datetime] = None
    version: int = 0  # Bumped by the ledger on every mutation

    # Exit configuration
    stop_loss: Optional[Decimal] = None
    profit_target: Optional[Decimal] = None
    trailing_stop: Optional[Decimal] = None

    # Lifecycle
    status: PositionStatus = PositionStatus.OPEN
    exit_timestamp: Optional[datetime] = None
    exit_price: Optional[Decimal] = None
    exit_reason: Optional[ExitReason] = None
    realized_pnl: Optional[Decimal] = None

    # Entry context
    confidence: Optional[float] = None
    conviction: Optional[float] = None
    regime: Optional[MarketRegime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def units(self) -> int:
        """Underlying units controlled (quantity x multiplier)."""
        return self.quantity * self.multiplier

    @property
    def cost_basis(self) -> Decimal:
        """Premium paid or received at entry."""
        if self.entry_price is None:
            return Decimal("0")
        return self.entry_price * self.units

    def pnl_at(self, price: Decimal) -> Decimal:
        """P&L if marked at price: (price - entry) x quantity x side sign x multiplier."""
        if self.entry_price is None:
            return Decimal("0")
        return (price - self.entry_price) * self.units * self.side.sign

    def pnl_percent_at(self, price: Decimal) -> Decimal:
        """P&L at price relative to cost basis, in percent."""
        cost_basis = self.cost_basis
        if cost_basis == 0:
            return Decimal("0")
        return (self.pnl_at(price) / cost_basis * 100).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)

    @property
    def favorable_extreme_price(self) -> Optional[Decimal]:
        """
        Best price seen while open, derived from max favorable excursion.

        Highest price for LONG, lowest price for SHORT.
        """
        if self.entry_price is None:
            return None
        return self.entry_price + self.max_favorable_excursion / self.units * self.side.sign

    @property
    def final_pnl(self) -> Decimal:
        """Realized P&L once closed, live unrealized P&L while open."""
        if self.realized_pnl is not None:
            return self.realized_pnl
        return self.unrealized_pnl

    @property
    def holding_period(self) -> Optional[timedelta]:
        if self.exit_timestamp is None:
            return None
        return self.exit_timestamp - self.entry_timestamp

    @property
    def return_fraction(self) -> Optional[Decimal]:
        """Realized return on cost basis as a fraction; None if not computable."""
        if self.realized_pnl is None or self.cost_basis == 0:
            return None
        return self.realized_pnl / self.cost_basis

    def days_to_expiration(self, as_of: datetime) -> int:
        return (self.expiration - as_of.date()).days

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with floats and ISO timestamps."""
        def _f(value: Optional[Decimal]) -> Optional[float]:
            return float(value) if value is not None else None

        def _ts(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "ticker": self.ticker,
            "option_symbol": self.option_symbol,
            "contract_type": self.contract_type.value,
            "strike": float(self.strike),
            "expiration": self.expiration.isoformat(),
            "side": self.side.value,
            "quantity": self.quantity,
            "multiplier": self.multiplier,
            "entry_price": _f(self.entry_price),
            "entry_timestamp": _ts(self.entry_timestamp),
            "current_price": _f(self.current_price),
            "pnl": float(self.unrealized_pnl),
            "pnl_percent": float(self.unrealized_pnl_percent),
            "max_favorable_excursion": float(self.max_favorable_excursion),
            "max_adverse_excursion": float(self.max_adverse_excursion),
            "greeks": self.greeks.to_dict(),
            "stop_loss": _f(self.stop_loss),
            "profit_target": _f(self.profit_target),
            "trailing_stop": _f(self.trailing_stop),
            "status": self.status.value,
            "exit_timestamp": _ts(self.exit_timestamp),
            "exit_price": _f(self.exit_price),
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "final_pnl": _f(self.realized_pnl),
            "confidence": self.confidence,
            "conviction": self.conviction,
            "regime": self.regime.value if self.regime else None,
            "updated_at": _ts(self.updated_at),
            "version": self.version,
        }

    def __repr__(self):
        return f"<Position {self.id} {self.option_symbol} {self.side.value} x{self.quantity} {self.status.value}>"
