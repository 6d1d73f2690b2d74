"""
Paper Options Ledger - Position Schemas

Request models for the ledger operations. Field names are snake_case
in Python and accept the camelCase keys used by the HTTP payloads.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional, Type, TypeVar, Any, Dict

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from paper_ledger.core.models import (
    ContractType,
    PositionSide,
    ExitReason,
    MarketRegime,
    PositionStatus,
)
from paper_ledger.utils.exceptions import ValidationError


class LedgerSchema(BaseModel):
    """Base schema accepting both snake_case and camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


def _upper(v):
    if isinstance(v, str):
        return v.strip().upper()
    return v


# Enum values are matched case-insensitively
Upper = BeforeValidator(_upper)


class GreeksSchema(LedgerSchema):
    """Greeks snapshot from the market data feed."""
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0
    implied_volatility: float = Field(0.0, ge=0)


class PositionCreate(LedgerSchema):
    """Schema for opening a paper position."""
    ticker: str = Field(..., min_length=1, max_length=10, description="Underlying ticker")
    contract_type: Annotated[ContractType, Upper]
    strike: Decimal = Field(..., gt=0, allow_inf_nan=False)
    expiration: date
    side: Annotated[PositionSide, Upper]
    quantity: int = Field(..., description="Non-zero contract count")
    entry_price: Optional[Decimal] = Field(None, ge=0, allow_inf_nan=False)
    option_symbol: Optional[str] = Field(None, max_length=32)

    # Initial exit configuration
    stop_loss: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)
    profit_target: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)
    trailing_stop: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)

    # Entry context
    confidence: Optional[float] = Field(None, ge=0, le=1)
    conviction: Optional[float] = Field(None, ge=0, le=1)
    regime: Annotated[Optional[MarketRegime], Upper] = None

    @field_validator("ticker")
    @classmethod
    def upper_ticker(cls, v: str) -> str:
        return v.upper()

    @field_validator("quantity")
    @classmethod
    def non_zero_quantity(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity must be non-zero")
        return v

    @field_validator("expiration", mode="before")
    @classmethod
    def parse_expiration(cls, v):
        # Accept full ISO timestamps as well as plain dates
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
        return v


class ExitConditionsUpdate(LedgerSchema):
    """
    Partial update of a position's exit configuration.

    Only keys present in the payload are applied. An explicit null
    clears the stored value; an omitted key leaves it unchanged.
    """
    stop_loss: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)
    profit_target: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)
    trailing_stop: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)

    def provided(self) -> Dict[str, Optional[Decimal]]:
        """Fields explicitly present in the update, including explicit nulls."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class PositionClose(LedgerSchema):
    """Schema for closing a position."""
    exit_price: Optional[Decimal] = Field(None, ge=0, allow_inf_nan=False)
    reason: Annotated[ExitReason, Upper] = ExitReason.MANUAL


class PriceUpdate(LedgerSchema):
    """Market tick for one position."""
    price: Decimal = Field(..., ge=0, allow_inf_nan=False)
    greeks: Optional[GreeksSchema] = None


class PositionFilter(LedgerSchema):
    """List filter."""
    status: Annotated[Optional[PositionStatus], Upper] = None
    ticker: Optional[str] = None


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_payload(schema: Type[SchemaT], payload: Any) -> SchemaT:
    """
    Validate a payload against a schema.

    Args:
        schema: Pydantic model class
        payload: Model instance or mapping

    Returns:
        Validated model instance

    Raises:
        ValidationError: payload missing required fields or malformed
    """
    if isinstance(payload, schema):
        return payload
    if payload is None:
        payload = {}
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "invalid"}
        raise ValidationError(
            message=f"Invalid {first['field']}: {first['message']}",
            details={"errors": errors},
        ) from e
