"""
Paper Options Ledger - Schemas
"""
from paper_ledger.schemas.position import (
    GreeksSchema,
    PositionCreate,
    ExitConditionsUpdate,
    PositionClose,
    PriceUpdate,
    PositionFilter,
    parse_payload,
)

__all__ = [
    "GreeksSchema",
    "PositionCreate",
    "ExitConditionsUpdate",
    "PositionClose",
    "PriceUpdate",
    "PositionFilter",
    "parse_payload",
]
