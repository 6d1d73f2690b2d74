"""
Paper Options Ledger - Custom Exceptions

Ledger errors are local and synchronous. They carry a symbolic code
for the boundary layer to translate; they never carry a wire status.
"""
from dataclasses import dataclass
from typing import Optional, Any, Dict


class PaperTradingException(Exception):
    """Base exception for the paper options ledger."""

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# =========================
# Ledger Exceptions
# =========================

class LedgerError(PaperTradingException):
    """Position ledger related errors."""
    pass


class ValidationError(LedgerError):
    """Malformed or missing input. The caller must fix the input."""

    def __init__(
        self,
        message: str = "Invalid input",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)


class NotFoundError(LedgerError):
    """Position id unknown to the ledger."""

    def __init__(
        self,
        position_id: str = "",
        message: Optional[str] = None,
        code: str = "POSITION_NOT_FOUND"
    ):
        if message is None:
            message = f"Position '{position_id}' not found" if position_id else "Position not found"
        super().__init__(
            message=message,
            code=code,
            details={"position_id": position_id} if position_id else None
        )


class AlreadyClosedError(NotFoundError):
    """
    Operation is not valid on a CLOSED position.

    A closed position is absent from the open set, so callers catching
    NotFoundError also see this; the code tells the two apart.
    """

    def __init__(self, position_id: str = ""):
        message = (
            f"Position '{position_id}' is already closed" if position_id
            else "Position is already closed"
        )
        super().__init__(position_id, message=message, code="POSITION_ALREADY_CLOSED")


# =========================
# Analytics Markers
# =========================

@dataclass(frozen=True)
class ComputationUndefined:
    """
    Marker for a metric with no defined value for the given data.

    Returned in place of a number (e.g. Sharpe ratio with one trade).
    It is not raised: an undefined metric is a valid result, never 0
    and never a crash.
    """
    reason: str = "undefined"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"ComputationUndefined({self.reason!r})"


def is_defined(value: Any) -> bool:
    """Return True unless value is a ComputationUndefined marker."""
    return not isinstance(value, ComputationUndefined)
