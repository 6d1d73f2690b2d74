"""
Paper Options Ledger - Database Models
"""
from paper_ledger.db.models.position import OpenPositionRecord, ClosedPositionRecord

__all__ = [
    "OpenPositionRecord",
    "ClosedPositionRecord",
]
