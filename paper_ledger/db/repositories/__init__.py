"""
Paper Options Ledger - Data Repositories

Repository pattern implementations for database operations.
"""
from paper_ledger.db.repositories.position import PositionRepository, get_position_repository

__all__ = [
    "PositionRepository",
    "get_position_repository",
]
