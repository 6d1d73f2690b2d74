"""
Paper Options Ledger - Database
"""
from paper_ledger.db.database import Base, engine, async_session_maker, init_db, get_db

__all__ = ["Base", "engine", "async_session_maker", "init_db", "get_db"]
