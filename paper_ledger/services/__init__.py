"""
Paper Options Ledger - Services
"""
from paper_ledger.services.paper_trading import PaperTradingService

__all__ = ["PaperTradingService"]
