"""Paper Options Ledger - Utilities"""
