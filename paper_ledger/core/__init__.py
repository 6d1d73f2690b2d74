"""
Paper Options Ledger - Core Module
"""
