"""
Paper Options Ledger

Paper-trading option position ledger, exit-condition engine and
performance aggregator.
"""
__version__ = "0.1.0"
