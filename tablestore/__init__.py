"""
Single-table data access for users, wallets and transactions.

Callers go through the typed repositories in `tablestore.repos`, which
sit on a generic Store over a pluggable key-value engine.
"""

__version__ = "0.1.0"
