"""
Market data aggregation and ledger reconciliation engine.

Read-side core for bonding-curve reputation markets: merges per-curve vault
records, resolves entity metadata, reconciles indexed and pending
transactions, and derives position and portfolio metrics.
"""

__version__ = "1.0.0"
