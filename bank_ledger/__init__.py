"""
Bank Ledger Service

A small ledger service with optimistic-concurrency account mutations and an
audit log derived from the store's immutable transaction log.
"""

__version__ = "1.0.0"
