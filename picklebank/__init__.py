"""
PickleBank Ledger

Account-balance ledger with an append-only transaction log and
single-use, time-boxed authorization codes for fund transfers.
"""

__version__ = "1.0.0"
