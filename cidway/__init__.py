"""cidway: content-addressed storage indirection.

Maps CIDs (raw, CAR and v2 piece CIDs) to signed, time-limited retrieval
URLs, keeps the per-space allocation ledger, and indexes archived agent
messages so invocations and receipts can be recovered by task.
"""

__version__ = "0.1.0"
__description__ = "Content-addressed storage indirection: CID redirects, allocations, agent message index"

__all__ = ["__version__"]
