"""Core components: identifier equivalence, content location, the
allocation ledger, the agent message index and usage metrics.

Every fallible operation returns an ``Ok``/``Err`` result value from
``cidway.core.results``.
"""
