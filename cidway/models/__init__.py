"""cidway data models. All Pydantic v2, all frozen (immutable)."""

from cidway.models.agent import (
    AgentMessage,
    AgentMessageSource,
    Capability,
    CurrentIndexEntry,
    IndexEntry,
    Invocation,
    InvocationSource,
    LegacyIndexEntry,
    ParsedAgentMessage,
    Receipt,
    ReceiptSource,
    parse_index_key,
)
from cidway.models.allocations import (
    Allocation,
    AllocationInput,
    AllocationListItem,
    Blob,
    InsertResult,
    ListOptions,
    ListPage,
    RemoveResult,
)
from cidway.models.metrics import StreamRecord

__all__ = [
    # agent messages
    "AgentMessage",
    "AgentMessageSource",
    "Capability",
    "Invocation",
    "ParsedAgentMessage",
    "Receipt",
    # index entries
    "CurrentIndexEntry",
    "IndexEntry",
    "InvocationSource",
    "LegacyIndexEntry",
    "ReceiptSource",
    "parse_index_key",
    # allocations
    "Allocation",
    "AllocationInput",
    "AllocationListItem",
    "Blob",
    "InsertResult",
    "ListOptions",
    "ListPage",
    "RemoveResult",
    # metrics
    "StreamRecord",
]
