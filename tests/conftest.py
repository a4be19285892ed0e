"""Shared test fixtures for cidway."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from cidway.config import CidwayConfig, Services, build_services
from cidway.core.agent_index import AgentMessageIndex
from cidway.core.allocations import AllocationLedger
from cidway.core.content_locator import ContentLocationResolver
from cidway.core.equivalence import EquivalenceClaims
from cidway.core.signing import Signer
from cidway.models.agent import AgentMessage, Capability, Invocation, Receipt
from cidway.storage.memory import MemoryKeyedStore, MemoryObjectStore
from cidway.storage.sqlite import SqliteKeyedStore

SPACE = "did:key:z6MkrZ1r5XBFZjBU34qyD8fueMbMRkKw17BZaq2ivKFjnz2z"
OTHER_SPACE = "did:key:z6MkwDK3M4PxU1FqcSt6quBH1xRBSGnPRdQYP9B13h3Wq5X1"
SERVICE = "did:web:cidway.test"
CARPARK = "carpark"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def objects() -> MemoryObjectStore:
    """Provide an empty in-memory object store."""
    return MemoryObjectStore()


@pytest.fixture
def items() -> MemoryKeyedStore:
    """Provide an empty in-memory keyed store."""
    return MemoryKeyedStore()


@pytest.fixture(params=["memory", "sqlite"])
def keyed_store(request: pytest.FixtureRequest, tmp_dir: Path):
    """Every KeyedStore implementation, fresh per test."""
    if request.param == "memory":
        return MemoryKeyedStore()
    return SqliteKeyedStore(tmp_dir / "items.db")


@pytest.fixture
def ledger(keyed_store) -> AllocationLedger:
    """Provide an AllocationLedger over each keyed store backend."""
    return AllocationLedger(keyed_store)


@pytest.fixture
def claims(items: MemoryKeyedStore) -> EquivalenceClaims:
    return EquivalenceClaims(items)


@pytest.fixture
def locator(objects: MemoryObjectStore) -> ContentLocationResolver:
    return ContentLocationResolver(objects, CARPARK)


@pytest.fixture
def agent_index(objects: MemoryObjectStore) -> AgentMessageIndex:
    return AgentMessageIndex(objects, "agent-index", "agent-message")


@pytest.fixture
def services(objects: MemoryObjectStore, items: MemoryKeyedStore) -> Services:
    """Provide fully wired services over in-memory stores."""
    config = CidwayConfig(object_store="memory", bucket_name=CARPARK, _env_file=None)
    return build_services(config, objects=objects, items=items)


# ---------------------------------------------------------------------------
# Agent message factories, shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def agent() -> Signer:
    """A deterministic agent keypair."""
    return Signer(bytes(range(32)))


@pytest.fixture
def service_signer() -> Signer:
    return Signer(bytes(range(32, 64)))


@pytest.fixture
def make_invocation(agent: Signer) -> Callable[..., Invocation]:
    """Factory fixture: a signed invocation with sensible defaults."""

    def _factory(
        can: str = "blob/allocate",
        space: str = SPACE,
        nonce: str | None = None,
        **nb,
    ) -> Invocation:
        return Invocation.issue(
            agent,
            SERVICE,
            [Capability(can=can, resource=space, nb=nb)],
            nonce=nonce,
        )

    return _factory


@pytest.fixture
def make_receipt(service_signer: Signer) -> Callable[..., Receipt]:
    """Factory fixture: a signed receipt for an invocation."""

    def _factory(ran: Invocation, out: dict | None = None) -> Receipt:
        return Receipt.issue(service_signer, ran, out if out is not None else {"ok": {}})

    return _factory


@pytest.fixture
def make_message() -> Callable[..., AgentMessage]:
    def _factory(invocations=(), receipts=()) -> AgentMessage:
        return AgentMessage(invocations=list(invocations), receipts=list(receipts))

    return _factory
