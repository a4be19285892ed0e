"""Agent message models: invocations, receipts, messages and index entries.

Blocks are DAG-CBOR.  An invocation block is::

    {"iss": did, "aud": did, "att": [{"can", "with", "nb"}], "nnc": str,
     "prf": [link], "s": signature}

Its **task** is the CID of ``{iss, aud, att, nnc}``; its **invocation** CID
is the CID of the whole block.  A receipt block is::

    {"ocm": {"ran": link, "out": {"ok"|"error": ...},
             "fx": {"fork": [], "join": null}, "meta": {}, "iss": did},
     "sig": signature}
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from typing import Any, Literal, Union

import dag_cbor
from multiformats import CID
from pydantic import BaseModel, ConfigDict, Field

from cidway.core import signing
from cidway.core.hasher import block_cid, cid_key

MESSAGE_TAG = "ucanto/message@7.1.0"

Block = tuple[CID, bytes]
Direction = Literal["in", "out"]


def _decode_block(blocks: Mapping[CID, bytes], root: CID) -> Any | None:
    data = blocks.get(root)
    if data is None:
        return None
    return dag_cbor.decode(data)


# ---------------------------------------------------------------------------
# Invocations
# ---------------------------------------------------------------------------


class Capability(BaseModel):
    """One delegated ability: ``can`` on resource ``with`` with caveats ``nb``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    can: str
    resource: str
    nb: dict[str, Any] = Field(default_factory=dict)

    def to_ipld(self) -> dict[str, Any]:
        return {"can": self.can, "with": self.resource, "nb": dict(self.nb)}

    @classmethod
    def from_ipld(cls, node: Mapping[str, Any]) -> Capability:
        return cls(can=node["can"], resource=node["with"], nb=dict(node.get("nb") or {}))


class Invocation(BaseModel):
    """A signed request from ``issuer`` to ``audience``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    issuer: str
    audience: str
    capabilities: list[Capability]
    nonce: str = ""
    proofs: list[CID] = Field(default_factory=list)
    signature: bytes = b""

    @classmethod
    def issue(
        cls,
        signer: signing.Signer,
        audience: str,
        capabilities: list[Capability],
        *,
        nonce: str | None = None,
        proofs: list[CID] | None = None,
    ) -> Invocation:
        """Build and sign an invocation as *signer*."""
        unsigned = cls(
            issuer=signer.did,
            audience=audience,
            capabilities=capabilities,
            nonce=uuid.uuid4().hex if nonce is None else nonce,
            proofs=proofs or [],
        )
        signature = signer.sign(dag_cbor.encode(unsigned.signed_payload()))
        return unsigned.model_copy(update={"signature": signature})

    def task_payload(self) -> dict[str, Any]:
        return {
            "iss": self.issuer,
            "aud": self.audience,
            "att": [c.to_ipld() for c in self.capabilities],
            "nnc": self.nonce,
        }

    def signed_payload(self) -> dict[str, Any]:
        return {**self.task_payload(), "prf": list(self.proofs)}

    def to_ipld(self) -> dict[str, Any]:
        return {**self.signed_payload(), "s": self.signature}

    @property
    def task(self) -> CID:
        """CID of the unsigned task, shared by every re-issue of it."""
        return block_cid(dag_cbor.encode(self.task_payload()))

    def encode(self) -> Block:
        data = dag_cbor.encode(self.to_ipld())
        return block_cid(data), data

    @property
    def cid(self) -> CID:
        return self.encode()[0]

    def blocks(self) -> list[Block]:
        return [self.encode()]

    def verify(self) -> bool:
        """Check the signature against the issuer's ``did:key``."""
        return signing.verify(
            dag_cbor.encode(self.signed_payload()), self.signature, self.issuer
        )

    @classmethod
    def from_ipld(cls, node: Mapping[str, Any]) -> Invocation:
        return cls(
            issuer=node["iss"],
            audience=node["aud"],
            capabilities=[Capability.from_ipld(c) for c in node["att"]],
            nonce=node.get("nnc", ""),
            proofs=list(node.get("prf") or []),
            signature=node.get("s", b""),
        )

    @classmethod
    def view(cls, blocks: Mapping[CID, bytes], root: CID) -> Invocation | None:
        """Reconstruct the invocation rooted at *root*, or ``None`` if absent."""
        node = _decode_block(blocks, root)
        if node is None:
            return None
        return cls.from_ipld(node)


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


class Receipt(BaseModel):
    """The signed outcome of running an invocation.

    ``ran`` is the full invocation when its block is available and its bare
    CID otherwise.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ran: Union[Invocation, CID]
    out: dict[str, Any]
    issuer: str
    fx: dict[str, Any] = Field(default_factory=lambda: {"fork": [], "join": None})
    meta: dict[str, Any] = Field(default_factory=dict)
    signature: bytes = b""

    @classmethod
    def issue(
        cls,
        signer: signing.Signer,
        ran: Invocation | CID,
        out: dict[str, Any],
        *,
        meta: dict[str, Any] | None = None,
    ) -> Receipt:
        unsigned = cls(ran=ran, out=out, issuer=signer.did, meta=meta or {})
        signature = signer.sign(dag_cbor.encode(unsigned.outcome()))
        return unsigned.model_copy(update={"signature": signature})

    @property
    def ran_cid(self) -> CID:
        return self.ran.cid if isinstance(self.ran, Invocation) else self.ran

    @property
    def task(self) -> CID:
        """Task of the invocation that ran.  Equals ``ran_cid`` when unknown."""
        return self.ran.task if isinstance(self.ran, Invocation) else self.ran

    @property
    def is_ok(self) -> bool:
        return "ok" in self.out

    def outcome(self) -> dict[str, Any]:
        return {
            "ran": self.ran_cid,
            "out": self.out,
            "fx": self.fx,
            "meta": self.meta,
            "iss": self.issuer,
        }

    def to_ipld(self) -> dict[str, Any]:
        return {"ocm": self.outcome(), "sig": self.signature}

    def encode(self) -> Block:
        data = dag_cbor.encode(self.to_ipld())
        return block_cid(data), data

    @property
    def cid(self) -> CID:
        return self.encode()[0]

    def blocks(self) -> list[Block]:
        ran = self.ran.blocks() if isinstance(self.ran, Invocation) else []
        return [*ran, self.encode()]

    def verify(self) -> bool:
        return signing.verify(dag_cbor.encode(self.outcome()), self.signature, self.issuer)

    @classmethod
    def view(cls, blocks: Mapping[CID, bytes], root: CID) -> Receipt | None:
        """Reconstruct the receipt rooted at *root*, or ``None`` if absent."""
        node = _decode_block(blocks, root)
        if node is None:
            return None
        outcome = node["ocm"]
        ran_link = outcome["ran"]
        ran = Invocation.view(blocks, ran_link) or ran_link
        return cls(
            ran=ran,
            out=dict(outcome["out"]),
            issuer=outcome["iss"],
            fx=dict(outcome.get("fx") or {"fork": [], "join": None}),
            meta=dict(outcome.get("meta") or {}),
            signature=node.get("sig", b""),
        )


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class AgentMessage(BaseModel):
    """A bundle of invocations to execute and receipts being reported."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    invocations: list[Invocation] = Field(default_factory=list)
    receipts: list[Receipt] = Field(default_factory=list)

    def root_ipld(self) -> dict[str, Any]:
        return {
            MESSAGE_TAG: {
                "execute": [inv.cid for inv in self.invocations],
                "report": {cid_key(r.ran_cid): r.cid for r in self.receipts},
            }
        }

    def encode(self) -> tuple[CID, list[Block]]:
        """Return the root CID and every block, root last, without duplicates."""
        root_data = dag_cbor.encode(self.root_ipld())
        root = block_cid(root_data)
        seen: set[CID] = set()
        blocks: list[Block] = []
        for cid, data in [
            *(b for inv in self.invocations for b in inv.blocks()),
            *(b for rcpt in self.receipts for b in rcpt.blocks()),
            (root, root_data),
        ]:
            if cid not in seen:
                seen.add(cid)
                blocks.append((cid, data))
        return root, blocks

    @property
    def root(self) -> CID:
        return self.encode()[0]

    def invocations_by_cid(self) -> dict[str, Invocation]:
        return {cid_key(inv.cid): inv for inv in self.invocations}

    def receipts_by_ran(self) -> dict[str, Receipt]:
        return {cid_key(r.ran_cid): r for r in self.receipts}


class AgentMessageSource(BaseModel):
    """The transport form a message arrived in."""

    model_config = ConfigDict(frozen=True)

    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""


class InvocationSource(BaseModel):
    """Locates an invocation of ``task`` inside ``message``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task: CID
    invocation: CID
    message: CID


class ReceiptSource(BaseModel):
    """Locates a receipt for ``task`` inside ``message``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task: CID
    receipt: CID
    message: CID


class ParsedAgentMessage(BaseModel):
    """A decoded message together with the bytes it was decoded from."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source: AgentMessageSource
    data: AgentMessage
    root: CID

    @classmethod
    def from_message(
        cls, data: AgentMessage, headers: dict[str, str] | None = None
    ) -> ParsedAgentMessage:
        """Wrap an in-process message that has no transport bytes yet."""
        return cls(
            source=AgentMessageSource(headers=headers or {}),
            data=data,
            root=data.root,
        )

    @property
    def index(self) -> list[InvocationSource | ReceiptSource]:
        entries: list[InvocationSource | ReceiptSource] = [
            InvocationSource(task=inv.task, invocation=inv.cid, message=self.root)
            for inv in self.data.invocations
        ]
        entries.extend(
            ReceiptSource(task=r.task, receipt=r.cid, message=self.root)
            for r in self.data.receipts
        )
        return entries


# ---------------------------------------------------------------------------
# Index entries (pseudo-link keys)
# ---------------------------------------------------------------------------

_CURRENT_KEY = re.compile(r"^(?P<task>[^/@.]+)/(?P<root>[^/@.]+)@(?P<message>[^/@.]+)\.(?P<direction>in|out)$")
_LEGACY_KEY = re.compile(r"^(?P<task>[^/@.]+)/(?P<message>[^/@.]+)\.(?P<direction>in|out)$")


class CurrentIndexEntry(BaseModel):
    """``{task}/{root}@{message}.{direction}``: points at an explicit root."""

    model_config = ConfigDict(frozen=True)

    scheme: Literal["current"] = "current"
    task: str
    root: str
    message: str
    direction: Direction

    @property
    def key(self) -> str:
        return f"{self.task}/{self.root}@{self.message}.{self.direction}"


class LegacyIndexEntry(BaseModel):
    """``{invocation}/{message}.{direction}``: the task is the invocation."""

    model_config = ConfigDict(frozen=True)

    scheme: Literal["legacy"] = "legacy"
    task: str
    message: str
    direction: Direction

    @property
    def key(self) -> str:
        return f"{self.task}/{self.message}.{self.direction}"


IndexEntry = Union[CurrentIndexEntry, LegacyIndexEntry]


def parse_index_key(key: str) -> IndexEntry | None:
    """Parse a pseudo-link key into its entry variant, ``None`` if malformed."""
    match = _CURRENT_KEY.match(key)
    if match:
        return CurrentIndexEntry(**match.groupdict())
    match = _LEGACY_KEY.match(key)
    if match:
        return LegacyIndexEntry(**match.groupdict())
    return None
