"""Agent message archives: an ``AgentMessage`` as a single-root CAR file."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import dag_cbor
from multiformats import CID

from cidway.core.hasher import parse_cid
from cidway.core.results import DecodeFailure, Err, Ok, Result
from cidway.ipld.car import CAR_CONTENT_TYPE, CarArchive, CarDecodeError, decode_car, encode_car
from cidway.models.agent import (
    MESSAGE_TAG,
    AgentMessage,
    AgentMessageSource,
    Invocation,
    ParsedAgentMessage,
    Receipt,
)


def encode_message(message: AgentMessage) -> tuple[CID, bytes]:
    """Return the message root CID and its CAR bytes."""
    root, blocks = message.encode()
    return root, encode_car([root], blocks)


def _message_body(blocks: Mapping[CID, bytes], root: CID) -> Mapping[str, Any]:
    data = blocks.get(root)
    if data is None:
        raise ValueError(f"message root block {root} missing from archive")
    node = dag_cbor.decode(data)
    if not isinstance(node, Mapping) or MESSAGE_TAG not in node:
        raise ValueError(f"block {root} is not a {MESSAGE_TAG} message")
    return node[MESSAGE_TAG]


def message_from_archive(archive: CarArchive) -> AgentMessage:
    """Rebuild the full message bundle rooted at the archive's only root.

    Raises ``ValueError`` or ``KeyError`` when the archive is not a
    well-formed agent message.
    """
    if len(archive.roots) != 1:
        raise ValueError(f"agent message must have exactly one root, got {len(archive.roots)}")
    root = archive.roots[0]
    body = _message_body(archive.blocks, root)

    invocations = []
    for link in body.get("execute", []):
        invocation = Invocation.view(archive.blocks, link)
        if invocation is None:
            raise ValueError(f"invocation block {link} missing from message {root}")
        invocations.append(invocation)

    receipts = []
    for ran, link in body.get("report", {}).items():
        receipt = Receipt.view(archive.blocks, link)
        if receipt is None:
            raise ValueError(f"receipt block {link} missing from message {root}")
        if receipt.ran_cid != parse_cid(ran):
            raise ValueError(f"receipt {link} is reported under the wrong invocation {ran}")
        receipts.append(receipt)
    return AgentMessage(invocations=invocations, receipts=receipts)


def decode_message(data: bytes) -> Result[AgentMessage, DecodeFailure]:
    """Decode CAR bytes into the full message bundle."""
    try:
        return Ok(ok=message_from_archive(decode_car(data)))
    except CarDecodeError as exc:
        return Err(error=DecodeFailure(f"invalid agent message archive: {exc}"))
    except (KeyError, TypeError, ValueError) as exc:
        return Err(error=DecodeFailure(f"invalid agent message: {exc}"))


def parse_agent_message(
    body: bytes, headers: Mapping[str, str]
) -> Result[ParsedAgentMessage, DecodeFailure]:
    """Parse an inbound CAR-encoded message, keeping its original bytes."""
    headers = {k.lower(): v for k, v in headers.items()}
    content_type = headers.get("content-type", CAR_CONTENT_TYPE)
    if content_type != CAR_CONTENT_TYPE:
        return Err(error=DecodeFailure(f"unsupported message content type {content_type!r}"))
    try:
        archive = decode_car(body)
        data = message_from_archive(archive)
    except CarDecodeError as exc:
        return Err(error=DecodeFailure(f"invalid agent message archive: {exc}"))
    except (KeyError, TypeError, ValueError) as exc:
        return Err(error=DecodeFailure(f"invalid agent message: {exc}"))
    return Ok(ok=ParsedAgentMessage(
        source=AgentMessageSource(headers=headers, body=body),
        data=data,
        root=archive.roots[0],
    ))
