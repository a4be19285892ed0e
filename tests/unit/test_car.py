"""Unit tests for CAR v1 encoding and decoding."""

from __future__ import annotations

import dag_cbor
import pytest
from multiformats import CID, varint

from cidway.core.hasher import block_cid, raw_cid, sha256_multihash
from cidway.ipld.car import CarDecodeError, decode_car, encode_car


def _blocks() -> list[tuple[CID, bytes]]:
    leaf = b"leaf bytes"
    node = dag_cbor.encode({"leaf": raw_cid(leaf)})
    return [(raw_cid(leaf), leaf), (block_cid(node), node)]


class TestEncodeDecode:

    def test_decodes_what_it_encodes(self):
        blocks = _blocks()
        root = blocks[-1][0]
        archive = decode_car(encode_car([root], blocks))
        assert archive.roots == [root]
        assert archive.blocks == dict(blocks)
        assert archive.get(blocks[0][0]) == b"leaf bytes"
        assert archive.get(raw_cid(b"absent")) is None

    def test_header_layout(self):
        root = _blocks()[-1][0]
        data = encode_car([root], [])
        size, prefix, _ = varint.decode_raw(data)
        header = dag_cbor.decode(data[prefix : prefix + size])
        assert header == {"roots": [root], "version": 1}

    def test_no_roots(self):
        archive = decode_car(encode_car([], _blocks()))
        assert archive.roots == []
        assert len(archive.blocks) == 2

    def test_cidv0_block(self):
        data = b"dag-pb-ish"
        v0 = CID("base58btc", 0, "dag-pb", sha256_multihash(data))
        archive = decode_car(encode_car([v0], [(v0, data)]))
        assert archive.blocks[v0] == data


class TestMalformed:

    def test_empty(self):
        with pytest.raises(CarDecodeError):
            decode_car(b"")

    def test_truncated_block(self):
        blocks = _blocks()
        data = encode_car([blocks[-1][0]], blocks)
        with pytest.raises(CarDecodeError):
            decode_car(data[:-3])

    def test_header_not_cbor(self):
        with pytest.raises(CarDecodeError):
            decode_car(varint.encode(3) + b"\xff\xff\xff")

    def test_wrong_version(self):
        header = dag_cbor.encode({"roots": [], "version": 2})
        with pytest.raises(CarDecodeError):
            decode_car(varint.encode(len(header)) + header)

    def test_roots_must_be_cids(self):
        header = dag_cbor.encode({"roots": ["bafy..."], "version": 1})
        with pytest.raises(CarDecodeError):
            decode_car(varint.encode(len(header)) + header)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            decode_car(b"\x05abc")
