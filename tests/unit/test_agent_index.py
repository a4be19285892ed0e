"""Unit tests for AgentMessageIndex: archive writes, pseudo-links and lookups."""

from __future__ import annotations

import pytest

from cidway.core.agent_index import AgentMessageIndex, archive_key
from cidway.core.hasher import cid_key, raw_cid
from cidway.core.results import Err, Ok
from cidway.ipld.car import CAR_CONTENT_TYPE
from cidway.ipld.message import encode_message, parse_agent_message
from cidway.models.agent import (
    CurrentIndexEntry,
    LegacyIndexEntry,
    ParsedAgentMessage,
)
from cidway.storage import ObjectNotFound
from cidway.storage.memory import MemoryObjectStore

INDEX = "agent-index"
MESSAGES = "agent-message"


class FlakyObjectStore(MemoryObjectStore):
    """MemoryObjectStore that fails selected operations."""

    def __init__(self, fail_put_on: str | None = None, fail_list: bool = False,
                 fail_get: bool = False) -> None:
        super().__init__()
        self.fail_put_on = fail_put_on
        self.fail_list = fail_list
        self.fail_get = fail_get

    def put(self, bucket, key, body=b""):
        if self.fail_put_on is not None and self.fail_put_on in key:
            raise OSError(f"injected put failure for {key}")
        super().put(bucket, key, body)

    def list(self, bucket, prefix):
        if self.fail_list:
            raise OSError("injected list failure")
        return super().list(bucket, prefix)

    def get(self, bucket, key):
        if self.fail_get:
            raise OSError("injected get failure")
        return super().get(bucket, key)


@pytest.fixture
def exchange(make_invocation, make_receipt, make_message):
    """An invocation, its receipt and a message carrying both."""
    invocation = make_invocation(size=1024)
    receipt = make_receipt(invocation, {"ok": {"size": 1024}})
    message = ParsedAgentMessage.from_message(make_message([invocation], [receipt]))
    return invocation, receipt, message


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


class TestWrite:

    def test_writes_archive_and_pseudo_links(self, agent_index, objects, exchange):
        invocation, receipt, message = exchange
        assert isinstance(agent_index.write(message), Ok)

        msg = cid_key(message.root)
        task = cid_key(invocation.task)
        assert objects.keys(MESSAGES) == [archive_key(msg)]
        assert objects.keys(INDEX) == sorted([
            f"{task}/{cid_key(invocation.cid)}@{msg}.in",
            f"{task}/{cid_key(receipt.cid)}@{msg}.out",
        ])
        assert all(objects.get(INDEX, key) == b"" for key in objects.keys(INDEX))

    def test_rewrite_is_idempotent(self, agent_index, objects, exchange):
        *_, message = exchange
        agent_index.write(message)
        before = (objects.keys(INDEX), objects.keys(MESSAGES))
        assert isinstance(agent_index.write(message), Ok)
        assert (objects.keys(INDEX), objects.keys(MESSAGES)) == before

    def test_car_body_is_stored_verbatim(self, agent_index, objects, exchange):
        *_, message = exchange
        _, data = encode_message(message.data)
        parsed = parse_agent_message(data, {"content-type": CAR_CONTENT_TYPE}).ok
        agent_index.write(parsed)
        assert objects.get(MESSAGES, archive_key(cid_key(parsed.root))) == data

    def test_empty_message_stores_archive_only(self, agent_index, objects, make_message):
        message = ParsedAgentMessage.from_message(make_message())
        assert isinstance(agent_index.write(message), Ok)
        assert objects.keys(INDEX) == []
        assert len(objects.keys(MESSAGES)) == 1

    def test_failed_put_fails_write(self, exchange):
        invocation, _, message = exchange
        store = FlakyObjectStore(fail_put_on=".out")
        result = AgentMessageIndex(store, INDEX, MESSAGES).write(message)
        assert isinstance(result, Err)
        assert result.name == "StorageOperationFailed"
        assert "injected put failure" in result.error.message

    def test_many_entries(self, agent_index, objects, make_invocation, make_message):
        invocations = [make_invocation() for _ in range(40)]
        message = ParsedAgentMessage.from_message(make_message(invocations))
        assert isinstance(agent_index.write(message), Ok)
        assert len(objects.keys(INDEX)) == 40


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class TestLookup:

    def test_get_invocation(self, agent_index, exchange):
        invocation, _, message = exchange
        agent_index.write(message)
        found = agent_index.get_invocation(invocation.task)
        assert isinstance(found, Ok)
        assert found.ok == invocation

    def test_get_receipt(self, agent_index, exchange):
        invocation, receipt, message = exchange
        agent_index.write(message)
        found = agent_index.get_receipt(invocation.task)
        assert isinstance(found, Ok)
        assert found.ok.cid == receipt.cid
        assert found.ok.ran == invocation

    def test_string_task_is_normalized(self, agent_index, exchange):
        invocation, _, message = exchange
        agent_index.write(message)
        as_base58 = invocation.task.encode("base58btc")
        assert isinstance(agent_index.get_invocation(as_base58), Ok)

    @pytest.mark.parametrize("task", ["x/y", "", "not-a-cid"])
    def test_unparseable_task_never_lists(self, task):
        class RecordingStore(MemoryObjectStore):
            listed: list[str] = []

            def list(self, bucket, prefix):
                self.listed.append(prefix)
                return super().list(bucket, prefix)

        store = RecordingStore()
        store.put(INDEX, "x/y/z@m.in")
        index = AgentMessageIndex(store, INDEX, MESSAGES)
        assert index.list_entries(task, "invocation").name == "RecordNotFound"
        assert index.get_invocation(task).name == "RecordNotFound"
        assert store.listed == []

    def test_unknown_task(self, agent_index):
        result = agent_index.get_invocation(raw_cid(b"never invoked"))
        assert isinstance(result, Err)
        assert result.name == "RecordNotFound"

    def test_invocation_without_receipt(self, agent_index, make_invocation, make_message):
        invocation = make_invocation()
        agent_index.write(ParsedAgentMessage.from_message(make_message([invocation])))
        assert isinstance(agent_index.get_invocation(invocation.task), Ok)
        assert agent_index.get_receipt(invocation.task).name == "RecordNotFound"

    def test_receipt_in_later_message(self, agent_index, make_invocation, make_receipt,
                                      make_message):
        invocation = make_invocation()
        agent_index.write(ParsedAgentMessage.from_message(make_message([invocation])))
        agent_index.write(ParsedAgentMessage.from_message(
            make_message(receipts=[make_receipt(invocation)])
        ))
        assert isinstance(agent_index.get_receipt(invocation.task), Ok)

    def test_missing_archive(self, agent_index, objects, exchange):
        invocation, _, message = exchange
        agent_index.write(message)
        del objects._buckets[MESSAGES]
        result = agent_index.get_invocation(invocation.task)
        assert result.name == "RecordNotFound"
        assert "archive" in result.error.message

    def test_corrupt_archive(self, agent_index, objects, exchange):
        invocation, _, message = exchange
        agent_index.write(message)
        objects.put(MESSAGES, archive_key(cid_key(message.root)), b"garbage")
        assert agent_index.get_invocation(invocation.task).name == "DecodeFailure"

    def test_list_failure(self, exchange):
        invocation, _, message = exchange
        store = FlakyObjectStore()
        index = AgentMessageIndex(store, INDEX, MESSAGES)
        index.write(message)
        store.fail_list = True
        assert index.get_invocation(invocation.task).name == "StorageOperationFailed"

    def test_get_failure(self, exchange):
        invocation, _, message = exchange
        store = FlakyObjectStore()
        index = AgentMessageIndex(store, INDEX, MESSAGES)
        index.write(message)
        store.fail_get = True
        assert index.get_receipt(invocation.task).name == "StorageOperationFailed"


# ---------------------------------------------------------------------------
# Legacy pseudo-links
# ---------------------------------------------------------------------------


class TestLegacyEntries:

    def _write_legacy(self, objects, message: ParsedAgentMessage, cid, direction: str) -> None:
        _, data = encode_message(message.data)
        msg = cid_key(message.root)
        objects.put(MESSAGES, archive_key(msg), data)
        entry = LegacyIndexEntry(task=cid_key(cid), message=msg, direction=direction)
        objects.put(INDEX, entry.key)

    def test_legacy_invocation(self, agent_index, objects, exchange):
        invocation, _, message = exchange
        self._write_legacy(objects, message, invocation.cid, "in")
        found = agent_index.get_invocation(invocation.cid)
        assert isinstance(found, Ok)
        assert found.ok == invocation

    def test_legacy_receipt(self, agent_index, objects, exchange):
        invocation, receipt, message = exchange
        self._write_legacy(objects, message, invocation.cid, "out")
        found = agent_index.get_receipt(invocation.cid)
        assert isinstance(found, Ok)
        assert found.ok.cid == receipt.cid

    def test_legacy_message_without_the_task(self, agent_index, objects, exchange,
                                             make_invocation):
        _, _, message = exchange
        stranger = make_invocation()
        self._write_legacy(objects, message, stranger.cid, "in")
        result = agent_index.get_invocation(stranger.cid)
        assert result.name == "RecordNotFound"
        assert "does not contain invocation" in result.error.message

    def test_current_entry_preferred(self, agent_index, objects, exchange):
        invocation, _, message = exchange
        # A legacy link under the task that sorts first points at a bogus message.
        objects.put(INDEX, LegacyIndexEntry(
            task=cid_key(invocation.task), message="a" * 10, direction="in"
        ).key)
        agent_index.write(message)
        resolved = agent_index.resolve(invocation.task, "invocation")
        assert isinstance(resolved.ok, CurrentIndexEntry)
        assert isinstance(agent_index.get_invocation(invocation.task), Ok)

    def test_malformed_keys_are_skipped(self, agent_index, objects, exchange):
        invocation, _, message = exchange
        agent_index.write(message)
        objects.put(INDEX, f"{cid_key(invocation.task)}/not@a@key.in")
        entries = agent_index.list_entries(invocation.task, "invocation").ok
        assert len(entries) == 1


class TestObjectNotFoundOnList:

    def test_missing_bucket_reads_as_empty(self, exchange):
        class NoBucket(MemoryObjectStore):
            def list(self, bucket, prefix):
                raise ObjectNotFound(bucket, prefix)

        invocation, _, _ = exchange
        result = AgentMessageIndex(NoBucket(), INDEX, MESSAGES).get_invocation(invocation.task)
        assert result.name == "RecordNotFound"
