"""Agent message index: task CID -> archived invocation or receipt.

Every agent message is stored once, as CAR bytes, under
``{message}/{message}`` in the message bucket.  For each enclosed
invocation and receipt an empty *pseudo-link* object is written to the
index bucket; its key alone records where the payload lives:

    {task}/{invocation}@{message}.in     current scheme, invocation
    {task}/{receipt}@{message}.out       current scheme, receipt
    {invocation}/{message}.in|.out       legacy scheme (task == invocation)

Lookups run four phases: locate (prefix listing filtered by direction),
disambiguate (first current-scheme entry, else the first entry), fetch
(the archive) and decode (from the explicit root, or for legacy entries
by decoding the whole message and looking the task up inside it).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Literal

from multiformats import CID

from cidway.core.hasher import cid_key, parse_cid
from cidway.core.results import (
    DecodeFailure,
    Err,
    Ok,
    RecordNotFound,
    Result,
    StorageOperationFailed,
    Unit,
)
from cidway.ipld.car import CAR_CONTENT_TYPE, CarArchive, CarDecodeError, decode_car
from cidway.ipld.message import encode_message, message_from_archive
from cidway.models.agent import (
    CurrentIndexEntry,
    Direction,
    IndexEntry,
    Invocation,
    InvocationSource,
    ParsedAgentMessage,
    Receipt,
    parse_index_key,
)
from cidway.storage import ObjectNotFound, ObjectStore

logger = logging.getLogger(__name__)

Query = Literal["invocation", "receipt"]

_DIRECTIONS: dict[str, Direction] = {"invocation": "in", "receipt": "out"}
_MAX_WRITE_WORKERS = 16


def archive_key(message: str) -> str:
    """Bucket key of an agent message archive."""
    return f"{message}/{message}"


def _task_key(task: CID | str) -> str:
    """Canonical key of *task*.  Raises ``ValueError`` if it is not a CID."""
    return cid_key(task if isinstance(task, CID) else parse_cid(task))


def _not_a_task(task: CID | str) -> Err:
    return Err(error=RecordNotFound(f"{task!r} is not a task CID"))


class AgentMessageIndex:
    """Writes and reads the agent message archive and its pseudo-link index.

    Parameters
    ----------
    store:
        Object store holding both buckets.
    index_bucket:
        Bucket of empty pseudo-link objects.
    message_bucket:
        Bucket of CAR-encoded message archives.
    """

    def __init__(
        self, store: ObjectStore, index_bucket: str, message_bucket: str
    ) -> None:
        self._store = store
        self._index_bucket = index_bucket
        self._message_bucket = message_bucket

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _puts(self, message: ParsedAgentMessage) -> list[tuple[str, str, bytes]]:
        """Every ``(bucket, key, body)`` write needed to store *message*."""
        msg = cid_key(message.root)
        if message.source.headers.get("content-type") == CAR_CONTENT_TYPE:
            body = message.source.body
        else:
            _, body = encode_message(message.data)

        puts = [(self._message_bucket, archive_key(msg), body)]
        for source in message.index:
            if isinstance(source, InvocationSource):
                root, direction = source.invocation, "in"
            else:
                root, direction = source.receipt, "out"
            entry = CurrentIndexEntry(
                task=cid_key(source.task),
                root=cid_key(root),
                message=msg,
                direction=direction,
            )
            puts.append((self._index_bucket, entry.key, b""))
        return puts

    def write(self, message: ParsedAgentMessage) -> Result[Unit, StorageOperationFailed]:
        """Store the archive and index every enclosed invocation and receipt.

        All puts run concurrently.  Any failure fails the whole write; a
        retry is safe because every key is content-addressed.
        """
        puts = self._puts(message)
        workers = min(len(puts), _MAX_WRITE_WORKERS)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="agent-index") as pool:
            futures = [pool.submit(self._store.put, *put) for put in puts]
            errors = [f.exception() for f in futures]
        failed = [e for e in errors if e is not None]
        if failed:
            logger.error(
                "Writing agent message %s failed (%d of %d puts): %s",
                cid_key(message.root), len(failed), len(puts), failed[0],
            )
            return Err(error=StorageOperationFailed(str(failed[0])))
        logger.info(
            "Indexed agent message %s (%d entries)", cid_key(message.root), len(puts) - 1
        )
        return Ok(ok=Unit())

    # ------------------------------------------------------------------
    # Locate and disambiguate
    # ------------------------------------------------------------------

    def list_entries(
        self, task: CID | str, query: Query
    ) -> Result[list[IndexEntry], RecordNotFound | StorageOperationFailed]:
        """Every index entry under *task* for the direction *query* seeks."""
        try:
            task_key = _task_key(task)
        except ValueError:
            return _not_a_task(task)
        prefix, suffix = f"{task_key}/", f".{_DIRECTIONS[query]}"
        try:
            keys = self._store.list(self._index_bucket, prefix)
        except ObjectNotFound:
            keys = []
        except Exception as exc:
            logger.error("Listing index entries under %s failed: %s", prefix, exc)
            return Err(error=StorageOperationFailed(str(exc)))

        entries = []
        for key in keys:
            if not key.endswith(suffix):
                continue
            entry = parse_index_key(key)
            if entry is None:
                logger.warning("Skipping malformed index key %s", key)
                continue
            entries.append(entry)
        if not entries:
            return Err(error=RecordNotFound(
                f"no pseudo-link matching {prefix}*{suffix} was found"
            ))
        return Ok(ok=entries)

    def resolve(
        self, task: CID | str, query: Query
    ) -> Result[IndexEntry, RecordNotFound | StorageOperationFailed]:
        """Pick the entry to read: the first current-scheme one, else the first."""
        found = self.list_entries(task, query)
        if isinstance(found, Err):
            return found
        for entry in found.ok:
            if isinstance(entry, CurrentIndexEntry):
                return Ok(ok=entry)
        return Ok(ok=found.ok[0])

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def read(self, message: str) -> Result[bytes, RecordNotFound | StorageOperationFailed]:
        """Read the archive bytes of *message*."""
        try:
            return Ok(ok=self._store.get(self._message_bucket, archive_key(message)))
        except ObjectNotFound:
            return Err(error=RecordNotFound(
                f"agent message archive {message} not found in store"
            ))
        except Exception as exc:
            logger.error("Reading agent message archive %s failed: %s", message, exc)
            return Err(error=StorageOperationFailed(str(exc)))

    def _load(
        self, task: CID | str, query: Query
    ) -> Result[tuple[IndexEntry, CarArchive], RecordNotFound | StorageOperationFailed | DecodeFailure]:
        resolved = self.resolve(task, query)
        if isinstance(resolved, Err):
            return resolved
        entry = resolved.ok
        body = self.read(entry.message)
        if isinstance(body, Err):
            return body
        try:
            return Ok(ok=(entry, decode_car(body.ok)))
        except CarDecodeError as exc:
            return Err(error=DecodeFailure(
                f"agent message archive {entry.message} is not a valid CAR: {exc}"
            ))

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def get_invocation(
        self, task: CID | str
    ) -> Result[Invocation, RecordNotFound | StorageOperationFailed | DecodeFailure]:
        """Return the invocation of *task*."""
        return self._view(task, "invocation")

    def get_receipt(
        self, task: CID | str
    ) -> Result[Receipt, RecordNotFound | StorageOperationFailed | DecodeFailure]:
        """Return the receipt for *task*."""
        return self._view(task, "receipt")

    def _view(self, task: CID | str, query: Query) -> Result:
        try:
            task_key = _task_key(task)
        except ValueError:
            return _not_a_task(task)
        loaded = self._load(task_key, query)
        if isinstance(loaded, Err):
            return loaded
        entry, archive = loaded.ok
        try:
            if isinstance(entry, CurrentIndexEntry):
                root = CID.decode(entry.root)
                view_cls = Invocation if query == "invocation" else Receipt
                view = view_cls.view(archive.blocks, root)
            else:
                message = message_from_archive(archive)
                lookup = (
                    message.invocations_by_cid()
                    if query == "invocation"
                    else message.receipts_by_ran()
                )
                view = lookup.get(task_key)
        except (KeyError, TypeError, ValueError) as exc:
            return Err(error=DecodeFailure(
                f"decoding {query} for {task_key} from {entry.message}: {exc}"
            ))
        if view is None:
            return Err(error=RecordNotFound(
                f"agent message {entry.message} does not contain {query} for {task_key} task"
            ))
        return Ok(ok=view)
