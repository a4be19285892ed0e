"""Unit tests for the CLI: Typer command registration and behavior.

Commands build their services from ``CIDWAY_*`` environment variables at
call time, so every test points them at a fresh temporary directory.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from cidway.cli.app import app
from cidway.config import CidwayConfig, Services, build_services
from cidway.core.content_locator import blob_key
from cidway.core.hasher import base58btc_encode, cid_key, raw_cid, sha256_multihash
from cidway.core.metrics import STORE_ADD_SIZE_TOTAL
from cidway.core.piece import compute_piece_cid
from cidway.models.agent import ParsedAgentMessage
from cidway.models.allocations import AllocationInput, Blob

runner = CliRunner()

SPACE = "did:key:z6MkrZ1r5XBFZjBU34qyD8fueMbMRkKw17BZaq2ivKFjnz2z"


@pytest.fixture
def env(tmp_dir: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_dir)
    monkeypatch.setenv("CIDWAY_OBJECT_STORE", "filesystem")
    monkeypatch.setenv("CIDWAY_DATA_PATH", str(tmp_dir / "objects"))
    monkeypatch.setenv("CIDWAY_KEYED_STORE_PATH", str(tmp_dir / "cidway.db"))
    monkeypatch.setenv("CIDWAY_PUBLIC_URL", "http://gw.test")
    return tmp_dir


@pytest.fixture
def shared(env) -> Services:
    """Services over the same stores the CLI will open."""
    return build_services(CidwayConfig())


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "resolve", "piece", "allocations", "index", "metrics"):
            assert command in result.output

    @pytest.mark.parametrize(
        "argv",
        [
            ["serve", "--help"],
            ["resolve", "--help"],
            ["piece", "--help"],
            ["allocations", "list", "--help"],
            ["allocations", "get", "--help"],
            ["index", "invocation", "--help"],
            ["index", "receipt", "--help"],
            ["metrics", "allocated", "--help"],
        ],
    )
    def test_subcommand_help(self, argv):
        assert runner.invoke(app, argv).exit_code == 0


# ---------------------------------------------------------------------------
# piece / resolve
# ---------------------------------------------------------------------------


class TestPieceAndResolve:

    def test_piece_records_claim(self, env, shared):
        file = env / "payload.bin"
        file.write_bytes(b"cli payload")
        result = runner.invoke(app, ["piece", str(file)])
        assert result.exit_code == 0, result.output
        assert "Piece CID (v2)" in result.output
        assert "Yes" in result.output
        piece = compute_piece_cid(b"cli payload")
        assert shared.claims.claimed(piece) == [raw_cid(b"cli payload")]

    def test_piece_without_register(self, env, shared):
        file = env / "payload.bin"
        file.write_bytes(b"unclaimed")
        result = runner.invoke(app, ["piece", str(file), "--no-register"])
        assert result.exit_code == 0
        assert shared.claims.claimed(compute_piece_cid(b"unclaimed")) == []

    def test_piece_of_empty_file(self, env):
        file = env / "empty.bin"
        file.write_bytes(b"")
        assert runner.invoke(app, ["piece", str(file)]).exit_code == 1

    def test_resolve_piece_end_to_end(self, env, shared):
        data = b"resolvable through the cli"
        file = env / "payload.bin"
        file.write_bytes(data)
        runner.invoke(app, ["piece", str(file)])
        piece = cid_key(compute_piece_cid(data))

        missing = runner.invoke(app, ["resolve", piece])
        assert missing.exit_code == 1
        assert "ContentNotFound" in missing.output

        shared.objects.put("carpark", blob_key(raw_cid(data).digest), data)
        found = runner.invoke(app, ["resolve", piece, "--expires-in", "60"])
        assert found.exit_code == 0, found.output
        assert "http://gw.test/_local/carpark/" in found.output

    def test_resolve_unclaimed_piece(self, env):
        result = runner.invoke(app, ["resolve", cid_key(compute_piece_cid(b"nobody"))])
        assert result.exit_code == 1
        assert "NoEquivalentCids" in result.output
        assert "404" in result.output

    def test_resolve_invalid_cid(self, env):
        assert runner.invoke(app, ["resolve", "not-a-cid"]).exit_code == 2


# ---------------------------------------------------------------------------
# allocations
# ---------------------------------------------------------------------------


class TestAllocations:

    def _insert(self, shared: Services, n: int, size: int) -> bytes:
        digest = sha256_multihash(f"cli-blob-{n}".encode())
        shared.allocations.insert(AllocationInput(
            space=SPACE, blob=Blob(digest=digest, size=size), cause=raw_cid(b"cause")
        ))
        return digest

    def test_list_empty(self, env):
        result = runner.invoke(app, ["allocations", "list", SPACE])
        assert result.exit_code == 0
        assert "No allocations" in result.output

    def test_list(self, env, shared):
        self._insert(shared, 1, 12345)
        self._insert(shared, 2, 67890)
        result = runner.invoke(app, ["allocations", "list", SPACE, "--size", "1"])
        assert result.exit_code == 0, result.output
        assert "12345" in result.output
        assert "67890" not in result.output
        assert "cursor:" in result.output

    def test_get(self, env, shared):
        digest = self._insert(shared, 1, 4242)
        result = runner.invoke(app, ["allocations", "get", SPACE, base58btc_encode(digest)])
        assert result.exit_code == 0, result.output
        assert "4242" in result.output

    def test_get_missing(self, env):
        digest = base58btc_encode(sha256_multihash(b"absent"))
        result = runner.invoke(app, ["allocations", "get", SPACE, digest])
        assert result.exit_code == 1
        assert "RecordNotFound" in result.output

    def test_get_invalid_digest(self, env):
        assert runner.invoke(app, ["allocations", "get", SPACE, "!!"]).exit_code == 2


# ---------------------------------------------------------------------------
# index / metrics
# ---------------------------------------------------------------------------


class TestIndex:

    def test_unknown_task(self, env):
        result = runner.invoke(app, ["index", "invocation", cid_key(raw_cid(b"task"))])
        assert result.exit_code == 1
        assert "RecordNotFound" in result.output

    def test_invocation_and_receipt(self, env, shared, make_invocation, make_receipt,
                                    make_message):
        invocation = make_invocation("blob/allocate")
        receipt = make_receipt(invocation, {"ok": {"size": 1}})
        shared.agent_index.write(
            ParsedAgentMessage.from_message(make_message([invocation], [receipt]))
        )
        task = cid_key(invocation.task)

        shown = runner.invoke(app, ["index", "invocation", task])
        assert shown.exit_code == 0, shown.output
        assert "blob/allocate" in shown.output

        reported = runner.invoke(app, ["index", "receipt", task])
        assert reported.exit_code == 0, reported.output
        assert "ok" in reported.output


class TestMetrics:

    def test_allocated(self, env, shared):
        assert "0 bytes" in runner.invoke(app, ["metrics", "allocated", SPACE]).output
        shared.space_metrics.increment_totals({SPACE: {STORE_ADD_SIZE_TOTAL: 2048}})
        result = runner.invoke(app, ["metrics", "allocated", SPACE])
        assert result.exit_code == 0
        assert "2048 bytes" in result.output
