"""Tests for the redirect gateway's HTTP surface, via Starlette's TestClient."""

from __future__ import annotations

import time
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
from multiformats import CID
from starlette.testclient import TestClient

import cidway
from cidway.config import CidwayConfig, build_services
from cidway.core.content_locator import blob_key, car_key
from cidway.core.hasher import CAR_CODEC, block_cid, cid_key, raw_cid
from cidway.core.piece import (
    FR32_SHA256_TRUNC254_PADBINTREE,
    compute_piece_cid,
    piece_v2_to_v1,
)
from cidway.http.app import create_app
from cidway.storage.filesystem import FileSystemObjectStore
from cidway.storage.memory import MemoryObjectStore

CARPARK = "carpark"
DATA = b"bytes served through the gateway"
CONTENT = raw_cid(DATA)


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services))


def _location(response) -> str:
    assert response.status_code == 302, response.text
    return response.headers["location"]


# ---------------------------------------------------------------------------
# CID redirects
# ---------------------------------------------------------------------------


class TestCidRoute:

    def test_raw_cid_redirects_to_blob(self, client, objects):
        objects.put(CARPARK, blob_key(CONTENT.digest), DATA)
        response = client.get(f"/{cid_key(CONTENT)}", follow_redirects=False)
        assert blob_key(CONTENT.digest) in _location(response)

    def test_car_cid_redirects_to_shard(self, client, objects):
        shard = CONTENT.set(codec=CAR_CODEC)
        objects.put(CARPARK, car_key(shard), b"car")
        response = client.get(f"/{cid_key(shard)}", follow_redirects=False)
        assert car_key(shard) in _location(response)

    def test_head_redirects_too(self, client, objects):
        objects.put(CARPARK, blob_key(CONTENT.digest), DATA)
        response = client.head(f"/{cid_key(CONTENT)}", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"]

    def test_missing_content_is_404(self, client):
        response = client.get(f"/{cid_key(CONTENT)}", follow_redirects=False)
        assert response.status_code == 404
        assert response.text == "Content Not found"

    def test_claimed_piece_redirects_to_content(self, client, objects, services):
        objects.put(CARPARK, blob_key(CONTENT.digest), DATA)
        _, piece = services.claims.register_content(DATA)
        response = client.get(f"/{cid_key(piece)}", follow_redirects=False)
        assert blob_key(CONTENT.digest) in _location(response)

    def test_unclaimed_piece_is_404(self, client):
        response = client.get(f"/{cid_key(compute_piece_cid(DATA))}", follow_redirects=False)
        assert response.status_code == 404
        assert "no equivalent CID" in response.text

    def test_claimed_piece_without_content_is_404(self, client, services):
        _, piece = services.claims.register_content(DATA)
        response = client.get(f"/{cid_key(piece)}", follow_redirects=False)
        assert response.status_code == 404

    def test_v1_piece_is_415(self, client):
        v1 = piece_v2_to_v1(compute_piece_cid(DATA))
        response = client.get(f"/{cid_key(v1)}", follow_redirects=False)
        assert response.status_code == 415
        assert "v2 piece CID" in response.text

    def test_other_codec_is_415(self, client):
        response = client.head(f"/{cid_key(block_cid(b'{}'))}", follow_redirects=False)
        assert response.status_code == 415

    def test_malformed_cid_is_400(self, client):
        assert client.get("/not-a-cid", follow_redirects=False).status_code == 400

    def test_claimed_piece_with_truncated_digest_is_400(self, client, services):
        truncated = CID("base32", 1, "raw", (FR32_SHA256_TRUNC254_PADBINTREE, b"\x00\x01\x02"))
        services.claims.assert_equals(CONTENT, truncated)
        response = client.get(f"/{cid_key(truncated)}", follow_redirects=False)
        assert response.status_code == 400
        assert "malformed piece digest" in response.text

    def test_expires_in(self, client, objects):
        objects.put(CARPARK, blob_key(CONTENT.digest), DATA)
        response = client.get(f"/{cid_key(CONTENT)}?expiresIn=90", follow_redirects=False)
        expires = int(parse_qs(urlparse(_location(response)).query)["expires"][0])
        assert abs(expires - (time.time() + 90)) < 5

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_bad_expires_in_is_400(self, client, value):
        response = client.get(f"/{cid_key(CONTENT)}?expiresIn={value}", follow_redirects=False)
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Raw key redirects
# ---------------------------------------------------------------------------


class TestKeyRoutes:

    @pytest.mark.parametrize("prefix", ["raw", "key"])
    def test_existing_key(self, client, objects, prefix):
        objects.put(CARPARK, "nested/path/obj.bin", b"x")
        response = client.get(f"/{prefix}/nested/path/obj.bin", follow_redirects=False)
        assert "nested/path/obj.bin" in _location(response)

    def test_missing_key_is_empty_404(self, client):
        response = client.get("/raw/nothing/here", follow_redirects=False)
        assert response.status_code == 404
        assert response.content == b""

    def test_bucket_name_override(self, client, objects):
        objects.put("other", "k", b"x")
        assert client.get("/raw/k", follow_redirects=False).status_code == 404
        response = client.get("/raw/k?bucketName=other", follow_redirects=False)
        assert _location(response).startswith("memory://other/")

    def test_empty_key_is_400(self, client):
        assert client.get("/raw/", follow_redirects=False).status_code == 400


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class TestHealthAndErrors:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": cidway.__version__}

    def test_unexpected_error_is_500(self, items):
        class Exploding(MemoryObjectStore):
            def signed_url(self, bucket, key, expires_in):
                raise RuntimeError("backend exploded")

        services = build_services(
            CidwayConfig(object_store="memory", _env_file=None),
            objects=Exploding(),
            items=items,
        )
        client = TestClient(create_app(services), raise_server_exceptions=False)
        response = client.get(f"/{cid_key(CONTENT)}", follow_redirects=False)
        assert response.status_code == 500
        assert "backend exploded" not in response.text


class TestLocalRoute:

    @pytest.fixture
    def fs_client(self, tmp_dir: Path, items):
        config = CidwayConfig(
            data_path=tmp_dir / "objects",
            public_url="http://testserver",
            signing_secret="test-secret",
            _env_file=None,
        )
        services = build_services(config, items=items)
        assert isinstance(services.objects, FileSystemObjectStore)
        return services, TestClient(create_app(services))

    def test_signed_link_serves_object(self, fs_client):
        services, client = fs_client
        services.objects.put(CARPARK, blob_key(CONTENT.digest), DATA)
        location = urlparse(_location(client.get(f"/{cid_key(CONTENT)}", follow_redirects=False)))
        response = client.get(f"{location.path}?{location.query}")
        assert response.status_code == 200
        assert response.content == DATA

    def test_bad_signature_is_403(self, fs_client):
        services, client = fs_client
        services.objects.put(CARPARK, "k", b"x")
        expires = int(time.time()) + 60
        response = client.get(f"/_local/{CARPARK}/k?expires={expires}&signature=deadbeef")
        assert response.status_code == 403

    def test_missing_expires_is_403(self, fs_client):
        _, client = fs_client
        assert client.get(f"/_local/{CARPARK}/k?signature=x").status_code == 403

    def test_signed_but_missing_object_is_404(self, fs_client):
        services, client = fs_client
        expires = int(time.time()) + 60
        signature = services.objects.sign(CARPARK, "gone", expires)
        response = client.get(f"/_local/{CARPARK}/gone?expires={expires}&signature={signature}")
        assert response.status_code == 404

    @pytest.mark.parametrize("path", ["/raw/a//b", "/key/a/", "/raw/k?bucketName=.."])
    def test_unaddressable_key_is_404(self, fs_client, path):
        _, client = fs_client
        assert client.head(path, follow_redirects=False).status_code == 404
        assert client.get(path, follow_redirects=False).status_code == 404

    def test_not_served_for_other_backends(self, client):
        assert client.get(f"/_local/{CARPARK}/k?expires=1&signature=x").status_code == 404
