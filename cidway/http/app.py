"""Starlette ASGI application: CID and bucket-key redirects.

Routes
------
``GET|HEAD /{cid}``
    302 to a signed URL for a content CID (``raw`` or ``car``) or a v2 piece
    CID.  404 when it cannot be located, 415 for unsupported identifier
    types and v1 piece CIDs, 400 for malformed CIDs.
``GET|HEAD /raw/{key}`` and ``/key/{key}``
    302 to a signed URL for a raw bucket key, 404 when it does not exist.
``GET /health``
    Liveness probe.
``GET|HEAD /_local/{bucket}/{key}``
    Serves objects of a ``FileSystemObjectStore`` behind its signed URLs.

Usage::

    from cidway.config import CidwayConfig, build_services
    from cidway.http.app import create_app

    app = create_app(build_services(CidwayConfig()))
"""

from __future__ import annotations

import logging

from multiformats import CID
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

import cidway
from cidway.config import Services
from cidway.core.content_locator import ContentLocationResolver
from cidway.core.hasher import cid_key, parse_cid
from cidway.core.redirect import locate, status_for
from cidway.core.results import Err, StoreError
from cidway.storage import ObjectNotFound
from cidway.storage.filesystem import FileSystemObjectStore, InvalidKeyError

logger = logging.getLogger(__name__)


class BadRequest(ValueError):
    """Malformed request input; answered with 400."""


def _expires_in(request: Request) -> int | None:
    raw = request.query_params.get("expiresIn")
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise BadRequest(f"expiresIn must be an integer number of seconds, got {raw!r}") from None
    if value <= 0:
        raise BadRequest(f"expiresIn must be positive, got {value}")
    return value


def _redirect(url: str) -> Response:
    return RedirectResponse(url, status_code=302)


def _error(status_code: int, error: StoreError | str) -> Response:
    message = error if isinstance(error, str) else error.message
    return PlainTextResponse(message, status_code=status_code)


class GatewayServer:
    """Holds the wired services and builds the Starlette app over them."""

    def __init__(self, services: Services) -> None:
        self._services = services
        self._app = self._create_app()

    def _create_app(self) -> Starlette:
        routes = [
            Route("/health", self._health_endpoint, methods=["GET"]),
            Route("/_local/{bucket}/{key:path}", self._local_endpoint, methods=["GET", "HEAD"]),
            Route("/raw/{key:path}", self._key_endpoint, methods=["GET", "HEAD"]),
            Route("/key/{key:path}", self._key_endpoint, methods=["GET", "HEAD"]),
            # Catch-all CID route, must be last
            Route("/{cid}", self._cid_endpoint, methods=["GET", "HEAD"]),
        ]
        return Starlette(
            debug=self._services.config.debug,
            routes=routes,
            exception_handlers={Exception: self._unexpected_error},
        )

    @property
    def app(self) -> Starlette:
        return self._app

    # ------------------------------------------------------------------
    # CID resolution
    # ------------------------------------------------------------------

    def resolve_cid(self, cid: CID, locator: ContentLocationResolver) -> Response:
        """Map one parsed CID to a redirect or an error response."""
        located = locate(cid, self._services.claims, locator)
        if isinstance(located, Err):
            logger.info("%s not resolved: %s", cid_key(cid), located.error.message)
            return _error(status_for(located.error), located.error)
        return _redirect(located.ok)

    async def _cid_endpoint(self, request: Request) -> Response:
        try:
            expires_in = _expires_in(request)
            cid = parse_cid(request.path_params["cid"])
        except ValueError as exc:
            return _error(400, str(exc))
        locator = self._services.locator.with_expires_in(expires_in)
        return await run_in_threadpool(self.resolve_cid, cid, locator)

    # ------------------------------------------------------------------
    # Raw keys
    # ------------------------------------------------------------------

    async def _key_endpoint(self, request: Request) -> Response:
        try:
            expires_in = _expires_in(request)
            key = request.path_params.get("key", "")
            if not key:
                raise BadRequest("no path key provided")
        except BadRequest as exc:
            return _error(400, str(exc))
        bucket = request.query_params.get("bucketName") or None
        locator = self._services.locator.with_expires_in(expires_in)
        url = await run_in_threadpool(locator.resolve_key, key, bucket)
        if url is None:
            return Response(status_code=404)
        return _redirect(url)

    # ------------------------------------------------------------------
    # Local object serving
    # ------------------------------------------------------------------

    async def _local_endpoint(self, request: Request) -> Response:
        objects = self._services.objects
        if not isinstance(objects, FileSystemObjectStore):
            return Response(status_code=404)
        bucket = request.path_params["bucket"]
        key = request.path_params["key"]
        try:
            expires = int(request.query_params.get("expires", ""))
        except ValueError:
            return _error(403, "missing or invalid expires")
        signature = request.query_params.get("signature", "")
        if not objects.verify(bucket, key, expires, signature):
            return _error(403, "invalid or expired signature")
        try:
            body = await run_in_threadpool(objects.get, bucket, key)
        except (ObjectNotFound, InvalidKeyError):
            return Response(status_code=404)
        return Response(body, media_type="application/octet-stream")

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def _health_endpoint(self, request: Request) -> Response:
        return JSONResponse({"status": "ok", "version": cidway.__version__})

    async def _unexpected_error(self, request: Request, exc: Exception) -> Response:
        logger.error(
            "Unhandled error serving %s %s", request.method, request.url.path, exc_info=exc
        )
        return PlainTextResponse("Internal Server Error", status_code=500)


def create_app(services: Services) -> Starlette:
    """Create the Starlette application over *services*."""
    return GatewayServer(services).app
