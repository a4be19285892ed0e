"""Runtime configuration and service wiring.

Settings are read from ``CIDWAY_*`` environment variables or a ``.env``
file.  Nothing else happens at import time: ``build_services`` constructs
the stores and components explicitly from a config instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from cidway.core.agent_index import AgentMessageIndex
from cidway.core.allocations import AllocationLedger
from cidway.core.content_locator import DEFAULT_EXPIRES_IN, ContentLocationResolver
from cidway.core.equivalence import EquivalenceClaims
from cidway.core.metrics import MetricsTable, SpaceMetricsTable
from cidway.storage import KeyedStore, ObjectStore
from cidway.storage.memory import MemoryKeyedStore, MemoryObjectStore


class CidwayConfig(BaseSettings):
    """Gateway configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CIDWAY_OBJECT_STORE=s3
        export CIDWAY_BUCKET_NAME=carpark-prod-0
        export CIDWAY_KEYED_STORE_PATH=/data/cidway.db
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CIDWAY_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage backends
    data_path: Path = Path(".cidway/objects")
    object_store: Literal["filesystem", "s3", "memory"] = "filesystem"
    keyed_store_path: Path | None = Path(".cidway/cidway.db")

    # Buckets
    bucket_name: str = "carpark"
    index_bucket_name: str = "agent-index"
    message_bucket_name: str = "agent-message"

    # Tables
    allocation_table: str = "allocation"
    claims_table: str = "equivalence-claims"
    metrics_table: str = "admin-metrics"
    space_metrics_table: str = "space-metrics"

    # Signed URLs
    default_expires_in: int = DEFAULT_EXPIRES_IN
    signing_secret: str = "cidway-dev-secret"
    public_url: str = "http://127.0.0.1:8787"

    # S3
    s3_region: str = "us-west-2"
    s3_endpoint: str | None = None

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8787


@dataclass
class Services:
    """Every component of a running gateway, sharing two stores."""

    config: CidwayConfig
    objects: ObjectStore
    items: KeyedStore
    claims: EquivalenceClaims
    locator: ContentLocationResolver
    allocations: AllocationLedger
    agent_index: AgentMessageIndex
    metrics: MetricsTable
    space_metrics: SpaceMetricsTable


def _object_store(config: CidwayConfig) -> ObjectStore:
    if config.object_store == "memory":
        return MemoryObjectStore()
    if config.object_store == "s3":
        from cidway.storage.s3 import S3ObjectStore

        return S3ObjectStore(region=config.s3_region, endpoint_url=config.s3_endpoint)
    from cidway.storage.filesystem import FileSystemObjectStore

    return FileSystemObjectStore(
        config.data_path,
        signing_secret=config.signing_secret,
        public_url=config.public_url,
    )


def _keyed_store(config: CidwayConfig) -> KeyedStore:
    if config.keyed_store_path is None or config.object_store == "memory":
        return MemoryKeyedStore()
    from cidway.storage.sqlite import SqliteKeyedStore

    return SqliteKeyedStore(config.keyed_store_path)


def build_services(
    config: CidwayConfig,
    *,
    objects: ObjectStore | None = None,
    items: KeyedStore | None = None,
) -> Services:
    """Wire stores and components from *config*.

    Explicit *objects* / *items* stores take precedence over the configured
    backends.
    """
    objects = objects if objects is not None else _object_store(config)
    items = items if items is not None else _keyed_store(config)
    return Services(
        config=config,
        objects=objects,
        items=items,
        claims=EquivalenceClaims(items, config.claims_table),
        locator=ContentLocationResolver(objects, config.bucket_name, config.default_expires_in),
        allocations=AllocationLedger(items, config.allocation_table),
        agent_index=AgentMessageIndex(
            objects, config.index_bucket_name, config.message_bucket_name
        ),
        metrics=MetricsTable(items, config.metrics_table),
        space_metrics=SpaceMetricsTable(items, config.space_metrics_table),
    )


# Module-level singleton: `from cidway.config import config`
config = CidwayConfig()
