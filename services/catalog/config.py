"""Catalog service configuration."""
from __future__ import annotations

from dataclasses import dataclass

from services.shared.config import (
    BrokerConfig,
    WorkerConfig,
    database_url,
    internal_service_secret,
    load_broker_config,
    load_outbox_worker_config,
)

SERVICE_NAME = "catalog"

# Catalog changes are not latency sensitive; the publisher polls slowly.
DEFAULT_OUTBOX_POLL_INTERVAL_MS = 40_000


@dataclass(frozen=True)
class CatalogConfig:
    database_url: str
    broker: BrokerConfig
    outbox: WorkerConfig
    internal_secret: str


def load_config() -> CatalogConfig:
    return CatalogConfig(
        database_url=database_url(SERVICE_NAME, "catalog"),
        broker=load_broker_config(SERVICE_NAME),
        outbox=load_outbox_worker_config(
            SERVICE_NAME, poll_interval_ms=DEFAULT_OUTBOX_POLL_INTERVAL_MS
        ),
        internal_secret=internal_service_secret(),
    )
