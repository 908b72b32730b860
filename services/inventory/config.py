"""Inventory service configuration."""
from __future__ import annotations

from dataclasses import dataclass

from services.shared.config import (
    BrokerConfig,
    WorkerConfig,
    database_url,
    env_int,
    env_str,
    internal_service_secret,
    load_broker_config,
    load_outbox_worker_config,
)

SERVICE_NAME = "inventory"
DEFAULT_RESERVATION_TTL_SECONDS = 15 * 60


@dataclass(frozen=True)
class InventoryConfig:
    database_url: str
    broker: BrokerConfig
    outbox: WorkerConfig
    expirer: WorkerConfig
    reservation_ttl_seconds: int
    order_events_queue: str
    dead_letter_exchange: str | None
    internal_secret: str


def load_config() -> InventoryConfig:
    return InventoryConfig(
        database_url=database_url(SERVICE_NAME, "inventory"),
        broker=load_broker_config(SERVICE_NAME),
        outbox=load_outbox_worker_config(SERVICE_NAME),
        expirer=WorkerConfig(
            batch_size=env_int("INVENTORY_EXPIRER_BATCH_SIZE", 100),
            poll_interval_seconds=env_int("INVENTORY_EXPIRER_INTERVAL_MS", 5000) / 1000,
        ),
        reservation_ttl_seconds=env_int(
            "INVENTORY_RESERVATION_TTL_SECONDS", DEFAULT_RESERVATION_TTL_SECONDS
        ),
        order_events_queue=env_str("INVENTORY_ORDER_EVENTS_QUEUE", "inventory.order-events"),
        dead_letter_exchange=env_str("INVENTORY_DEAD_LETTER_EXCHANGE", "") or None,
        internal_secret=internal_service_secret(),
    )
