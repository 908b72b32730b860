"""Orders service configuration."""
from __future__ import annotations

from dataclasses import dataclass

from services.shared.config import (
    BrokerConfig,
    ServiceEndpoint,
    WorkerConfig,
    database_url,
    env_bool,
    env_str,
    internal_service_secret,
    load_broker_config,
    load_endpoint,
    load_outbox_worker_config,
)
from services.shared.signing import DEFAULT_SNAPSHOT_SECRET

SERVICE_NAME = "orders"


@dataclass(frozen=True)
class OrdersConfig:
    database_url: str
    broker: BrokerConfig
    outbox: WorkerConfig
    snapshot_secret: str
    internal_secret: str
    payments: ServiceEndpoint
    fulfillment: ServiceEndpoint
    inventory_events_queue: str
    dead_letter_exchange: str | None
    cancel_on_payment_failure: bool


def load_config() -> OrdersConfig:
    return OrdersConfig(
        database_url=database_url(SERVICE_NAME, "orders"),
        broker=load_broker_config(SERVICE_NAME),
        outbox=load_outbox_worker_config(SERVICE_NAME),
        snapshot_secret=env_str("CART_SNAPSHOT_SECRET", DEFAULT_SNAPSHOT_SECRET),
        internal_secret=internal_service_secret(),
        payments=load_endpoint("payments", "http://localhost:3004"),
        fulfillment=load_endpoint("fulfillment", "http://localhost:3005"),
        inventory_events_queue=env_str("ORDERS_INVENTORY_EVENTS_QUEUE", "orders.inventory-events"),
        dead_letter_exchange=env_str("ORDERS_DEAD_LETTER_EXCHANGE", "") or None,
        cancel_on_payment_failure=env_bool("ORDERS_CANCEL_ON_PAYMENT_FAILURE", True),
    )
