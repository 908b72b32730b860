"""Payments service configuration."""
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

SERVICE_NAME = "payments"


@dataclass(frozen=True)
class PaymentsConfig:
    database_url: str
    broker: BrokerConfig
    outbox: WorkerConfig
    internal_secret: str


def load_config() -> PaymentsConfig:
    return PaymentsConfig(
        database_url=database_url(SERVICE_NAME, "payments"),
        broker=load_broker_config(SERVICE_NAME),
        outbox=load_outbox_worker_config(SERVICE_NAME),
        internal_secret=internal_service_secret(),
    )
