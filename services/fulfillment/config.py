"""Fulfillment service configuration."""
from __future__ import annotations

from dataclasses import dataclass

from services.shared.config import database_url, env_str, internal_service_secret

SERVICE_NAME = "fulfillment"


@dataclass(frozen=True)
class FulfillmentConfig:
    database_url: str
    internal_secret: str
    default_country: str = "US"
    default_currency: str = "USD"


def load_config() -> FulfillmentConfig:
    return FulfillmentConfig(
        database_url=database_url(SERVICE_NAME, "fulfillment"),
        internal_secret=internal_service_secret(),
        default_country=env_str("FULFILLMENT_DEFAULT_COUNTRY", "US").upper(),
        default_currency=env_str("FULFILLMENT_DEFAULT_CURRENCY", "USD").upper(),
    )
