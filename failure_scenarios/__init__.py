"""
Failure scenarios package.

Provides the FailureResult dataclass used by all scenario modules and the
base URLs of a running platform.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FailureResult:
    """Result of a single failure scenario run against the platform."""

    scenario_name: str
    service: str
    expected_outcome: str
    actual_outcome: str
    correct: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class Platform:
    """Base URLs of the services a scenario may call."""

    cart: str
    catalog: str
    orders: str
    inventory: str
    payments: str
    fulfillment: str
    internal_secret: str
    user_id: str = "scenario-user"

    @classmethod
    def from_env(cls) -> Platform:
        return cls(
            cart=os.getenv("CART_SERVICE_URL", "http://localhost:8001"),
            catalog=os.getenv("CATALOG_SERVICE_URL", "http://localhost:8002"),
            orders=os.getenv("ORDERS_SERVICE_URL", "http://localhost:8003"),
            inventory=os.getenv("INVENTORY_SERVICE_URL", "http://localhost:8004"),
            payments=os.getenv("PAYMENTS_SERVICE_URL", "http://localhost:8005"),
            fulfillment=os.getenv("FULFILLMENT_SERVICE_URL", "http://localhost:8006"),
            internal_secret=os.getenv("INTERNAL_SERVICE_SECRET", "dev-internal-secret"),
        )

    def user_headers(self, **extra: str) -> dict[str, str]:
        """Dev-mode identity headers; services must run with AUTH_DEV_MODE on."""
        return {"x-user-id": self.user_id, **extra}
