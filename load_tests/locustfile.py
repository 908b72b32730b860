"""
Locust load-test file for the payments and inventory services.

Usage:
    locust -f load_tests/locustfile.py --host http://localhost:8005
    locust -f load_tests/locustfile.py ReservationUser --host http://localhost:8004

User classes:
- PaymentUser      : normal authorization traffic
- RetryUser        : client retry pattern (same key, 3 attempts)
- ReservationUser  : bursts of identical inventory reservations
"""
from __future__ import annotations

import os
import random
import uuid

from locust import HttpUser, between, events, task

CURRENCIES = ["USD", "EUR", "GBP", "CAD", "AUD"]
# Payments requires a caller; the service must run with AUTH_DEV_MODE on.
USER_HEADERS = {"x-user-id": os.getenv("LOAD_USER_ID", "load-user")}


def _order_id() -> str:
    return f"load-{uuid.uuid4().hex[:16]}"


def _authorization(order_id: str | None = None) -> dict:
    return {
        "orderId": order_id or _order_id(),
        "amountCents": random.randint(100, 99_999),
        "currency": random.choice(CURRENCIES),
    }


def _violation(name: str, detail: str) -> None:
    events.request.fire(
        request_type="IDEMPOTENCY_VIOLATION",
        name=name,
        response_time=0,
        response_length=0,
        exception=ValueError(detail),
        context={},
    )


class PaymentUser(HttpUser):
    """Each task authorizes a fresh payment with a fresh key."""

    wait_time = between(0.1, 1.0)

    def on_start(self) -> None:
        self.client.headers.update(USER_HEADERS)

    @task(10)
    def authorize(self) -> None:
        self.client.post(
            "/api/payments/authorize",
            json=_authorization(),
            headers={"Idempotency-Key": str(uuid.uuid4())},
            name="/api/payments/authorize",
        )

    @task(3)
    def get_health(self) -> None:
        self.client.get("/health", name="/health")


class RetryUser(HttpUser):
    """
    Retries the same authorization up to 3 times with one key.
    Every response must name the same payment.
    """

    wait_time = between(0.5, 2.0)

    def on_start(self) -> None:
        self.client.headers.update(USER_HEADERS)

    @task
    def retry_authorization(self) -> None:
        idem_key = str(uuid.uuid4())
        payload = _authorization()
        payment_ids: set[str] = set()

        for _ in range(3):
            with self.client.post(
                "/api/payments/authorize",
                json=payload,
                headers={"Idempotency-Key": idem_key},
                name="/api/payments/authorize [RETRY]",
                catch_response=True,
            ) as response:
                if response.status_code in (200, 201):
                    payment_ids.add(response.json().get("paymentId", ""))
                    response.success()
                elif response.status_code == 409:
                    # first attempt still in flight
                    response.success()
                else:
                    response.failure(f"Unexpected status {response.status_code}")

        if len(payment_ids) > 1:
            _violation("retry_produces_duplicates", f"Multiple IDs: {payment_ids}")


class ReservationUser(HttpUser):
    """
    Seeds a SKU, then sends 5 identical reservations for one order.
    Run with the inventory service as host.
    """

    wait_time = between(1.0, 3.0)

    def on_start(self) -> None:
        self.sku = f"LOAD-{uuid.uuid4().hex[:8].upper()}"
        self.client.post(
            "/api/inventory/adjustments",
            json={"sku": self.sku, "delta": 1_000_000, "reason": "load_seed"},
            headers={"Idempotency-Key": f"seed-{self.sku}"},
            name="/api/inventory/adjustments",
        )

    @task
    def reservation_burst(self) -> None:
        idem_key = str(uuid.uuid4())
        payload = {"orderId": _order_id(), "items": [{"sku": self.sku, "qty": 1}]}

        for _ in range(5):
            self.client.post(
                "/api/inventory/reservations",
                json=payload,
                headers={"Idempotency-Key": idem_key},
                name="/api/inventory/reservations [BURST]",
            )

        lines = self.client.get(
            f"/api/inventory/reservations/{payload['orderId']}",
            name="/api/inventory/reservations/{order_id}",
        ).json()
        if len(lines.get("items", [])) > 1:
            _violation("burst_reserves_twice", f"Lines: {lines}")
