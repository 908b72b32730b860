"""
Network timeout scenario.

Sends an authorization with a timeout too short to see the response, then
retries with a normal timeout and the same Idempotency-Key.

Expected: the retry succeeds and the order has exactly one payment, whether
or not the first attempt reached the server.
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "network_timeout"


async def run(platform: Platform) -> FailureResult:
    idem_key = str(uuid.uuid4())
    order_id = f"scn-{uuid.uuid4().hex[:12]}"
    payload = {"orderId": order_id, "amountCents": 4200, "currency": "USD"}
    headers = {"Idempotency-Key": idem_key}

    first_timed_out = False
    retry_status: int | None = None
    payment_count = 0
    error: str | None = None

    try:
        async with httpx.AsyncClient(
            base_url=platform.payments, timeout=0.001, headers=platform.user_headers()
        ) as client:
            await client.post("/api/payments/authorize", json=payload, headers=headers)
    except httpx.TimeoutException:
        first_timed_out = True

    try:
        async with httpx.AsyncClient(
            base_url=platform.payments, timeout=10.0, headers=platform.user_headers()
        ) as client:
            retry = await client.post("/api/payments/authorize", json=payload, headers=headers)
            retry_status = retry.status_code
            listing = await client.get("/api/payments", params={"orderId": order_id})
            payment_count = len(listing.json().get("items", []))
    except httpx.HTTPError as exc:
        error = str(exc)

    # 409 means the first attempt still holds the claim; the payment is not duplicated.
    correct = retry_status in (200, 201, 409) and payment_count <= 1

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="payments",
        expected_outcome="retry after timeout creates at most one payment",
        actual_outcome=(
            f"first_timed_out={first_timed_out}, retry_status={retry_status}, "
            f"payments={payment_count}"
        ),
        correct=correct,
        details={"idempotency_key": idem_key, "order_id": order_id},
        error=error,
    )
