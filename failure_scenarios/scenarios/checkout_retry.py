"""
Checkout retry scenario.

Fills a cart and checks it out twice with the same Idempotency-Key, as a
browser resubmitting after a dropped response.

Expected: both checkouts return the same order id.
"""
from __future__ import annotations

import os
import uuid

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "checkout_retry"
SKU = os.getenv("SCENARIO_SKU", "TEE-CLASSIC")


async def run(platform: Platform) -> FailureResult:
    checkout_key = str(uuid.uuid4())
    user = f"scn-{uuid.uuid4().hex[:8]}"
    headers = {"x-user-id": user}
    order_ids: list[str | None] = []
    error: str | None = None

    try:
        async with httpx.AsyncClient(base_url=platform.cart, timeout=15.0) as client:
            await client.post(
                "/api/cart/items",
                json={"sku": SKU, "qty": 1},
                headers={**headers, "Idempotency-Key": str(uuid.uuid4())},
            )
            for _ in range(2):
                r = await client.post(
                    "/api/cart/checkout", headers={**headers, "Idempotency-Key": checkout_key}
                )
                order_ids.append(r.json().get("orderId") if r.status_code == 200 else None)
    except httpx.HTTPError as exc:
        error = str(exc)

    correct = len(order_ids) == 2 and order_ids[0] is not None and order_ids[0] == order_ids[1]

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="cart",
        expected_outcome="repeated checkout returns one order",
        actual_outcome=f"order_ids={order_ids}",
        correct=correct,
        details={"sku": SKU, "user_id": user},
        error=error,
    )
