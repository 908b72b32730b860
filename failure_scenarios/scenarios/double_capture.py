"""
Double capture scenario.

Authorizes a payment and captures it twice, as a saga step retried after
its first capture already landed.

Expected: the first capture succeeds and the second is refused with 409.
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "double_capture"


async def run(platform: Platform) -> FailureResult:
    order_id = f"scn-{uuid.uuid4().hex[:12]}"
    statuses: list[int] = []
    final_status: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(
            base_url=platform.payments, timeout=10.0, headers=platform.user_headers()
        ) as client:
            authorized = await client.post(
                "/api/payments/authorize",
                json={"orderId": order_id, "amountCents": 1999, "currency": "USD"},
                headers={"Idempotency-Key": str(uuid.uuid4())},
            )
            payment_id = authorized.json()["paymentId"]
            for _ in range(2):
                r = await client.post(f"/api/payments/{payment_id}/capture")
                statuses.append(r.status_code)
            final_status = (await client.get(f"/api/payments/{payment_id}")).json().get("status")
    except (httpx.HTTPError, KeyError) as exc:
        error = str(exc)

    correct = statuses == [200, 409] and final_status == "captured"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="payments",
        expected_outcome="capture then 409 on the repeat",
        actual_outcome=f"statuses={statuses}, final={final_status}",
        correct=correct,
        details={"order_id": order_id},
        error=error,
    )
