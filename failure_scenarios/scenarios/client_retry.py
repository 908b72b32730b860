"""
Client retry scenario.

Authorizes a payment, assumes the response was lost, then retries with the
same Idempotency-Key.

Expected: both attempts return the same payment id and the retry is
flagged as a replay.
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "client_retry"


async def run(platform: Platform) -> FailureResult:
    idem_key = str(uuid.uuid4())
    order_id = f"scn-{uuid.uuid4().hex[:12]}"
    payload = {"orderId": order_id, "amountCents": 2500, "currency": "usd"}
    headers = {"Idempotency-Key": idem_key}

    first_id: str | None = None
    second_id: str | None = None
    replay_header: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(
            base_url=platform.payments, timeout=10.0, headers=platform.user_headers()
        ) as client:
            r1 = await client.post("/api/payments/authorize", json=payload, headers=headers)
            if r1.status_code == 201:
                first_id = r1.json().get("paymentId")

            r2 = await client.post("/api/payments/authorize", json=payload, headers=headers)
            if r2.status_code in (200, 201):
                second_id = r2.json().get("paymentId")
                replay_header = r2.headers.get("x-idempotent-replay")
    except httpx.HTTPError as exc:
        error = str(exc)

    correct = first_id is not None and first_id == second_id and replay_header == "true"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="payments",
        expected_outcome="retry replays the first payment",
        actual_outcome=f"first={first_id}, second={second_id}, replay={replay_header}",
        correct=correct,
        details={"idempotency_key": idem_key, "order_id": order_id},
        error=error,
    )
