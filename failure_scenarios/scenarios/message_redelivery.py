"""
Message redelivery scenario.

Applies the same stock adjustment twice with one Idempotency-Key, the way a
redelivered message reuses its message id.

Expected: on-hand stock moves by the delta exactly once.
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "message_redelivery"
DELTA = 7


async def run(platform: Platform) -> FailureResult:
    idem_key = str(uuid.uuid4())
    sku = f"SCN-{uuid.uuid4().hex[:8].upper()}"
    payload = {"sku": sku, "delta": DELTA, "reason": "redelivery_scenario"}

    on_hand: int | None = None
    replay_header: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(base_url=platform.inventory, timeout=10.0) as client:
            for _ in range(2):
                r = await client.post(
                    "/api/inventory/adjustments",
                    json=payload,
                    headers={"Idempotency-Key": idem_key},
                )
                replay_header = r.headers.get("x-idempotent-replay")
            summary = await client.get(f"/api/inventory/{sku}")
            on_hand = summary.json().get("onHand")
    except httpx.HTTPError as exc:
        error = str(exc)

    correct = on_hand == DELTA and replay_header == "true"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="inventory",
        expected_outcome=f"onHand={DELTA} after a redelivered adjustment",
        actual_outcome=f"onHand={on_hand}, replay={replay_header}",
        correct=correct,
        details={"sku": sku, "idempotency_key": idem_key},
        error=error,
    )
