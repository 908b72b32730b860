"""
Tampered snapshot scenario.

Posts an order whose cart snapshot carries a forged signature.

Expected: the orders service refuses it and creates nothing.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "tampered_snapshot"


def _forged_snapshot(user_id: str) -> dict:
    return {
        "snapshotId": str(uuid.uuid4()),
        "cartId": str(uuid.uuid4()),
        "cartVersion": 1,
        "currency": "USD",
        "userId": user_id,
        "items": [{"sku": "TEE", "qty": 1, "unitPriceCents": 1, "currency": "USD"}],
        "totals": {"itemCount": 1, "totalQuantity": 1, "subtotalCents": 1, "currency": "USD"},
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "signature": "0" * 64,
    }


async def run(platform: Platform) -> FailureResult:
    status_code: int | None = None
    code: str | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(base_url=platform.orders, timeout=10.0) as client:
            r = await client.post(
                "/api/orders",
                json={"cartSnapshot": _forged_snapshot(platform.user_id)},
                headers=platform.user_headers(**{"Idempotency-Key": str(uuid.uuid4())}),
            )
            status_code = r.status_code
            code = r.json().get("code")
    except httpx.HTTPError as exc:
        error = str(exc)

    correct = status_code == 422 and code == "INVALID_SNAPSHOT_SIGNATURE"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="orders",
        expected_outcome="forged snapshot rejected with 422",
        actual_outcome=f"status={status_code}, code={code}",
        correct=correct,
        error=error,
    )
