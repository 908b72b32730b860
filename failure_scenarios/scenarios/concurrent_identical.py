"""
Concurrent identical requests scenario.

Seeds stock for a fresh SKU, then fires 10 concurrent reservations for the
same order with the same Idempotency-Key.

Expected: the SKU's reserved count grows by the requested quantity once.
"""
from __future__ import annotations

import asyncio
import uuid

import httpx

from failure_scenarios import FailureResult, Platform

SCENARIO_NAME = "concurrent_identical"
QTY = 2


async def run(platform: Platform) -> FailureResult:
    idem_key = str(uuid.uuid4())
    sku = f"SCN-{uuid.uuid4().hex[:8].upper()}"
    order_id = f"scn-{uuid.uuid4().hex[:12]}"
    payload = {"orderId": order_id, "items": [{"sku": sku, "qty": QTY}]}

    status_codes: list[int] = []
    reserved: int | None = None
    error: str | None = None

    async def send(client: httpx.AsyncClient) -> None:
        r = await client.post(
            "/api/inventory/reservations", json=payload, headers={"Idempotency-Key": idem_key}
        )
        status_codes.append(r.status_code)

    try:
        async with httpx.AsyncClient(base_url=platform.inventory, timeout=15.0) as client:
            await client.post(
                "/api/inventory/adjustments",
                json={"sku": sku, "delta": 10, "reason": "scenario_seed"},
                headers={"Idempotency-Key": f"seed-{sku}"},
            )
            await asyncio.gather(*[send(client) for _ in range(10)])
            summary = await client.get(f"/api/inventory/{sku}")
            reserved = summary.json().get("reserved")
    except httpx.HTTPError as exc:
        error = str(exc)

    correct = reserved == QTY

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service="inventory",
        expected_outcome=f"reserved={QTY} after 10 identical reservations",
        actual_outcome=f"reserved={reserved}",
        correct=correct,
        details={"sku": sku, "order_id": order_id, "status_codes": status_codes},
        error=error,
    )
