"""
Retry storm: sends 100 identical payment authorizations with one
Idempotency-Key and counts how many distinct payments come back.

Expected: exactly one payment id across every successful response.
"""
from __future__ import annotations

import asyncio
import sys
import uuid
from collections import Counter

import httpx


async def run_retry_storm(
    base_url: str = "http://localhost:8005",
    num_requests: int = 100,
    concurrency: int = 20,
) -> dict:
    """Send `num_requests` identical authorizations with the same key."""
    idem_key = str(uuid.uuid4())
    payload = {
        "orderId": f"storm-{uuid.uuid4().hex[:12]}",
        "amountCents": 4200,
        "currency": "USD",
    }
    headers = {"Idempotency-Key": idem_key}

    results: list[dict] = []
    errors: list[str] = []

    semaphore = asyncio.Semaphore(concurrency)

    async def send_one(client: httpx.AsyncClient, n: int) -> None:
        async with semaphore:
            try:
                r = await client.post("/api/payments/authorize", json=payload, headers=headers)
            except httpx.HTTPError as exc:
                errors.append(str(exc))
                return
            body = r.json()
            results.append(
                {
                    "n": n,
                    "status": r.status_code,
                    "payment_id": body.get("paymentId", "") if r.status_code in (200, 201) else "",
                    "replay": r.headers.get("x-idempotent-replay", "false"),
                }
            )

    async with httpx.AsyncClient(
        base_url=base_url, timeout=30.0, headers={"x-user-id": "storm-user"}
    ) as client:
        await asyncio.gather(*[send_one(client, i) for i in range(num_requests)])
        listing = await client.get("/api/payments", params={"orderId": payload["orderId"]})
        stored = len(listing.json().get("items", []))

    payment_ids = [r["payment_id"] for r in results if r["payment_id"]]
    unique_ids = set(payment_ids)

    summary = {
        "base_url": base_url,
        "idempotency_key": idem_key,
        "total_requests": num_requests,
        "responses": len(results),
        "errors": len(errors),
        "unique_payment_ids": len(unique_ids),
        "stored_payments": stored,
        "replays": sum(1 for r in results if r["replay"] == "true"),
        "in_progress_conflicts": sum(1 for r in results if r["status"] == 409),
        "status_codes": dict(Counter(r["status"] for r in results)),
        "correct": len(unique_ids) <= 1 and stored <= 1,
    }

    print(f"\n{'=' * 60}")
    print(f"Retry Storm Results: {base_url}")
    print(f"{'=' * 60}")
    for k, v in summary.items():
        print(f"  {k:<30}: {v}")
    print(f"{'=' * 60}")
    print("  PASS" if summary["correct"] else "  FAIL: duplicate payments detected")

    return summary


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8005"
    asyncio.run(run_retry_storm(base_url=url))
