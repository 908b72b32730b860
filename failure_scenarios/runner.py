"""
Failure scenario runner.

Runs the failure scenarios against a running platform (all of them, or the
names given on the command line), writes results/failure_results.json and
prints a Rich summary grouped by service.

    python -m failure_scenarios.runner [scenario ...]
"""
from __future__ import annotations

import asyncio
import json
import sys
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType

from rich.console import Console
from rich.table import Table

from failure_scenarios import FailureResult, Platform
from failure_scenarios.scenarios import (
    checkout_retry,
    client_retry,
    concurrent_identical,
    double_capture,
    message_redelivery,
    network_timeout,
    tampered_snapshot,
)

SCENARIOS: dict[str, ModuleType] = {
    module.SCENARIO_NAME: module
    for module in (
        client_retry,
        network_timeout,
        double_capture,
        concurrent_identical,
        message_redelivery,
        tampered_snapshot,
        checkout_retry,
    )
}

RESULTS_DIR = Path(__file__).parent.parent / "results"


async def run_scenarios(platform: Platform, names: list[str]) -> list[FailureResult]:
    results: list[FailureResult] = []
    for name in names:
        try:
            results.append(await SCENARIOS[name].run(platform))
        except Exception as exc:
            # A crashed scenario is reported as a failure, not raised.
            results.append(
                FailureResult(
                    scenario_name=name,
                    service="runner",
                    expected_outcome="scenario completes",
                    actual_outcome="scenario crashed",
                    correct=False,
                    error=repr(exc),
                )
            )
    return results


def save_results(results: list[FailureResult], platform: Platform) -> Path:
    RESULTS_DIR.mkdir(exist_ok=True)
    output_path = RESULTS_DIR / "failure_results.json"
    document = {
        "run_at": datetime.now(timezone.utc).isoformat(),
        "platform": {
            name: getattr(platform, name)
            for name in ("cart", "catalog", "orders", "inventory", "payments", "fulfillment")
        },
        "results": [asdict(result) for result in results],
    }
    output_path.write_text(json.dumps(document, indent=2))
    return output_path


def render(results: list[FailureResult], console: Console) -> None:
    table = Table(title="Failure Scenarios", show_lines=True)
    table.add_column("Service", style="magenta")
    table.add_column("Scenario", style="cyan", no_wrap=True)
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("Result", justify="center")

    for result in sorted(results, key=lambda r: (r.service, r.scenario_name)):
        verdict = "[green]PASS[/green]" if result.correct else "[red]FAIL[/red]"
        actual = result.actual_outcome
        if result.error:
            actual = f"{actual}\n[dim]{result.error}[/dim]"
        table.add_row(result.service, result.scenario_name, result.expected_outcome, actual, verdict)

    console.print(table)
    failed = Counter(r.service for r in results if not r.correct)
    passed = sum(1 for r in results if r.correct)
    console.print(f"[bold]{passed}/{len(results)} passed[/bold]")
    for service, count in sorted(failed.items()):
        console.print(f"  [red]{service}: {count} failing[/red]")


async def main(argv: list[str]) -> int:
    console = Console()
    unknown = [name for name in argv if name not in SCENARIOS]
    if unknown:
        console.print(f"[red]Unknown scenarios: {', '.join(unknown)}[/red]")
        console.print(f"Available: {', '.join(SCENARIOS)}")
        return 2

    platform = Platform.from_env()
    results = await run_scenarios(platform, argv or list(SCENARIOS))
    path = save_results(results, platform)
    render(results, console)
    console.print(f"Results written to {path}")
    return 0 if all(r.correct for r in results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
