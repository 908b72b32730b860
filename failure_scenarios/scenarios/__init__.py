"""Scenario modules, in the order the runner executes them."""
from __future__ import annotations

from failure_scenarios.scenarios import (
    checkout_retry,
    client_retry,
    concurrent_identical,
    double_capture,
    message_redelivery,
    network_timeout,
    tampered_snapshot,
)

__all__ = [
    "checkout_retry",
    "client_retry",
    "concurrent_identical",
    "double_capture",
    "message_redelivery",
    "network_timeout",
    "tampered_snapshot",
]
