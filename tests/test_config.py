from __future__ import annotations

import pytest

from services.shared.config import (
    database_url,
    env_bool,
    env_int,
    load_endpoint,
    load_outbox_worker_config,
)


@pytest.mark.parametrize("raw, expected", [("40", 40), ("0", 7), ("-3", 7), ("ten", 7)])
def test_env_int_falls_back_on_non_positive_or_garbage(monkeypatch, raw, expected):
    monkeypatch.setenv("SOME_LIMIT", raw)
    assert env_int("SOME_LIMIT", 7) == expected


def test_env_bool(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    assert env_bool("FLAG", False) is True
    monkeypatch.setenv("FLAG", "off")
    assert env_bool("FLAG", True) is False
    monkeypatch.delenv("FLAG")
    assert env_bool("FLAG", True) is True


def test_service_database_url_wins_over_the_generic_one(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://shared/db")
    monkeypatch.setenv("ORDERS_DATABASE_URL", "postgresql+asyncpg://orders/db")
    assert database_url("orders", "orders") == "postgresql+asyncpg://orders/db"
    assert database_url("payments", "payments") == "postgresql+asyncpg://shared/db"


def test_worker_and_endpoint_settings(monkeypatch):
    monkeypatch.setenv("ORDERS_OUTBOX_BATCH_SIZE", "50")
    monkeypatch.setenv("ORDERS_OUTBOX_POLL_INTERVAL_MS", "250")
    monkeypatch.setenv("PAYMENTS_SERVICE_URL", "http://payments:8000/")
    monkeypatch.setenv("PAYMENTS_TIMEOUT_MS", "1500")

    worker = load_outbox_worker_config("orders")
    endpoint = load_endpoint("payments", "http://localhost:8005", base_path="/api")

    assert (worker.batch_size, worker.poll_interval_seconds) == (50, 0.25)
    assert endpoint.timeout_seconds == 1.5
    assert endpoint.url("/payments") == "http://payments:8000/api/payments"
