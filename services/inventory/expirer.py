"""Reservation expiry sweeper: releases ACTIVE reservations past their TTL."""
from __future__ import annotations

import asyncio

import structlog

from services.inventory.service import InventoryService
from services.shared.config import WorkerConfig

logger = structlog.get_logger(__name__)


class ReservationExpirer:
    def __init__(self, service: InventoryService, config: WorkerConfig) -> None:
        self._service = service
        self._config = config
        self._stop_event = asyncio.Event()

    async def run_once(self) -> int:
        return await self._service.expire_sweep(self._config.batch_size)

    async def run(self) -> None:
        logger.info(
            "reservation_expirer_started",
            batch_size=self._config.batch_size,
            interval=self._config.poll_interval_seconds,
        )
        while not self._stop_event.is_set():
            try:
                expired = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("reservation_expirer_error", error=str(exc))
                expired = 0

            if expired:
                logger.info("reservations_expired", count=expired)
                continue
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._config.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
        logger.info("reservation_expirer_stopped")

    async def stop(self) -> None:
        self._stop_event.set()
