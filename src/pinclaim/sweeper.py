"""
Background expiry sweeper.

Runs ClaimService.expire_sweep on a fixed interval inside the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from typing import TYPE_CHECKING

from pinclaim.core.logging import get_logger
from pinclaim.core.types import SweepReport

if TYPE_CHECKING:
    from pinclaim.service import ClaimService


class ExpirySweeper:
    """
    Periodic refund of expired claims.

    A failing sweep is logged and the loop carries on; expired claims that
    could not be refunded are picked up again on the next run.
    """

    def __init__(self, service: ClaimService, interval: float | None = None) -> None:
        self._service = service
        self.interval = interval if interval is not None else service.config.sweep_interval
        if self.interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self._task: asyncio.Task[None] | None = None
        self._logger = get_logger("sweeper")
        self.last_report: SweepReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> SweepReport:
        report = await self._service.expire_sweep(now)
        self.last_report = report
        return report

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                self._logger.error(f"Expiry sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="pinclaim.sweeper")
        self._logger.info(f"Expiry sweeper started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._logger.info("Expiry sweeper stopped")
