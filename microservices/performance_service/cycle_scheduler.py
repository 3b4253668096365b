"""
Cycle Scheduler

Runs the optimization cycle for each campaign on a fixed interval. Each
campaign has its own loop, so cycles for different campaigns run in
parallel while a single campaign never has two cycles in flight.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from .models import CycleReport, CycleStatus
from .performance_service import PerformanceService
from .protocols import ConcurrentModificationError, ConfigurationError, DataUnavailableError

logger = logging.getLogger(__name__)


class CycleScheduler:
    """Per-campaign polling loops around PerformanceService.run_cycle"""

    def __init__(self, service: PerformanceService, interval_seconds: Optional[float] = None):
        self.service = service
        self.interval_seconds = interval_seconds or service.config.polling_interval_seconds
        self.is_running = False
        self.last_reports: Dict[str, CycleReport] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start(self, campaign_ids: Optional[Iterable[str]] = None) -> None:
        """Start a loop for every campaign (all configured campaigns by default)"""
        self.is_running = True
        if campaign_ids is None:
            campaign_ids = await self.service.list_campaign_ids()
        for campaign_id in campaign_ids:
            self.add_campaign(campaign_id)
        logger.info(f"Cycle scheduler started for {len(self._tasks)} campaign(s)")

    def add_campaign(self, campaign_id: str) -> None:
        task = self._tasks.get(campaign_id)
        if task is not None and not task.done():
            return
        self.is_running = True
        self._tasks[campaign_id] = asyncio.create_task(
            self._campaign_loop(campaign_id), name=f"performance-cycle-{campaign_id}"
        )

    async def remove_campaign(self, campaign_id: str) -> None:
        task = self._tasks.pop(campaign_id, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel all loops and wait for them to exit"""
        self.is_running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Cycle scheduler stopped")

    @property
    def campaign_ids(self):
        return sorted(self._tasks)

    async def interval_for(self, campaign_id: str) -> float:
        """Campaign override of the polling interval, else the scheduler default"""
        try:
            _, config = await self.service.get_campaign_config(campaign_id)
        except (ConfigurationError, DataUnavailableError):
            return self.interval_seconds
        return config.polling_interval_seconds or self.interval_seconds

    async def run_once(self, campaign_id: str, interval: Optional[float] = None) -> CycleReport:
        """
        Run one cycle bounded by the polling interval.

        A cycle still running when the interval elapses is cancelled and
        reported as timed_out; an overlapping cycle is reported as aborted.
        """
        timeout = interval or self.interval_seconds
        try:
            report = await asyncio.wait_for(self.service.run_cycle(campaign_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Cycle for campaign {campaign_id} exceeded {timeout}s; skipped until next tick")
            report = self._terminal_report(
                campaign_id, CycleStatus.TIMED_OUT, f"Cycle exceeded {timeout}s"
            )
        except ConcurrentModificationError as e:
            report = self._terminal_report(campaign_id, CycleStatus.ABORTED, str(e))

        self.last_reports[campaign_id] = report
        return report

    @staticmethod
    def _terminal_report(campaign_id: str, status: CycleStatus, error: str) -> CycleReport:
        return CycleReport(
            campaign_id=campaign_id,
            status=status,
            error=error,
            finished_at=datetime.now(timezone.utc),
        )

    async def _campaign_loop(self, campaign_id: str) -> None:
        loop = asyncio.get_running_loop()
        while self.is_running:
            started = loop.time()
            interval = await self.interval_for(campaign_id)
            try:
                await self.run_once(campaign_id, interval)
            except Exception as e:
                logger.error(f"Cycle loop error for campaign {campaign_id}: {e}", exc_info=True)
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))


__all__ = ["CycleScheduler"]
