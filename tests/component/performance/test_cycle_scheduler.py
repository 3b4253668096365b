"""
Component Tests for CycleScheduler

Per-campaign polling loops, interval timeouts and overlap handling.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import EngineConfig
from microservices.performance_service.cycle_scheduler import CycleScheduler
from microservices.performance_service.models import CycleReport
from microservices.performance_service.protocols import (
    ConcurrentModificationError,
    ConfigurationError,
)
from tests.contracts.performance.data_contract import CycleStatus


@pytest.fixture
def mock_service():
    service = MagicMock()
    service.config = EngineConfig(polling_interval_seconds=0.05)
    service.run_cycle = AsyncMock(side_effect=lambda campaign_id: CycleReport(campaign_id=campaign_id))
    service.list_campaign_ids = AsyncMock(return_value=["cmp_1", "cmp_2"])
    service.get_campaign_config = AsyncMock(return_value=(MagicMock(), EngineConfig(polling_interval_seconds=0.05)))
    return service


class TestRunOnce:
    """A single scheduled cycle"""

    @pytest.mark.asyncio
    async def test_completed_cycle_recorded(self, mock_service):
        scheduler = CycleScheduler(mock_service)

        report = await scheduler.run_once("cmp_1")

        assert report.status == CycleStatus.COMPLETED
        assert scheduler.last_reports["cmp_1"] is report

    @pytest.mark.asyncio
    async def test_cycle_exceeding_interval_times_out(self, mock_service):
        # Given: a cycle slower than the interval
        async def slow(campaign_id):
            await asyncio.sleep(1.0)
            return CycleReport(campaign_id=campaign_id)

        mock_service.run_cycle = AsyncMock(side_effect=slow)
        scheduler = CycleScheduler(mock_service)

        # When
        report = await scheduler.run_once("cmp_1", interval=0.05)

        # Then
        assert report.status == CycleStatus.TIMED_OUT
        assert "0.05" in report.error

    @pytest.mark.asyncio
    async def test_overlapping_cycle_aborted(self, mock_service):
        mock_service.run_cycle = AsyncMock(side_effect=ConcurrentModificationError("busy", "cmp_1"))
        scheduler = CycleScheduler(mock_service)

        report = await scheduler.run_once("cmp_1")

        assert report.status == CycleStatus.ABORTED
        assert report.error == "busy"

    @pytest.mark.asyncio
    async def test_overlap_with_real_service(self, service, mock_repository, seeded_campaign):
        mock_repository.delay_on["list_channels"] = 0.2
        scheduler = CycleScheduler(service, interval_seconds=5)
        manual = asyncio.create_task(service.run_cycle(seeded_campaign))
        await asyncio.sleep(0.01)

        report = await scheduler.run_once(seeded_campaign)

        assert report.status == CycleStatus.ABORTED
        assert (await manual).status == CycleStatus.COMPLETED


class TestInterval:
    """Campaign override of the polling interval"""

    @pytest.mark.asyncio
    async def test_campaign_interval(self, mock_service):
        mock_service.get_campaign_config = AsyncMock(
            return_value=(MagicMock(), EngineConfig(polling_interval_seconds=7.5))
        )
        scheduler = CycleScheduler(mock_service, interval_seconds=30)

        assert await scheduler.interval_for("cmp_1") == 7.5

    @pytest.mark.asyncio
    async def test_misconfigured_campaign_uses_default(self, mock_service):
        mock_service.get_campaign_config = AsyncMock(side_effect=ConfigurationError("no budget", "total_budget"))
        scheduler = CycleScheduler(mock_service, interval_seconds=30)

        assert await scheduler.interval_for("cmp_1") == 30


class TestLoops:
    """Start and stop"""

    @pytest.mark.asyncio
    async def test_start_runs_every_configured_campaign(self, mock_service):
        # Given
        scheduler = CycleScheduler(mock_service)

        # When
        await scheduler.start()
        await asyncio.sleep(0.12)
        await scheduler.stop()

        # Then
        called = {call.args[0] for call in mock_service.run_cycle.await_args_list}
        assert called == {"cmp_1", "cmp_2"}
        assert mock_service.run_cycle.await_count >= 3
        assert scheduler.campaign_ids == []
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_loop_survives_cycle_errors(self, mock_service):
        mock_service.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = CycleScheduler(mock_service)

        await scheduler.start(["cmp_1"])
        await asyncio.sleep(0.12)
        await scheduler.stop()

        assert mock_service.run_cycle.await_count >= 2

    @pytest.mark.asyncio
    async def test_add_and_remove_campaign(self, mock_service):
        scheduler = CycleScheduler(mock_service)

        await scheduler.start([])
        scheduler.add_campaign("cmp_9")
        scheduler.add_campaign("cmp_9")
        assert scheduler.campaign_ids == ["cmp_9"]

        await scheduler.remove_campaign("cmp_9")
        assert scheduler.campaign_ids == []
        await scheduler.stop()
