"""
Component Test Fixtures for Performance Service

Provides an in-memory repository with the same upsert and compare-and-set
semantics as the PostgreSQL repository, plus an event bus that records
what was published.
"""

import asyncio
import os
import sys
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from tenacity import wait_none

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import EngineConfig
from microservices.performance_service.performance_service import PerformanceService
from microservices.performance_service.protocols import DataUnavailableError
from tests.contracts.performance.data_contract import (
    REFERENCE_NOW,
    CampaignSettings,
    ChannelAggregate,
    ClickEvent,
    ConversionEvent,
    ExperimentStatus,
    ExperimentTest,
    ExperimentVariant,
    FraudAlert,
    PerformanceTestDataFactory,
    SpendRecord,
    TimeRange,
    TrafficChannel,
)
from microservices.performance_service.models import BudgetAllocation


# ====================
# Mock Repository
# ====================


class MockPerformanceRepository:
    """In-memory repository for component testing

    ``fail_on`` maps an operation name to the exception it raises;
    ``delay_on`` maps an operation name to seconds to sleep first.
    """

    def __init__(self):
        self.clicks: Dict[str, ClickEvent] = {}
        self.conversions: Dict[str, ConversionEvent] = {}
        self.channels: Dict[str, TrafficChannel] = {}
        self.spend: List[SpendRecord] = []
        self.settings: Dict[str, CampaignSettings] = {}
        self.aggregates: Dict[tuple, ChannelAggregate] = {}
        self.alerts: Dict[str, FraudAlert] = {}
        self.allocations: Dict[tuple, BudgetAllocation] = {}
        self.allocation_cycles: List[tuple] = []
        self.tests: Dict[str, ExperimentTest] = {}
        self.variants: Dict[str, ExperimentVariant] = {}
        self.fail_on: Dict[str, Exception] = {}
        self.delay_on: Dict[str, float] = {}
        self.calls: Dict[str, int] = defaultdict(int)

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        delay = self.delay_on.get(operation)
        if delay:
            await asyncio.sleep(delay)
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    def fail(self, operation: str, message: str = "connection refused") -> None:
        self.fail_on[operation] = DataUnavailableError(message, operation)

    # Seeding helpers
    def add_settings(self, settings: CampaignSettings) -> None:
        self.settings[settings.campaign_id] = settings

    def add_channel(self, channel: TrafficChannel) -> None:
        self.channels[channel.channel_id] = channel

    def add_spend(self, record: SpendRecord) -> None:
        self.spend.append(record)

    def add_clicks(self, clicks: List[ClickEvent]) -> None:
        for click in clicks:
            self.clicks[click.click_id] = click

    def add_conversions(self, conversions: List[ConversionEvent]) -> None:
        for conversion in conversions:
            self.conversions[conversion.conversion_id] = conversion

    async def initialize(self):
        pass

    async def close(self):
        pass

    async def health_check(self) -> bool:
        await self._enter("health_check")
        return True

    # Ingestion
    async def save_click(self, click: ClickEvent) -> bool:
        await self._enter("save_click")
        if click.click_id in self.clicks:
            return False
        self.clicks[click.click_id] = click
        return True

    async def save_conversion(self, conversion: ConversionEvent) -> bool:
        await self._enter("save_conversion")
        if conversion.conversion_id in self.conversions:
            return False
        self.conversions[conversion.conversion_id] = conversion
        return True

    async def find_unconverted_click(
        self, link_id: str, since: datetime, until: datetime
    ) -> Optional[ClickEvent]:
        await self._enter("find_unconverted_click")
        candidates = [
            c for c in self.clicks.values()
            if c.link_id == link_id and not c.converted and since <= c.timestamp <= until
        ]
        return max(candidates, key=lambda c: c.timestamp, default=None)

    async def mark_click_converted(self, click_id: str) -> bool:
        await self._enter("mark_click_converted")
        click = self.clicks.get(click_id)
        if click is None or click.converted:
            return False
        self.clicks[click_id] = click.model_copy(update={"converted": True})
        return True

    # Snapshot reads
    def _campaign_links(self, campaign_id: str) -> set:
        return {
            link_id
            for channel in self.channels.values()
            if channel.campaign_id == campaign_id
            for link_id in channel.link_ids
        }

    async def list_clicks(self, campaign_id: str, window: TimeRange) -> List[ClickEvent]:
        await self._enter("list_clicks")
        links = self._campaign_links(campaign_id)
        return [
            c for c in self.clicks.values()
            if (c.link_id in links or c.campaign_id == campaign_id) and window.contains(c.timestamp)
        ]

    async def list_conversions(self, campaign_id: str, window: TimeRange) -> List[ConversionEvent]:
        await self._enter("list_conversions")
        links = self._campaign_links(campaign_id)
        return [
            c for c in self.conversions.values()
            if (c.link_id in links or c.campaign_id == campaign_id) and window.contains(c.timestamp)
        ]

    async def list_channels(self, campaign_id: str) -> List[TrafficChannel]:
        await self._enter("list_channels")
        return sorted(
            (c for c in self.channels.values() if c.campaign_id == campaign_id),
            key=lambda c: c.channel_id,
        )

    async def list_spend(self, campaign_id: str, window: TimeRange) -> List[SpendRecord]:
        await self._enter("list_spend")
        return [
            s for s in self.spend
            if s.campaign_id == campaign_id
            and window.start.date() <= s.spend_date <= window.end.date()
        ]

    async def get_campaign_settings(self, campaign_id: str) -> Optional[CampaignSettings]:
        await self._enter("get_campaign_settings")
        return self.settings.get(campaign_id)

    async def list_campaign_ids(self) -> List[str]:
        await self._enter("list_campaign_ids")
        return sorted(self.settings)

    # Aggregates
    async def save_channel_aggregates(
        self,
        campaign_id: str,
        aggregates: List[ChannelAggregate],
        window: Optional[TimeRange] = None,
    ) -> None:
        await self._enter("save_channel_aggregates")
        if window is not None:
            for key, row in list(self.aggregates.items()):
                if (
                    row.campaign_id == campaign_id
                    and row.period_start < window.end
                    and row.period_end > window.start
                ):
                    del self.aggregates[key]
        for row in aggregates:
            self.aggregates[(row.channel_id, row.period_start)] = row

    # Fraud alerts
    async def list_unresolved_alerts(self, campaign_id: str) -> List[FraudAlert]:
        await self._enter("list_unresolved_alerts")
        return [a for a in self.alerts.values() if a.campaign_id == campaign_id and not a.resolved]

    async def list_alerts(self, campaign_id: str, include_resolved: bool = False) -> List[FraudAlert]:
        await self._enter("list_alerts")
        return [
            a for a in self.alerts.values()
            if a.campaign_id == campaign_id and (include_resolved or not a.resolved)
        ]

    async def upsert_alert(self, alert: FraudAlert) -> FraudAlert:
        await self._enter("upsert_alert")
        for existing in self.alerts.values():
            if (
                existing.campaign_id == alert.campaign_id
                and existing.source_key == alert.source_key
                and not existing.resolved
            ):
                updated = existing.model_copy(update={
                    "severity": alert.severity,
                    "click_count": alert.click_count,
                    "estimated_loss": alert.estimated_loss,
                    "details": alert.details,
                    "updated_at": alert.updated_at,
                })
                self.alerts[existing.alert_id] = updated
                return updated
        self.alerts[alert.alert_id] = alert
        return alert

    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        await self._enter("get_alert")
        return self.alerts.get(alert_id)

    async def resolve_alert(self, alert_id: str) -> Optional[FraudAlert]:
        await self._enter("resolve_alert")
        alert = self.alerts.get(alert_id)
        if alert is None or alert.resolved:
            return None
        now = datetime.now(timezone.utc)
        resolved = alert.model_copy(update={"resolved": True, "resolved_at": now, "updated_at": now})
        self.alerts[alert_id] = resolved
        return resolved

    # Budget allocations
    async def save_allocations(self, campaign_id: str, cycle_id: str, allocations: List[BudgetAllocation]) -> None:
        await self._enter("save_allocations")
        if (campaign_id, cycle_id) not in self.allocation_cycles:
            self.allocation_cycles.append((campaign_id, cycle_id))
        for allocation in allocations:
            self.allocations[(campaign_id, cycle_id, allocation.channel_id)] = allocation

    async def get_latest_allocations(self, campaign_id: str) -> List[BudgetAllocation]:
        await self._enter("get_latest_allocations")
        cycles = [cycle for campaign, cycle in self.allocation_cycles if campaign == campaign_id]
        if not cycles:
            return []
        latest = cycles[-1]
        rows = [a for (c, cyc, _), a in self.allocations.items() if c == campaign_id and cyc == latest]
        return sorted(rows, key=lambda a: a.rank)

    # Experiments
    async def save_test(self, test: ExperimentTest) -> ExperimentTest:
        await self._enter("save_test")
        self.tests.setdefault(test.test_id, test)
        return self.tests[test.test_id]

    async def get_test(self, test_id: str) -> Optional[ExperimentTest]:
        await self._enter("get_test")
        return self.tests.get(test_id)

    async def list_tests(self, campaign_id: str, status: Optional[ExperimentStatus] = None) -> List[ExperimentTest]:
        await self._enter("list_tests")
        return [
            t for t in self.tests.values()
            if t.campaign_id == campaign_id and (status is None or t.status == status)
        ]

    async def save_variant(self, variant: ExperimentVariant) -> ExperimentVariant:
        await self._enter("save_variant")
        self.variants.setdefault(variant.variant_id, variant)
        return self.variants[variant.variant_id]

    async def get_variants(self, test_id: str) -> List[ExperimentVariant]:
        await self._enter("get_variants")
        variants = [v for v in self.variants.values() if v.test_id == test_id]
        return sorted(variants, key=lambda v: (not v.is_control, v.variant_id))

    async def increment_variant(
        self, test_id: str, variant_id: str, visitors: int = 0, conversions: int = 0
    ) -> Optional[ExperimentVariant]:
        await self._enter("increment_variant")
        test = self.tests.get(test_id)
        variant = self.variants.get(variant_id)
        if test is None or variant is None or test.status != ExperimentStatus.RUNNING:
            return None
        if variant.conversions + conversions > variant.visitors + visitors:
            return None
        updated = variant.model_copy(update={
            "visitors": variant.visitors + visitors,
            "conversions": variant.conversions + conversions,
        })
        self.variants[variant_id] = updated
        return updated

    async def complete_test(
        self,
        test_id: str,
        winner_variant_id: Optional[str],
        confidence: float,
        recommendations: List[str],
    ) -> Optional[ExperimentTest]:
        await self._enter("complete_test")
        test = self.tests.get(test_id)
        if test is None or test.status != ExperimentStatus.RUNNING:
            return None
        completed = test.model_copy(update={
            "status": ExperimentStatus.COMPLETED,
            "winner_variant_id": winner_variant_id,
            "confidence": confidence,
            "recommendations": list(recommendations),
            "completed_at": datetime.now(timezone.utc),
        })
        self.tests[test_id] = completed
        return completed


# ====================
# Mock Event Bus
# ====================


class MockEventBus:
    """Records published events"""

    def __init__(self):
        self.published_events: List[Dict] = []
        self.fail = False

    async def publish_event(self, event) -> bool:
        if self.fail:
            raise ConnectionError("NATS unavailable")
        self.published_events.append({"type": event.type, "source": event.source, "data": event.data})
        return True

    async def close(self) -> None:
        pass

    def get_events_by_type(self, event_type: str) -> List[Dict]:
        return [e for e in self.published_events if e["type"] == event_type]

    def clear_events(self):
        self.published_events.clear()


# ====================
# Fixtures
# ====================


@pytest.fixture
def factory():
    return PerformanceTestDataFactory()


@pytest.fixture
def mock_repository():
    return MockPerformanceRepository()


@pytest.fixture
def mock_event_bus():
    return MockEventBus()


@pytest.fixture
def engine_config():
    return EngineConfig(store_timeout_seconds=1.0, store_retry_attempts=3)


@pytest.fixture
def service(mock_repository, mock_event_bus, engine_config):
    return PerformanceService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        config=engine_config,
        retry_wait=wait_none(),
    )


@pytest.fixture
def seeded_campaign(mock_repository, factory):
    """
    Two channels on one day.

    ch_a: 100 clicks (51 from 10.0.0.66), 8 conversions x $60, $40 spend
    ch_b: 100 clicks, 2 conversions x $10, $60 spend
    """
    campaign_id = "cmp_default"
    mock_repository.add_settings(factory.make_settings(campaign_id, total_budget=Decimal("200")))
    mock_repository.add_channel(factory.make_channel("ch_a", campaign_id, link_ids=["lnk_a"]))
    mock_repository.add_channel(factory.make_channel("ch_b", campaign_id, link_ids=["lnk_b"]))
    mock_repository.add_clicks(
        factory.make_clicks(51, link_id="lnk_a", ip_address="10.0.0.66")
        + factory.make_clicks(49, link_id="lnk_a", ip_address="10.0.0.2")
        + factory.make_clicks(50, link_id="lnk_b", ip_address="10.0.0.3")
        + factory.make_clicks(50, link_id="lnk_b", ip_address="10.0.0.4")
    )
    mock_repository.add_conversions(
        [factory.make_conversion(link_id="lnk_a", sale_amount=Decimal("60")) for _ in range(8)]
        + [factory.make_conversion(link_id="lnk_b", sale_amount=Decimal("10")) for _ in range(2)]
    )
    mock_repository.add_spend(factory.make_spend("ch_a", Decimal("40"), campaign_id))
    mock_repository.add_spend(factory.make_spend("ch_b", Decimal("60"), campaign_id))
    return campaign_id


@pytest.fixture
def cycle_window(factory):
    return factory.make_window(days=1, end=REFERENCE_NOW)
