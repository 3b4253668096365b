"""
Performance Event Publishers

Publishes events to NATS JetStream. Publishing is best effort: a failure is
logged and reported as False, never raised into the cycle.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

from core.nats_client import Event, ServiceSource

from ..models import BudgetAllocation, CycleReport, ExperimentTest, FraudAlert
from .models import (
    BudgetReallocatedEventData,
    ChannelBudgetData,
    CycleCompletedEventData,
    ExperimentCompletedEventData,
    FraudAlertEventData,
    PerformanceEventType,
)

logger = logging.getLogger(__name__)


class PerformanceEventPublisher:
    """Publisher for performance service events"""

    def __init__(self, event_bus=None):
        self.event_bus = event_bus
        self.source = ServiceSource.PERFORMANCE_SERVICE

    async def publish(
        self,
        event_type: PerformanceEventType,
        data: Dict[str, Any],
    ) -> bool:
        """
        Publish an event to NATS.

        Args:
            event_type: The event type enum
            data: Event data payload

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = Event(event_type=event_type, source=self.source, data=data)
            published = await self.event_bus.publish_event(event)
            if published:
                logger.debug(f"Published event: {event_type.value}")
            return bool(published)
        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Fraud Events
    # ====================

    async def publish_alert_raised(self, alert: FraudAlert) -> bool:
        """Publish performance.fraud.alert_raised event"""
        return await self.publish(
            PerformanceEventType.FRAUD_ALERT_RAISED, self._alert_data(alert).model_dump()
        )

    async def publish_alert_resolved(self, alert: FraudAlert) -> bool:
        """Publish performance.fraud.alert_resolved event"""
        return await self.publish(
            PerformanceEventType.FRAUD_ALERT_RESOLVED, self._alert_data(alert).model_dump()
        )

    @staticmethod
    def _alert_data(alert: FraudAlert) -> FraudAlertEventData:
        return FraudAlertEventData(
            alert_id=alert.alert_id,
            campaign_id=alert.campaign_id,
            source_key=alert.source_key,
            severity=alert.severity.value,
            click_count=alert.click_count,
            estimated_loss=alert.estimated_loss,
            timestamp=datetime.now(timezone.utc),
        )

    # ====================
    # Budget Events
    # ====================

    async def publish_budget_reallocated(
        self,
        campaign_id: str,
        cycle_id: str,
        allocations: List[BudgetAllocation],
    ) -> bool:
        """Publish performance.budget.reallocated event"""
        data = BudgetReallocatedEventData(
            campaign_id=campaign_id,
            cycle_id=cycle_id,
            total_recommended=sum((a.recommended_budget for a in allocations), Decimal("0")),
            channels=[
                ChannelBudgetData(
                    channel_id=a.channel_id,
                    previous_budget=a.previous_budget,
                    recommended_budget=a.recommended_budget,
                    rank=a.rank,
                    action=a.action.value,
                )
                for a in allocations
            ],
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(PerformanceEventType.BUDGET_REALLOCATED, data.model_dump())

    # ====================
    # Experiment Events
    # ====================

    async def publish_experiment_completed(self, test: ExperimentTest) -> bool:
        """Publish performance.experiment.completed event"""
        data = ExperimentCompletedEventData(
            test_id=test.test_id,
            campaign_id=test.campaign_id,
            winner_variant_id=test.winner_variant_id,
            confidence=test.confidence,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(PerformanceEventType.EXPERIMENT_COMPLETED, data.model_dump())

    # ====================
    # Cycle Events
    # ====================

    async def publish_cycle_completed(self, report: CycleReport) -> bool:
        """Publish performance.cycle.completed event"""
        data = CycleCompletedEventData(
            cycle_id=report.cycle_id,
            campaign_id=report.campaign_id,
            status=report.status.value,
            skipped=report.skipped,
            alert_count=len(report.fraud.alerts) if report.fraud else 0,
            insight_count=len(report.insights),
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(PerformanceEventType.CYCLE_COMPLETED, data.model_dump())


__all__ = ["PerformanceEventPublisher"]
