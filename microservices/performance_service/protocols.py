"""
Performance Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, List, Optional, Protocol

from .models import (
    BudgetAllocation,
    CampaignSettings,
    ChannelAggregate,
    ClickEvent,
    ConversionEvent,
    ExperimentStatus,
    ExperimentTest,
    ExperimentVariant,
    FraudAlert,
    SpendRecord,
    TimeRange,
    TrafficChannel,
)


# ====================
# Repository Protocol
# ====================


class PerformanceRepositoryProtocol(Protocol):
    """Protocol for the event store and aggregate repository"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def health_check(self) -> bool:
        """Check repository health"""
        ...

    # Ingestion (append-only)
    async def save_click(self, click: ClickEvent) -> bool:
        """Insert a click; False when the id was already ingested"""
        ...

    async def save_conversion(self, conversion: ConversionEvent) -> bool:
        """Insert a conversion; False when the id was already ingested"""
        ...

    async def find_unconverted_click(
        self, link_id: str, since: datetime, until: datetime
    ) -> Optional[ClickEvent]:
        """Latest unconverted click on a link inside a window"""
        ...

    async def mark_click_converted(self, click_id: str) -> bool:
        """Flip converted to True; False if it was already converted"""
        ...

    # Snapshot reads
    async def list_clicks(self, campaign_id: str, window: TimeRange) -> List[ClickEvent]:
        """Clicks on the campaign's links inside the window"""
        ...

    async def list_conversions(
        self, campaign_id: str, window: TimeRange
    ) -> List[ConversionEvent]:
        """Conversions on the campaign's links inside the window"""
        ...

    async def list_channels(self, campaign_id: str) -> List[TrafficChannel]:
        """Channel metadata for a campaign"""
        ...

    async def list_spend(self, campaign_id: str, window: TimeRange) -> List[SpendRecord]:
        """Daily spend records inside the window"""
        ...

    async def get_campaign_settings(self, campaign_id: str) -> Optional[CampaignSettings]:
        """Budget and threshold configuration for a campaign"""
        ...

    async def list_campaign_ids(self) -> List[str]:
        """Campaigns with settings on record"""
        ...

    # Aggregates
    async def save_channel_aggregates(
        self,
        campaign_id: str,
        aggregates: List[ChannelAggregate],
        window: Optional[TimeRange] = None,
    ) -> None:
        """Replace rows overlapping the window; upsert keyed by (channel_id, period_start)"""
        ...

    # Fraud alerts
    async def list_unresolved_alerts(self, campaign_id: str) -> List[FraudAlert]:
        """Open alerts for a campaign"""
        ...

    async def list_alerts(
        self, campaign_id: str, include_resolved: bool = False
    ) -> List[FraudAlert]:
        """Alerts for a campaign"""
        ...

    async def upsert_alert(self, alert: FraudAlert) -> FraudAlert:
        """Insert or refresh the open alert for (campaign_id, source_key)"""
        ...

    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        """Get alert by ID"""
        ...

    async def resolve_alert(self, alert_id: str) -> Optional[FraudAlert]:
        """Mark resolved; None if missing or already resolved"""
        ...

    # Budget allocations
    async def save_allocations(
        self, campaign_id: str, cycle_id: str, allocations: List[BudgetAllocation]
    ) -> None:
        """Upsert allocations keyed by (campaign_id, cycle_id, channel_id)"""
        ...

    async def get_latest_allocations(self, campaign_id: str) -> List[BudgetAllocation]:
        """Allocations written by the most recent cycle"""
        ...

    # Experiments
    async def save_test(self, test: ExperimentTest) -> ExperimentTest:
        """Save test"""
        ...

    async def get_test(self, test_id: str) -> Optional[ExperimentTest]:
        """Get test by ID"""
        ...

    async def list_tests(
        self, campaign_id: str, status: Optional[ExperimentStatus] = None
    ) -> List[ExperimentTest]:
        """Tests for a campaign"""
        ...

    async def save_variant(self, variant: ExperimentVariant) -> ExperimentVariant:
        """Save variant"""
        ...

    async def get_variants(self, test_id: str) -> List[ExperimentVariant]:
        """Variants of a test"""
        ...

    async def increment_variant(
        self, test_id: str, variant_id: str, visitors: int = 0, conversions: int = 0
    ) -> Optional[ExperimentVariant]:
        """Add to counters while the parent test is running; None otherwise"""
        ...

    async def complete_test(
        self,
        test_id: str,
        winner_variant_id: Optional[str],
        confidence: float,
        recommendations: List[str],
    ) -> Optional[ExperimentTest]:
        """running -> completed; None if the test was not running"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event to the event bus"""
        ...

    async def close(self) -> None:
        """Close event bus connection"""
        ...


# ====================
# Custom Exceptions
# ====================


class PerformanceServiceError(Exception):
    """Base exception for performance service errors"""
    pass


class DataUnavailableError(PerformanceServiceError):
    """Raised when the store is unreachable or a call exceeds its timeout"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class InsufficientDataError(PerformanceServiceError):
    """Raised by helpers when there is nothing to compute on"""
    pass


class ConfigurationError(PerformanceServiceError):
    """Raised when campaign configuration is missing or invalid"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConcurrentModificationError(PerformanceServiceError):
    """Raised when a cycle for the same campaign is already in flight"""

    def __init__(self, message: str, campaign_id: Optional[str] = None):
        super().__init__(message)
        self.campaign_id = campaign_id


class AlertNotFoundError(PerformanceServiceError):
    """Raised when a fraud alert is not found"""
    pass


class ExperimentNotFoundError(PerformanceServiceError):
    """Raised when a test or variant is not found"""
    pass


class InvalidExperimentStateError(PerformanceServiceError):
    """Raised when a test is in an invalid state for the operation"""

    def __init__(self, message: str, current_status: Optional[ExperimentStatus] = None):
        super().__init__(message)
        self.current_status = current_status


class ExperimentValidationError(PerformanceServiceError):
    """Raised when test definition validation fails"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


__all__ = [
    "PerformanceRepositoryProtocol",
    "EventBusProtocol",
    "PerformanceServiceError",
    "DataUnavailableError",
    "InsufficientDataError",
    "ConfigurationError",
    "ConcurrentModificationError",
    "AlertNotFoundError",
    "ExperimentNotFoundError",
    "InvalidExperimentStateError",
    "ExperimentValidationError",
]
