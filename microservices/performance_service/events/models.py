"""
Performance Event Data Models

Event type definitions and data structures for performance service events.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions
# =============================================================================


class PerformanceEventType(str, Enum):
    """
    Events published by performance_service.

    Other services should reference these when subscribing.
    """
    # Fraud events
    FRAUD_ALERT_RAISED = "performance.fraud.alert_raised"
    FRAUD_ALERT_RESOLVED = "performance.fraud.alert_resolved"

    # Budget events
    BUDGET_REALLOCATED = "performance.budget.reallocated"

    # Experiment events
    EXPERIMENT_COMPLETED = "performance.experiment.completed"

    # Cycle events
    CYCLE_COMPLETED = "performance.cycle.completed"


# =============================================================================
# Event Data Models
# =============================================================================


class FraudAlertEventData(BaseModel):
    """performance.fraud.alert_raised / alert_resolved event data"""
    alert_id: str = Field(..., description="Alert ID")
    campaign_id: str = Field(..., description="Campaign ID")
    source_key: str = Field(..., description="Flagged IP address or UA fingerprint")
    severity: str = Field(..., description="high or critical")
    click_count: int = Field(0, description="Clicks from the source in the window")
    estimated_loss: Decimal = Field(Decimal("0"), description="Estimated loss")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class ChannelBudgetData(BaseModel):
    """One channel inside a reallocation event"""
    channel_id: str
    previous_budget: Decimal
    recommended_budget: Decimal
    rank: int
    action: str


class BudgetReallocatedEventData(BaseModel):
    """performance.budget.reallocated event data"""
    campaign_id: str = Field(..., description="Campaign ID")
    cycle_id: str = Field(..., description="Cycle that produced the allocation")
    total_recommended: Decimal = Field(..., description="Sum of recommended budgets")
    channels: List[ChannelBudgetData] = Field(default_factory=list)
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class ExperimentCompletedEventData(BaseModel):
    """performance.experiment.completed event data"""
    test_id: str = Field(..., description="Test ID")
    campaign_id: str = Field(..., description="Campaign ID")
    winner_variant_id: Optional[str] = Field(None, description="Winning variant, if any")
    confidence: float = Field(0.0, description="Winner confidence percentage")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class CycleCompletedEventData(BaseModel):
    """performance.cycle.completed event data"""
    cycle_id: str = Field(..., description="Cycle ID")
    campaign_id: str = Field(..., description="Campaign ID")
    status: str = Field(..., description="Cycle status")
    skipped: int = Field(0, description="Events skipped during aggregation")
    alert_count: int = Field(0, description="Fraud alerts raised or refreshed")
    insight_count: int = Field(0, description="Insights produced")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


__all__ = [
    "PerformanceEventType",
    "FraudAlertEventData",
    "ChannelBudgetData",
    "BudgetReallocatedEventData",
    "ExperimentCompletedEventData",
    "CycleCompletedEventData",
]
