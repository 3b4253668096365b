"""
Performance Service Events

Event models and publisher for performance service.
"""

from .models import (
    PerformanceEventType,
    FraudAlertEventData,
    ChannelBudgetData,
    BudgetReallocatedEventData,
    ExperimentCompletedEventData,
    CycleCompletedEventData,
)
from .publishers import PerformanceEventPublisher

__all__ = [
    # Event Types
    "PerformanceEventType",
    # Event Data Models
    "FraudAlertEventData",
    "ChannelBudgetData",
    "BudgetReallocatedEventData",
    "ExperimentCompletedEventData",
    "CycleCompletedEventData",
    # Publisher
    "PerformanceEventPublisher",
]
