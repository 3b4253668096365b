#!/usr/bin/env python3
"""Performance engine configuration

Global defaults for the optimization cycle. Every threshold here can be
overridden per campaign through CampaignSettings.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List


DEFAULT_BOT_SIGNATURES = ["bot", "crawler", "spider", "scraper"]


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


def _decimal(val: str, default: str) -> Decimal:
    try:
        return Decimal(val) if val else Decimal(default)
    except InvalidOperation:
        return Decimal(default)


def _list(val: str, default: List[str]) -> List[str]:
    if not val:
        return list(default)
    return [item.strip().lower() for item in val.split(",") if item.strip()]


@dataclass
class EngineConfig:
    """Thresholds and timings for the optimization cycle"""

    # Fraud detection
    fraud_click_threshold: int = 50
    fraud_critical_threshold: int = 100
    fraud_cost_per_click: Decimal = Decimal("0.50")
    bot_signatures: List[str] = field(default_factory=lambda: list(DEFAULT_BOT_SIGNATURES))

    # Budget optimization
    scale_roi_threshold: float = 0.20
    scale_factor: float = 1.5
    pause_min_spend: Decimal = Decimal("50")
    pause_roi_threshold: float = -0.50
    pacing_tolerance: float = 0.20

    # Experiments
    confidence_threshold: float = 90.0
    confidence_method: str = "normal"

    # Attribution / aggregation
    attribution_window_days: int = 7
    aggregation_lookback_days: int = 30

    # Insights
    insight_limit: int = 5

    # Scheduling and store access
    polling_interval_seconds: float = 30.0
    store_timeout_seconds: float = 5.0
    store_retry_attempts: int = 3

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Load engine defaults from environment variables"""
        return cls(
            fraud_click_threshold=_int(os.getenv("FRAUD_CLICK_THRESHOLD", "50"), 50),
            fraud_critical_threshold=_int(os.getenv("FRAUD_CRITICAL_THRESHOLD", "100"), 100),
            fraud_cost_per_click=_decimal(os.getenv("FRAUD_COST_PER_CLICK", "0.50"), "0.50"),
            bot_signatures=_list(os.getenv("FRAUD_BOT_SIGNATURES", ""), DEFAULT_BOT_SIGNATURES),
            scale_roi_threshold=_float(os.getenv("BUDGET_SCALE_ROI_THRESHOLD", "0.20"), 0.20),
            scale_factor=_float(os.getenv("BUDGET_SCALE_FACTOR", "1.5"), 1.5),
            pause_min_spend=_decimal(os.getenv("BUDGET_PAUSE_MIN_SPEND", "50"), "50"),
            pause_roi_threshold=_float(os.getenv("BUDGET_PAUSE_ROI_THRESHOLD", "-0.50"), -0.50),
            pacing_tolerance=_float(os.getenv("PACING_TOLERANCE", "0.20"), 0.20),
            confidence_threshold=_float(os.getenv("EXPERIMENT_CONFIDENCE_THRESHOLD", "90"), 90.0),
            confidence_method=os.getenv("EXPERIMENT_CONFIDENCE_METHOD", "normal").lower(),
            attribution_window_days=min(_int(os.getenv("ATTRIBUTION_WINDOW_DAYS", "7"), 7), 30),
            aggregation_lookback_days=_int(os.getenv("AGGREGATION_LOOKBACK_DAYS", "30"), 30),
            insight_limit=_int(os.getenv("INSIGHT_LIMIT", "5"), 5),
            polling_interval_seconds=_float(os.getenv("POLLING_INTERVAL_SECONDS", "30"), 30.0),
            store_timeout_seconds=_float(os.getenv("STORE_TIMEOUT_SECONDS", "5"), 5.0),
            store_retry_attempts=_int(os.getenv("STORE_RETRY_ATTEMPTS", "3"), 3),
        )
