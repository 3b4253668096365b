"""
Performance Service Data Models

Canonical data structures for the campaign performance and optimization
engine: raw events, derived aggregates, fraud alerts, attribution,
budget allocations, experiments, insights and cycle reports.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class AttributionModel(str, Enum):
    """Conversion attribution models"""
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    TIME_DECAY = "time_decay"
    POSITION_BASED = "position_based"


class FraudSeverity(str, Enum):
    """Fraud alert severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudAlertType(str, Enum):
    """Kind of suspicious traffic"""
    CLICK_FRAUD = "click_fraud"
    CONVERSION_FRAUD = "conversion_fraud"
    BOT_TRAFFIC = "bot_traffic"
    INVALID_TRAFFIC = "invalid_traffic"


class SourceType(str, Enum):
    """What an alert's source key identifies"""
    IP = "ip"
    USER_AGENT = "user_agent"


class BudgetAction(str, Enum):
    """Outcome of an optimization cycle for a channel"""
    SCALE = "scale"
    MAINTAIN = "maintain"
    PAUSE = "pause"


class PacingStatus(str, Enum):
    """Spend pacing classification"""
    ON_TRACK = "on_track"
    OVERSPENDING = "overspending"
    UNDERSPENDING = "underspending"


class ExperimentStatus(str, Enum):
    """A/B test lifecycle status"""
    RUNNING = "running"
    COMPLETED = "completed"


class ConfidenceMethod(str, Enum):
    """How a z-score is turned into a confidence percentage"""
    NORMAL = "normal"
    APPROXIMATE = "approximate"


class CycleStatus(str, Enum):
    """Outcome of one optimization cycle"""
    COMPLETED = "completed"
    DEGRADED = "degraded"
    CONFIG_ERROR = "config_error"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"


class InsightCategory(str, Enum):
    """Source component of an insight"""
    FRAUD = "fraud"
    BUDGET = "budget"
    PACING = "pacing"
    EXPERIMENT = "experiment"
    DATA_QUALITY = "data_quality"


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
    }


class TimeRange(BaseContract):
    """Half-open time window [start, end)"""
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "TimeRange":
        end = now or _utcnow()
        return cls(start=end - timedelta(days=days), end=end)


# =============================================================================
# RAW EVENTS
# =============================================================================

class ClickEvent(BaseContract):
    """Single click on a tracked link. Immutable apart from ``converted``."""
    click_id: str = Field(default_factory=lambda: f"clk_{uuid4().hex[:16]}")
    link_id: str
    campaign_id: Optional[str] = None
    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer_source: Optional[str] = None
    device_type: Optional[str] = None
    country: Optional[str] = None
    converted: bool = False


class ConversionEvent(BaseContract):
    """Commercial transaction credited to a link"""
    conversion_id: str = Field(default_factory=lambda: f"cnv_{uuid4().hex[:16]}")
    link_id: str
    channel_id: Optional[str] = None
    campaign_id: Optional[str] = None
    timestamp: datetime
    sale_amount: Decimal = Field(default=Decimal("0"), ge=0)
    commission_amount: Decimal = Field(default=Decimal("0"), ge=0)


# =============================================================================
# CHANNEL METADATA
# =============================================================================

class TrafficChannel(BaseContract):
    """Acquisition channel and the tracked links that belong to it"""
    channel_id: str
    campaign_id: str
    name: str
    link_ids: List[str] = Field(default_factory=list)
    current_budget: Decimal = Field(default=Decimal("0"), ge=0)


class SpendRecord(BaseContract):
    """Spend booked against a channel for one day"""
    channel_id: str
    campaign_id: str
    spend_date: date
    amount: Decimal = Field(default=Decimal("0"), ge=0)


class CampaignSettings(BaseContract):
    """Per-campaign budget and threshold configuration"""
    campaign_id: str
    total_budget: Optional[Decimal] = None
    budget_ceiling: Optional[Decimal] = None
    spent_so_far: Decimal = Field(default=Decimal("0"))
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    # Overrides of the engine defaults
    fraud_click_threshold: Optional[int] = None
    fraud_cost_per_click: Optional[Decimal] = None
    bot_signatures: Optional[List[str]] = None
    scale_roi_threshold: Optional[float] = None
    scale_factor: Optional[float] = None
    pause_min_spend: Optional[Decimal] = None
    pause_roi_threshold: Optional[float] = None
    confidence_threshold: Optional[float] = None
    polling_interval_seconds: Optional[float] = None

    @property
    def effective_ceiling(self) -> Optional[Decimal]:
        return self.budget_ceiling if self.budget_ceiling is not None else self.total_budget


# =============================================================================
# AGGREGATION
# =============================================================================

class ChannelAggregate(BaseContract):
    """Counters for one channel over one period. Derived from events."""
    channel_id: str
    campaign_id: str
    period_start: datetime
    period_end: datetime
    clicks: int = Field(default=0, ge=0)
    conversions: int = Field(default=0, ge=0)
    revenue: Decimal = Field(default=Decimal("0"))
    spend: Decimal = Field(default=Decimal("0"))


class AggregationResult(BaseContract):
    """Aggregates plus the tally of events that could not be attributed to a channel"""
    campaign_id: str
    window: TimeRange
    aggregates: List[ChannelAggregate] = Field(default_factory=list)
    skipped: int = 0
    warnings: List[str] = Field(default_factory=list)


# =============================================================================
# FRAUD
# =============================================================================

class FraudAlert(BaseContract):
    """Suspicious traffic source. Only ``resolved`` changes after creation."""
    alert_id: str = Field(default_factory=lambda: f"frd_{uuid4().hex[:16]}")
    campaign_id: str
    source_key: str
    source_type: SourceType = SourceType.IP
    alert_type: FraudAlertType = FraudAlertType.CLICK_FRAUD
    severity: FraudSeverity
    click_count: int = 0
    estimated_loss: Decimal = Field(default=Decimal("0"))
    details: str = ""
    recommended_action: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class BotTrafficMetrics(BaseContract):
    """User-agent based bot classification tally"""
    bot_clicks: int = 0
    human_clicks: int = 0
    bot_percentage: float = 0.0


class FraudDetectionResult(BaseContract):
    """Alerts raised or refreshed in one detection run"""
    campaign_id: str
    alerts: List[FraudAlert] = Field(default_factory=list)
    total_clicks: int = 0
    total_loss: Decimal = Field(default=Decimal("0"))
    fraud_rate: float = 0.0
    bot_metrics: BotTrafficMetrics = Field(default_factory=BotTrafficMetrics)


# =============================================================================
# ATTRIBUTION
# =============================================================================

class AttributionResult(BaseContract):
    """Credit assigned to one channel under one model"""
    channel_id: str
    model: AttributionModel
    credit_share: float = Field(default=0.0, ge=0, le=1)


class AttributionReport(BaseContract):
    """Credit shares for every channel under one model"""
    model: AttributionModel
    results: List[AttributionResult] = Field(default_factory=list)
    recommended_model: AttributionModel = AttributionModel.TIME_DECAY
    insufficient_data: bool = False


# =============================================================================
# BUDGET
# =============================================================================

class BudgetAllocation(BaseContract):
    """Recommended budget for a channel in one optimization cycle"""
    channel_id: str
    campaign_id: str
    previous_budget: Decimal = Field(default=Decimal("0"))
    recommended_budget: Decimal = Field(default=Decimal("0"))
    rank: int
    roi: float = 0.0
    weight: int = 1
    action: BudgetAction = BudgetAction.MAINTAIN
    cycle_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class PacingReport(BaseContract):
    """Actual spend rate against the ideal daily spend"""
    status: PacingStatus
    ideal_daily_budget: Decimal
    current_pace: Decimal
    variance_pct: float = 0.0
    days_elapsed: int = 1
    days_remaining: int = 1
    recommendations: List[str] = Field(default_factory=list)


# =============================================================================
# EXPERIMENTS
# =============================================================================

class ExperimentTest(BaseContract):
    """A/B test. running -> completed is one-way."""
    test_id: str = Field(default_factory=lambda: f"tst_{uuid4().hex[:16]}")
    campaign_id: str
    name: str = Field(..., min_length=1, max_length=255)
    status: ExperimentStatus = ExperimentStatus.RUNNING
    winner_variant_id: Optional[str] = None
    confidence: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class ExperimentVariant(BaseContract):
    """Test arm with monotonically non-decreasing counters"""
    variant_id: str = Field(default_factory=lambda: f"var_{uuid4().hex[:16]}")
    test_id: str
    name: str = ""
    is_control: bool = False
    visitors: int = Field(default=0, ge=0)
    conversions: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_counts(self):
        if self.conversions > self.visitors:
            raise ValueError("conversions cannot exceed visitors")
        return self

    @property
    def conversion_rate(self) -> float:
        return self.conversions / self.visitors if self.visitors > 0 else 0.0


class VariantComparison(BaseContract):
    """Two-proportion z-test of one variant against the control"""
    variant_id: str
    conversion_rate: float
    lift: float
    z_score: float
    confidence: float
    p_value: Optional[float] = None
    qualifies: bool = False


class ExperimentResult(BaseContract):
    """Winner (if any) and confidence for a test"""
    test_id: str
    control_variant_id: Optional[str] = None
    winner_variant_id: Optional[str] = None
    winner: Optional[ExperimentVariant] = None
    confidence: float = 0.0
    lift: Optional[float] = None
    comparisons: List[VariantComparison] = Field(default_factory=list)
    insufficient_data: bool = False


# =============================================================================
# INSIGHTS AND CYCLES
# =============================================================================

class Insight(BaseContract):
    """Ranked human-readable recommendation"""
    title: str
    description: str
    impact_score: float
    action: str
    category: InsightCategory


class CycleReport(BaseContract):
    """Everything one optimization cycle produced for a campaign"""
    cycle_id: str = Field(default_factory=lambda: f"cyc_{uuid4().hex[:16]}")
    campaign_id: str
    status: CycleStatus = CycleStatus.COMPLETED
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    window: Optional[TimeRange] = None
    aggregates: List[ChannelAggregate] = Field(default_factory=list)
    fraud: Optional[FraudDetectionResult] = None
    attribution: Optional[AttributionReport] = None
    allocations: List[BudgetAllocation] = Field(default_factory=list)
    experiments: List[ExperimentResult] = Field(default_factory=list)
    pacing: Optional[PacingReport] = None
    insights: List[Insight] = Field(default_factory=list)
    skipped: int = 0
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class VariantCreateRequest(BaseContract):
    """Variant definition when creating a test"""
    name: str = Field(..., min_length=1, max_length=100)
    is_control: bool = False


class ExperimentCreateRequest(BaseContract):
    """Request to start an A/B test"""
    campaign_id: str
    name: str = Field(..., min_length=1, max_length=255)
    variants: List[VariantCreateRequest] = Field(..., min_length=2)


class CounterIncrementRequest(BaseContract):
    """Visitor or conversion increment for a variant"""
    count: int = Field(default=1, ge=1)


class CycleRequest(BaseContract):
    """Optional explicit window for a manually triggered cycle"""
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    @field_validator("window_end")
    @classmethod
    def validate_window_end(cls, v, info):
        start = info.data.get("window_start")
        if v is not None and start is not None and v < start:
            raise ValueError("window_end must not be before window_start")
        return v


class ExperimentDetailResponse(BaseContract):
    """A test with its variants"""
    test: ExperimentTest
    variants: List[ExperimentVariant] = Field(default_factory=list)


class ExperimentStopResponse(BaseContract):
    """Completed test and the evaluation that completed it"""
    test: ExperimentTest
    result: ExperimentResult


class IngestResponse(BaseContract):
    """Result of an idempotent ingestion call"""
    id: str
    inserted: bool
    marked_click_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


__all__ = [
    # Enums
    "AttributionModel",
    "FraudSeverity",
    "FraudAlertType",
    "SourceType",
    "BudgetAction",
    "PacingStatus",
    "ExperimentStatus",
    "ConfidenceMethod",
    "CycleStatus",
    "InsightCategory",
    # Core
    "TimeRange",
    "ClickEvent",
    "ConversionEvent",
    "TrafficChannel",
    "SpendRecord",
    "CampaignSettings",
    "ChannelAggregate",
    "AggregationResult",
    "FraudAlert",
    "BotTrafficMetrics",
    "FraudDetectionResult",
    "AttributionResult",
    "AttributionReport",
    "BudgetAllocation",
    "PacingReport",
    "ExperimentTest",
    "ExperimentVariant",
    "VariantComparison",
    "ExperimentResult",
    "Insight",
    "CycleReport",
    # Request/Response
    "VariantCreateRequest",
    "ExperimentCreateRequest",
    "CounterIncrementRequest",
    "CycleRequest",
    "ExperimentDetailResponse",
    "ExperimentStopResponse",
    "IngestResponse",
    "HealthResponse",
]
