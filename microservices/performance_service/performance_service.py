"""
Performance Service Business Logic

Implements event ingestion, the optimization cycle (aggregation, fraud
detection, attribution, budget reallocation, experiment evaluation, pacing
and insights), fraud alert resolution and the A/B test lifecycle.
"""

import asyncio
import dataclasses
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import EngineConfig

from .aggregator import Aggregator
from .attribution_engine import AttributionEngine
from .budget_optimizer import BudgetOptimizer
from .events.publishers import PerformanceEventPublisher
from .experiment_evaluator import ExperimentEvaluator
from .fraud_detector import FraudDetector
from .insight_synthesizer import InsightSynthesizer
from .models import (
    AttributionModel,
    AttributionReport,
    CampaignSettings,
    ChannelAggregate,
    ClickEvent,
    ConfidenceMethod,
    ConversionEvent,
    CycleReport,
    CycleStatus,
    ExperimentCreateRequest,
    ExperimentResult,
    ExperimentStatus,
    ExperimentTest,
    ExperimentVariant,
    FraudAlert,
    IngestResponse,
    PacingReport,
    TimeRange,
)
from .protocols import (
    AlertNotFoundError,
    ConcurrentModificationError,
    ConfigurationError,
    DataUnavailableError,
    EventBusProtocol,
    ExperimentNotFoundError,
    ExperimentValidationError,
    InvalidExperimentStateError,
    PerformanceRepositoryProtocol,
)

logger = logging.getLogger(__name__)

# Settings fields that override the EngineConfig attribute of the same name
OVERRIDABLE_FIELDS = (
    "fraud_click_threshold",
    "fraud_cost_per_click",
    "bot_signatures",
    "scale_roi_threshold",
    "scale_factor",
    "pause_min_spend",
    "pause_roi_threshold",
    "confidence_threshold",
    "polling_interval_seconds",
)


class PerformanceService:
    """Performance service business logic layer"""

    MAX_ATTRIBUTION_WINDOW_DAYS = 30
    MAX_VARIANTS = 5

    def __init__(
        self,
        repository: PerformanceRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[EngineConfig] = None,
        retry_wait=None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.event_publisher = PerformanceEventPublisher(event_bus)
        self.config = config or EngineConfig()
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self.aggregator = Aggregator()
        self.attribution_engine = AttributionEngine()
        self._in_flight: Set[str] = set()

    # ====================
    # Store Access
    # ====================

    async def _call_store(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run one repository call under the store timeout.

        Timeouts surface as DataUnavailableError and, like driver failures
        the repository already maps to DataUnavailableError, are retried
        with exponential backoff before being re-raised.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.store_retry_attempts)),
            wait=self.retry_wait,
            retry=retry_if_exception_type(DataUnavailableError),
            reraise=True,
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(call(), timeout=self.config.store_timeout_seconds)
                except asyncio.TimeoutError as e:
                    logger.error(f"Store call {operation} timed out")
                    raise DataUnavailableError(
                        f"{operation} exceeded {self.config.store_timeout_seconds}s", operation
                    ) from e

    async def _try_store(
        self,
        report: CycleReport,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        default: Any = None,
    ) -> Tuple[bool, Any]:
        """Store call inside a cycle: failure becomes a degraded-cycle warning"""
        try:
            return True, await self._call_store(operation, call)
        except DataUnavailableError as e:
            logger.error(
                f"Cycle {report.cycle_id} for campaign {report.campaign_id}: {operation} failed: {e}",
                exc_info=True,
            )
            report.warnings.append(f"{operation} unavailable: {e}")
            report.status = CycleStatus.DEGRADED
            return False, default

    # ====================
    # Configuration
    # ====================

    def effective_config(self, settings: Optional[CampaignSettings]) -> EngineConfig:
        """Merge campaign overrides into the engine defaults and validate"""
        if settings is None:
            raise ConfigurationError("Campaign settings not found", "campaign_id")
        if settings.total_budget is None:
            raise ConfigurationError("Total budget is required", "total_budget")
        if settings.total_budget <= 0:
            raise ConfigurationError("Total budget must be positive", "total_budget")
        if settings.budget_ceiling is not None and settings.budget_ceiling < settings.total_budget:
            raise ConfigurationError(
                "Budget ceiling cannot be below the total budget", "budget_ceiling"
            )

        overrides = {
            name: getattr(settings, name)
            for name in OVERRIDABLE_FIELDS
            if getattr(settings, name) is not None
        }
        config = dataclasses.replace(self.config, **overrides)
        self._validate_config(config)
        return config

    def _validate_config(self, config: EngineConfig) -> None:
        if config.fraud_click_threshold < 1:
            raise ConfigurationError("Click threshold must be at least 1", "fraud_click_threshold")
        if config.fraud_critical_threshold < config.fraud_click_threshold:
            raise ConfigurationError(
                "Critical threshold cannot be below the click threshold", "fraud_critical_threshold"
            )
        if config.fraud_cost_per_click < 0:
            raise ConfigurationError("Cost per click cannot be negative", "fraud_cost_per_click")
        if config.scale_factor < 1:
            raise ConfigurationError("Scale factor must be at least 1", "scale_factor")
        if config.pause_min_spend < 0:
            raise ConfigurationError("Pause minimum spend cannot be negative", "pause_min_spend")
        if not 0 < config.confidence_threshold < 100:
            raise ConfigurationError(
                "Confidence threshold must be between 0 and 100", "confidence_threshold"
            )
        if config.confidence_method not in [m.value for m in ConfidenceMethod]:
            raise ConfigurationError(
                f"Unknown confidence method: {config.confidence_method}", "confidence_method"
            )
        if not 0 <= config.pacing_tolerance < 1:
            raise ConfigurationError("Pacing tolerance must be in [0, 1)", "pacing_tolerance")
        if not 1 <= config.attribution_window_days <= self.MAX_ATTRIBUTION_WINDOW_DAYS:
            raise ConfigurationError(
                f"Attribution window must be 1-{self.MAX_ATTRIBUTION_WINDOW_DAYS} days",
                "attribution_window_days",
            )
        if config.polling_interval_seconds <= 0:
            raise ConfigurationError(
                "Polling interval must be positive", "polling_interval_seconds"
            )

    async def get_campaign_config(self, campaign_id: str) -> Tuple[CampaignSettings, EngineConfig]:
        settings = await self._call_store(
            "get_campaign_settings", lambda: self.repository.get_campaign_settings(campaign_id)
        )
        return settings, self.effective_config(settings)

    # ====================
    # Ingestion
    # ====================

    async def ingest_click(self, click: ClickEvent) -> IngestResponse:
        """Append a click; re-delivery of the same id is a no-op"""
        inserted = await self._call_store("save_click", lambda: self.repository.save_click(click))
        if not inserted:
            logger.debug(f"Click {click.click_id} already ingested")
        return IngestResponse(id=click.click_id, inserted=inserted)

    async def record_conversion(self, conversion: ConversionEvent) -> IngestResponse:
        """
        Append a conversion and mark the click it converts.

        The matched click is the latest unconverted click on the same link
        inside the attribution window before the conversion. Marking is a
        compare-and-set, so a click converts at most once.
        """
        inserted = await self._call_store(
            "save_conversion", lambda: self.repository.save_conversion(conversion)
        )
        if not inserted:
            logger.debug(f"Conversion {conversion.conversion_id} already ingested")
            return IngestResponse(id=conversion.conversion_id, inserted=False)

        until = conversion.timestamp
        since = until - timedelta(days=self.config.attribution_window_days)
        click = await self._call_store(
            "find_unconverted_click",
            lambda: self.repository.find_unconverted_click(conversion.link_id, since, until),
        )

        marked_click_id = None
        if click is not None:
            marked = await self._call_store(
                "mark_click_converted",
                lambda: self.repository.mark_click_converted(click.click_id),
            )
            if marked:
                marked_click_id = click.click_id
                logger.info(
                    f"Conversion {conversion.conversion_id} attributed to click {click.click_id}"
                )

        return IngestResponse(
            id=conversion.conversion_id, inserted=True, marked_click_id=marked_click_id
        )

    # ====================
    # Optimization Cycle
    # ====================

    def is_in_flight(self, campaign_id: str) -> bool:
        return campaign_id in self._in_flight

    async def run_cycle(
        self,
        campaign_id: str,
        window: Optional[TimeRange] = None,
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """
        Run one optimization cycle for a campaign.

        At most one cycle per campaign is in flight; an overlapping call
        raises ConcurrentModificationError before touching the store.
        """
        if campaign_id in self._in_flight:
            logger.warning(f"Cycle already in flight for campaign {campaign_id}; aborting")
            raise ConcurrentModificationError(
                f"A cycle for campaign {campaign_id} is already running", campaign_id
            )

        self._in_flight.add(campaign_id)
        try:
            report = CycleReport(campaign_id=campaign_id)
            await self._run_cycle(report, window, now or datetime.now(timezone.utc))
            report.finished_at = datetime.now(timezone.utc)
            if report.status != CycleStatus.CONFIG_ERROR:
                await self.event_publisher.publish_cycle_completed(report)
            logger.info(
                f"Cycle {report.cycle_id} for campaign {campaign_id} finished: "
                f"status={report.status.value}, rows={len(report.aggregates)}, "
                f"skipped={report.skipped}, alerts={len(report.fraud.alerts) if report.fraud else 0}"
            )
            return report
        finally:
            self._in_flight.discard(campaign_id)

    async def _run_cycle(self, report: CycleReport, window: Optional[TimeRange], now: datetime) -> None:
        campaign_id = report.campaign_id
        repo = self.repository

        ok, settings = await self._try_store(
            report, "get_campaign_settings", lambda: repo.get_campaign_settings(campaign_id)
        )
        if not ok:
            return
        try:
            config = self.effective_config(settings)
        except ConfigurationError as e:
            logger.warning(f"Campaign {campaign_id} skipped: {e} (field={e.field})")
            report.status = CycleStatus.CONFIG_ERROR
            report.error = str(e)
            return

        window = window or TimeRange.last_days(config.aggregation_lookback_days, now)
        report.window = window

        # Snapshot, fetched once per cycle
        snapshot = {}
        for name, call in (
            ("channels", lambda: repo.list_channels(campaign_id)),
            ("clicks", lambda: repo.list_clicks(campaign_id, window)),
            ("conversions", lambda: repo.list_conversions(campaign_id, window)),
            ("spend", lambda: repo.list_spend(campaign_id, window)),
        ):
            ok, snapshot[name] = await self._try_store(report, f"list_{name}", call, [])
            if not ok:
                return

        # Aggregation
        aggregation = self.aggregator.aggregate(
            list(snapshot["clicks"]) + list(snapshot["conversions"]),
            window,
            snapshot["channels"],
            snapshot["spend"],
            campaign_id=campaign_id,
        )
        report.aggregates = aggregation.aggregates
        report.skipped = aggregation.skipped
        report.warnings.extend(aggregation.warnings)
        await self._try_store(
            report,
            "save_channel_aggregates",
            lambda: repo.save_channel_aggregates(campaign_id, aggregation.aggregates, window),
        )

        # Fraud detection
        _, existing = await self._try_store(
            report, "list_unresolved_alerts", lambda: repo.list_unresolved_alerts(campaign_id), []
        )
        detector = FraudDetector.from_config(config)
        report.fraud = detector.detect(snapshot["clicks"], campaign_id, existing, now=now)
        existing_ids = {alert.alert_id for alert in existing}
        persisted_alerts = []
        for alert in report.fraud.alerts:
            saved, stored = await self._try_store(
                report, "upsert_alert", lambda alert=alert: repo.upsert_alert(alert)
            )
            if not saved:
                persisted_alerts.append(alert)
                continue
            persisted_alerts.append(stored)
            # A different id back means the store merged into an open alert
            if stored.alert_id == alert.alert_id and alert.alert_id not in existing_ids:
                await self.event_publisher.publish_alert_raised(stored)
        report.fraud.alerts = persisted_alerts

        # Attribution
        rollup = self._channel_rollup(aggregation.aggregates, snapshot["channels"], window, campaign_id)
        report.attribution = self.attribution_engine.attribute(rollup)

        # Budget reallocation
        optimizer = BudgetOptimizer.from_config(config)
        previous = {c.channel_id: c.current_budget for c in snapshot["channels"]}
        report.allocations = optimizer.optimize(
            rollup,
            settings.total_budget,
            budget_ceiling=settings.effective_ceiling,
            previous_budgets=previous,
            campaign_id=campaign_id,
            cycle_id=report.cycle_id,
        )
        if report.allocations:
            saved, _ = await self._try_store(
                report,
                "save_allocations",
                lambda: repo.save_allocations(campaign_id, report.cycle_id, report.allocations),
            )
            if saved:
                await self.event_publisher.publish_budget_reallocated(
                    campaign_id, report.cycle_id, report.allocations
                )

        # Experiments (report only)
        evaluator = ExperimentEvaluator.from_config(config)
        _, tests = await self._try_store(
            report,
            "list_tests",
            lambda: repo.list_tests(campaign_id, ExperimentStatus.RUNNING),
            [],
        )
        for test in tests:
            ok, variants = await self._try_store(
                report, "get_variants", lambda test=test: repo.get_variants(test.test_id), []
            )
            if ok:
                report.experiments.append(evaluator.evaluate(test, variants))

        # Pacing
        if settings.start_date and settings.end_date:
            report.pacing = self._pacing(optimizer, settings, now.date())

        report.insights = InsightSynthesizer(config.insight_limit).synthesize(
            aggregation=aggregation,
            fraud=report.fraud,
            allocations=report.allocations,
            experiments=report.experiments,
            pacing=report.pacing,
        )

    def _channel_rollup(
        self,
        aggregates: List[ChannelAggregate],
        channels,
        window: TimeRange,
        campaign_id: str,
    ) -> List[ChannelAggregate]:
        """One row per known channel; channels without activity get zero rows"""
        rows = {row.channel_id: row for row in self.aggregator.rollup(aggregates, window)}
        for channel in channels:
            if channel.channel_id not in rows:
                rows[channel.channel_id] = ChannelAggregate(
                    channel_id=channel.channel_id,
                    campaign_id=campaign_id,
                    period_start=window.start,
                    period_end=window.end,
                )
        return [rows[channel_id] for channel_id in sorted(rows)]

    @staticmethod
    def _pacing(optimizer: BudgetOptimizer, settings: CampaignSettings, today: date) -> PacingReport:
        days_elapsed = (today - settings.start_date).days
        days_remaining = (settings.end_date - today).days
        return optimizer.pacing(
            settings.total_budget,
            days_remaining=days_remaining,
            spent_so_far=settings.spent_so_far,
            days_elapsed=days_elapsed,
        )

    # ====================
    # Reporting
    # ====================

    async def get_pacing(self, campaign_id: str, today: Optional[date] = None) -> PacingReport:
        settings, config = await self.get_campaign_config(campaign_id)
        if not settings.start_date or not settings.end_date:
            raise ConfigurationError("Campaign start_date and end_date are required", "end_date")
        today = today or datetime.now(timezone.utc).date()
        return self._pacing(BudgetOptimizer.from_config(config), settings, today)

    async def get_attribution(
        self,
        campaign_id: str,
        model: Optional[AttributionModel] = None,
        window: Optional[TimeRange] = None,
    ) -> AttributionReport:
        repo = self.repository
        window = window or TimeRange.last_days(self.config.aggregation_lookback_days)
        channels = await self._call_store("list_channels", lambda: repo.list_channels(campaign_id))
        clicks = await self._call_store("list_clicks", lambda: repo.list_clicks(campaign_id, window))
        conversions = await self._call_store(
            "list_conversions", lambda: repo.list_conversions(campaign_id, window)
        )
        spend = await self._call_store("list_spend", lambda: repo.list_spend(campaign_id, window))

        aggregation = self.aggregator.aggregate(
            list(clicks) + list(conversions), window, channels, spend, campaign_id=campaign_id
        )
        rollup = self._channel_rollup(aggregation.aggregates, channels, window, campaign_id)
        return self.attribution_engine.attribute(
            rollup, model or AttributionEngine.DEFAULT_MODEL
        )

    async def list_campaign_ids(self) -> List[str]:
        return await self._call_store("list_campaign_ids", self.repository.list_campaign_ids)

    async def get_latest_allocations(self, campaign_id: str):
        return await self._call_store(
            "get_latest_allocations", lambda: self.repository.get_latest_allocations(campaign_id)
        )

    # ====================
    # Fraud Alerts
    # ====================

    async def list_alerts(self, campaign_id: str, include_resolved: bool = False) -> List[FraudAlert]:
        return await self._call_store(
            "list_alerts", lambda: self.repository.list_alerts(campaign_id, include_resolved)
        )

    async def resolve_alert(self, alert_id: str) -> FraudAlert:
        """Mark an alert resolved; resolving twice returns the resolved alert"""
        alert = await self._call_store("get_alert", lambda: self.repository.get_alert(alert_id))
        if not alert:
            raise AlertNotFoundError(f"Fraud alert {alert_id} not found")
        if alert.resolved:
            return alert

        resolved = await self._call_store(
            "resolve_alert", lambda: self.repository.resolve_alert(alert_id)
        )
        if resolved is None:
            # Resolved concurrently
            return await self._call_store("get_alert", lambda: self.repository.get_alert(alert_id))

        logger.info(f"Fraud alert {alert_id} ({resolved.source_key}) resolved")
        await self.event_publisher.publish_alert_resolved(resolved)
        return resolved

    # ====================
    # Experiments
    # ====================

    async def create_test(
        self, request: ExperimentCreateRequest
    ) -> Tuple[ExperimentTest, List[ExperimentVariant]]:
        """Create a running test with exactly one control variant"""
        self._validate_test_request(request)

        test = ExperimentTest(campaign_id=request.campaign_id, name=request.name)
        test = await self._call_store("save_test", lambda: self.repository.save_test(test))

        variants = []
        for variant_request in request.variants:
            variant = ExperimentVariant(
                test_id=test.test_id,
                name=variant_request.name,
                is_control=variant_request.is_control,
            )
            variants.append(
                await self._call_store(
                    "save_variant", lambda variant=variant: self.repository.save_variant(variant)
                )
            )

        logger.info(f"Created test {test.test_id} with {len(variants)} variants")
        return test, variants

    def _validate_test_request(self, request: ExperimentCreateRequest) -> None:
        if len(request.variants) > self.MAX_VARIANTS:
            raise ExperimentValidationError(
                f"Maximum {self.MAX_VARIANTS} variants per test", "variants"
            )
        controls = [v for v in request.variants if v.is_control]
        if len(controls) != 1:
            raise ExperimentValidationError("Exactly one control variant is required", "variants")
        names = [v.name.strip().lower() for v in request.variants]
        if any(not name for name in names):
            raise ExperimentValidationError("Variant names are required", "variants")
        if len(set(names)) != len(names):
            raise ExperimentValidationError("Variant names must be unique", "variants")

    async def get_test(self, test_id: str) -> Tuple[ExperimentTest, List[ExperimentVariant]]:
        test = await self._call_store("get_test", lambda: self.repository.get_test(test_id))
        if not test:
            raise ExperimentNotFoundError(f"Test {test_id} not found")
        variants = await self._call_store("get_variants", lambda: self.repository.get_variants(test_id))
        return test, variants

    async def record_impressions(self, test_id: str, variant_id: str, count: int = 1) -> ExperimentVariant:
        """Add visitors to a variant of a running test"""
        return await self._increment(test_id, variant_id, visitors=count)

    async def record_conversions(self, test_id: str, variant_id: str, count: int = 1) -> ExperimentVariant:
        """Add conversions to a variant of a running test"""
        return await self._increment(test_id, variant_id, conversions=count)

    async def _increment(
        self, test_id: str, variant_id: str, visitors: int = 0, conversions: int = 0
    ) -> ExperimentVariant:
        if visitors < 0 or conversions < 0:
            raise ExperimentValidationError("Counters cannot decrease", "count")

        test, variants = await self.get_test(test_id)
        if test.status != ExperimentStatus.RUNNING:
            raise InvalidExperimentStateError(
                f"Test {test_id} is {test.status.value}; counters are closed", test.status
            )
        variant = next((v for v in variants if v.variant_id == variant_id), None)
        if variant is None:
            raise ExperimentNotFoundError(f"Variant {variant_id} not found in test {test_id}")
        if variant.conversions + conversions > variant.visitors + visitors:
            raise ExperimentValidationError("Conversions cannot exceed visitors", "count")

        updated = await self._call_store(
            "increment_variant",
            lambda: self.repository.increment_variant(test_id, variant_id, visitors, conversions),
        )
        if updated is None:
            # Either the test stopped or a concurrent update used up the visitors
            current = await self._call_store("get_test", lambda: self.repository.get_test(test_id))
            if current is not None and current.status == ExperimentStatus.RUNNING:
                raise ExperimentValidationError("Conversions cannot exceed visitors", "count")
            raise InvalidExperimentStateError(
                f"Test {test_id} stopped before the update was applied", ExperimentStatus.COMPLETED
            )
        return updated

    async def evaluate_test(self, test_id: str) -> ExperimentResult:
        """Current significance without changing the test state"""
        test, variants = await self.get_test(test_id)
        return ExperimentEvaluator.from_config(await self._experiment_config(test)).evaluate(
            test, variants
        )

    async def stop_test(self, test_id: str) -> Tuple[ExperimentTest, ExperimentResult]:
        """
        Evaluate and complete a running test.

        ``running -> completed`` is one-way and applied with compare-and-set,
        so a second stop raises InvalidExperimentStateError.
        """
        test, variants = await self.get_test(test_id)
        if test.status != ExperimentStatus.RUNNING:
            raise InvalidExperimentStateError(f"Test {test_id} is already completed", test.status)

        evaluator = ExperimentEvaluator.from_config(await self._experiment_config(test))
        result = evaluator.evaluate(test, variants)
        recommendations = evaluator.build_recommendations(result)

        completed = await self._call_store(
            "complete_test",
            lambda: self.repository.complete_test(
                test_id, result.winner_variant_id, result.confidence, recommendations
            ),
        )
        if completed is None:
            raise InvalidExperimentStateError(
                f"Test {test_id} was completed concurrently", ExperimentStatus.COMPLETED
            )

        logger.info(
            f"Test {test_id} completed: winner={completed.winner_variant_id}, "
            f"confidence={completed.confidence:.1f}%"
        )
        await self.event_publisher.publish_experiment_completed(completed)
        return completed, result

    async def _experiment_config(self, test: ExperimentTest) -> EngineConfig:
        """Campaign overrides when the campaign is configured, engine defaults otherwise"""
        settings = await self._call_store(
            "get_campaign_settings", lambda: self.repository.get_campaign_settings(test.campaign_id)
        )
        if settings is None or settings.confidence_threshold is None:
            return self.config
        return dataclasses.replace(self.config, confidence_threshold=settings.confidence_threshold)

    # ====================
    # Health
    # ====================

    async def health_check(self) -> Dict[str, Any]:
        try:
            db_ok = await self._call_store("health_check", self.repository.health_check)
        except DataUnavailableError:
            db_ok = False
        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
            "cycles_in_flight": len(self._in_flight),
        }


__all__ = ["PerformanceService"]
