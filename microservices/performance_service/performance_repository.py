"""
Performance Service Data Repository

Data access layer - PostgreSQL (Async)

Tables live in the ``performance`` schema. Raw events are append-only
(``ON CONFLICT DO NOTHING``); derived rows are upserted; state changes
(click conversion, alert resolution, test completion, counter increments)
are compare-and-set updates.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import asyncpg

from core.config import InfraConfig
from core.postgres_client import PostgresClientWrapper

from .models import (
    BudgetAction,
    BudgetAllocation,
    CampaignSettings,
    ChannelAggregate,
    ClickEvent,
    ConversionEvent,
    ExperimentStatus,
    ExperimentTest,
    ExperimentVariant,
    FraudAlert,
    FraudAlertType,
    FraudSeverity,
    SourceType,
    SpendRecord,
    TimeRange,
    TrafficChannel,
)
from .protocols import DataUnavailableError

logger = logging.getLogger(__name__)

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _json_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


class PerformanceRepository:
    """Performance service data repository - PostgreSQL (Async)"""

    def __init__(
        self,
        config: Optional[InfraConfig] = None,
        db: Optional[PostgresClientWrapper] = None,
    ):
        self.db = db or PostgresClientWrapper("performance_service", config)
        self.schema = "performance"

        # Table names
        self.clicks_table = "click_events"
        self.conversions_table = "conversion_events"
        self.channels_table = "traffic_channels"
        self.spend_table = "channel_spend"
        self.settings_table = "campaign_settings"
        self.aggregates_table = "channel_aggregates"
        self.alerts_table = "fraud_alerts"
        self.allocations_table = "budget_allocations"
        self.tests_table = "experiment_tests"
        self.variants_table = "experiment_variants"

    def _table(self, name: str) -> str:
        return f"{self.schema}.{name}"

    def _unavailable(self, operation: str, error: Exception) -> DataUnavailableError:
        logger.error(f"Error in {operation}: {error}", exc_info=True)
        return DataUnavailableError(f"{operation} failed: {error}", operation)

    async def initialize(self):
        """Initialize database connection"""
        try:
            await self.db.connect()
        except DRIVER_ERRORS as e:
            raise self._unavailable("initialize", e) from e
        logger.info("Performance repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Performance repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        try:
            async with self.db:
                return await self.db.health_check()
        except DRIVER_ERRORS as e:
            logger.error(f"Health check failed: {e}")
            return False

    # ====================
    # Ingestion
    # ====================

    async def save_click(self, click: ClickEvent) -> bool:
        """Append a click; False when the id already exists"""
        query = f'''
            INSERT INTO {self._table(self.clicks_table)} (
                click_id, link_id, campaign_id, timestamp, ip_address,
                user_agent, referrer_source, device_type, country, converted
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (click_id) DO NOTHING
        '''
        params = [
            click.click_id,
            click.link_id,
            click.campaign_id,
            click.timestamp,
            click.ip_address,
            click.user_agent,
            click.referrer_source,
            click.device_type,
            click.country,
            click.converted,
        ]
        try:
            async with self.db:
                count = await self.db.execute(query, params=params)
            return count == 1
        except DRIVER_ERRORS as e:
            raise self._unavailable("save_click", e) from e

    async def save_conversion(self, conversion: ConversionEvent) -> bool:
        """Append a conversion; False when the id already exists"""
        query = f'''
            INSERT INTO {self._table(self.conversions_table)} (
                conversion_id, link_id, channel_id, campaign_id, timestamp,
                sale_amount, commission_amount
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (conversion_id) DO NOTHING
        '''
        params = [
            conversion.conversion_id,
            conversion.link_id,
            conversion.channel_id,
            conversion.campaign_id,
            conversion.timestamp,
            conversion.sale_amount,
            conversion.commission_amount,
        ]
        try:
            async with self.db:
                count = await self.db.execute(query, params=params)
            return count == 1
        except DRIVER_ERRORS as e:
            raise self._unavailable("save_conversion", e) from e

    async def find_unconverted_click(
        self, link_id: str, since: datetime, until: datetime
    ) -> Optional[ClickEvent]:
        """Latest unconverted click on a link inside [since, until]"""
        query = f'''
            SELECT * FROM {self._table(self.clicks_table)}
            WHERE link_id = $1 AND converted = FALSE
              AND timestamp >= $2 AND timestamp <= $3
            ORDER BY timestamp DESC
            LIMIT 1
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params=[link_id, since, until])
            return self._row_to_click(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("find_unconverted_click", e) from e

    async def mark_click_converted(self, click_id: str) -> bool:
        """Compare-and-set converted; True only for the first marking"""
        query = f'''
            UPDATE {self._table(self.clicks_table)}
            SET converted = TRUE
            WHERE click_id = $1 AND converted = FALSE
        '''
        try:
            async with self.db:
                count = await self.db.execute(query, params=[click_id])
            return count == 1
        except DRIVER_ERRORS as e:
            raise self._unavailable("mark_click_converted", e) from e

    # ====================
    # Snapshot Reads
    # ====================

    def _campaign_links_clause(self, param: str = "$1") -> str:
        return (
            f"(campaign_id = {param} OR link_id IN ("
            f"SELECT jsonb_array_elements_text(link_ids) "
            f"FROM {self._table(self.channels_table)} WHERE campaign_id = {param}))"
        )

    async def list_clicks(self, campaign_id: str, window: TimeRange) -> List[ClickEvent]:
        query = f'''
            SELECT * FROM {self._table(self.clicks_table)}
            WHERE {self._campaign_links_clause()}
              AND timestamp >= $2 AND timestamp < $3
            ORDER BY timestamp, click_id
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=[campaign_id, window.start, window.end])
            return [self._row_to_click(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_clicks", e) from e

    async def list_conversions(self, campaign_id: str, window: TimeRange) -> List[ConversionEvent]:
        query = f'''
            SELECT * FROM {self._table(self.conversions_table)}
            WHERE {self._campaign_links_clause()}
              AND timestamp >= $2 AND timestamp < $3
            ORDER BY timestamp, conversion_id
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=[campaign_id, window.start, window.end])
            return [self._row_to_conversion(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_conversions", e) from e

    async def list_channels(self, campaign_id: str) -> List[TrafficChannel]:
        query = f'''
            SELECT * FROM {self._table(self.channels_table)}
            WHERE campaign_id = $1
            ORDER BY channel_id
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=[campaign_id])
            return [self._row_to_channel(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_channels", e) from e

    async def list_spend(self, campaign_id: str, window: TimeRange) -> List[SpendRecord]:
        query = f'''
            SELECT * FROM {self._table(self.spend_table)}
            WHERE campaign_id = $1 AND spend_date >= $2 AND spend_date <= $3
            ORDER BY spend_date, channel_id
        '''
        params = [campaign_id, window.start.date(), window.end.date()]
        try:
            async with self.db:
                rows = await self.db.query(query, params=params)
            return [
                SpendRecord(
                    channel_id=row["channel_id"],
                    campaign_id=row["campaign_id"],
                    spend_date=row["spend_date"],
                    amount=Decimal(str(row.get("amount") or 0)),
                )
                for row in rows
            ]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_spend", e) from e

    async def get_campaign_settings(self, campaign_id: str) -> Optional[CampaignSettings]:
        query = f'''
            SELECT * FROM {self._table(self.settings_table)}
            WHERE campaign_id = $1
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params=[campaign_id])
            return self._row_to_settings(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("get_campaign_settings", e) from e

    async def list_campaign_ids(self) -> List[str]:
        query = f'''
            SELECT campaign_id FROM {self._table(self.settings_table)}
            ORDER BY campaign_id
        '''
        try:
            async with self.db:
                rows = await self.db.query(query)
            return [row["campaign_id"] for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_campaign_ids", e) from e

    # ====================
    # Aggregates
    # ====================

    async def save_channel_aggregates(
        self,
        campaign_id: str,
        aggregates: List[ChannelAggregate],
        window: Optional[TimeRange] = None,
    ) -> None:
        """
        Replace the campaign's rows for the window and upsert the new ones.

        Rows overlapping ``window`` that the recomputation no longer
        produces are deleted in the same transaction as the upserts.
        """
        upsert = f'''
            INSERT INTO {self._table(self.aggregates_table)} (
                channel_id, campaign_id, period_start, period_end,
                clicks, conversions, revenue, spend, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (channel_id, period_start) DO UPDATE SET
                campaign_id = EXCLUDED.campaign_id,
                period_end = EXCLUDED.period_end,
                clicks = EXCLUDED.clicks,
                conversions = EXCLUDED.conversions,
                revenue = EXCLUDED.revenue,
                spend = EXCLUDED.spend,
                updated_at = EXCLUDED.updated_at
        '''
        now = datetime.now(timezone.utc)
        operations = []
        if window is not None:
            operations.append({
                "sql": f'''
                    DELETE FROM {self._table(self.aggregates_table)}
                    WHERE campaign_id = $1 AND period_start < $3 AND period_end > $2
                ''',
                "params": [campaign_id, window.start, window.end],
            })
        for row in aggregates:
            operations.append({
                "sql": upsert,
                "params": [
                    row.channel_id,
                    campaign_id,
                    row.period_start,
                    row.period_end,
                    row.clicks,
                    row.conversions,
                    row.revenue,
                    row.spend,
                    now,
                ],
            })
        if not operations:
            return
        try:
            async with self.db:
                await self.db.execute_batch(operations)
        except DRIVER_ERRORS as e:
            raise self._unavailable("save_channel_aggregates", e) from e

    # ====================
    # Fraud Alerts
    # ====================

    async def list_unresolved_alerts(self, campaign_id: str) -> List[FraudAlert]:
        return await self.list_alerts(campaign_id, include_resolved=False)

    async def list_alerts(self, campaign_id: str, include_resolved: bool = False) -> List[FraudAlert]:
        resolved_clause = "" if include_resolved else "AND resolved = FALSE"
        query = f'''
            SELECT * FROM {self._table(self.alerts_table)}
            WHERE campaign_id = $1 {resolved_clause}
            ORDER BY created_at DESC, source_key
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=[campaign_id])
            return [self._row_to_alert(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_alerts", e) from e

    async def upsert_alert(self, alert: FraudAlert) -> FraudAlert:
        """Insert, or refresh the open alert for (campaign_id, source_key)"""
        query = f'''
            INSERT INTO {self._table(self.alerts_table)} (
                alert_id, campaign_id, source_key, source_type, alert_type,
                severity, click_count, estimated_loss, details,
                recommended_action, created_at, updated_at, resolved, resolved_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            ON CONFLICT (campaign_id, source_key) WHERE resolved = FALSE DO UPDATE SET
                severity = EXCLUDED.severity,
                click_count = EXCLUDED.click_count,
                estimated_loss = EXCLUDED.estimated_loss,
                details = EXCLUDED.details,
                updated_at = EXCLUDED.updated_at
            RETURNING *
        '''
        params = [
            alert.alert_id,
            alert.campaign_id,
            alert.source_key,
            alert.source_type.value,
            alert.alert_type.value,
            alert.severity.value,
            alert.click_count,
            alert.estimated_loss,
            alert.details,
            alert.recommended_action,
            alert.created_at,
            alert.updated_at,
            alert.resolved,
            alert.resolved_at,
        ]
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params)
            return self._row_to_alert(row) if row else alert
        except DRIVER_ERRORS as e:
            raise self._unavailable("upsert_alert", e) from e

    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        query = f'''
            SELECT * FROM {self._table(self.alerts_table)}
            WHERE alert_id = $1
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params=[alert_id])
            return self._row_to_alert(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("get_alert", e) from e

    async def resolve_alert(self, alert_id: str) -> Optional[FraudAlert]:
        """Compare-and-set resolved; None if missing or already resolved"""
        query = f'''
            UPDATE {self._table(self.alerts_table)}
            SET resolved = TRUE, resolved_at = $2, updated_at = $2
            WHERE alert_id = $1 AND resolved = FALSE
            RETURNING *
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params=[alert_id, datetime.now(timezone.utc)])
            return self._row_to_alert(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("resolve_alert", e) from e

    # ====================
    # Budget Allocations
    # ====================

    async def save_allocations(
        self, campaign_id: str, cycle_id: str, allocations: List[BudgetAllocation]
    ) -> None:
        """Upsert one row per (campaign_id, cycle_id, channel_id); older cycles are kept"""
        query = f'''
            INSERT INTO {self._table(self.allocations_table)} (
                campaign_id, cycle_id, channel_id, previous_budget,
                recommended_budget, rank, roi, weight, action, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (campaign_id, cycle_id, channel_id) DO UPDATE SET
                previous_budget = EXCLUDED.previous_budget,
                recommended_budget = EXCLUDED.recommended_budget,
                rank = EXCLUDED.rank,
                roi = EXCLUDED.roi,
                weight = EXCLUDED.weight,
                action = EXCLUDED.action
        '''
        try:
            async with self.db:
                for allocation in allocations:
                    await self.db.execute(query, params=[
                        campaign_id,
                        cycle_id,
                        allocation.channel_id,
                        allocation.previous_budget,
                        allocation.recommended_budget,
                        allocation.rank,
                        allocation.roi,
                        allocation.weight,
                        allocation.action.value,
                        allocation.created_at,
                    ])
        except DRIVER_ERRORS as e:
            raise self._unavailable("save_allocations", e) from e

    async def get_latest_allocations(self, campaign_id: str) -> List[BudgetAllocation]:
        table = self._table(self.allocations_table)
        query = f'''
            SELECT * FROM {table}
            WHERE campaign_id = $1 AND cycle_id = (
                SELECT cycle_id FROM {table}
                WHERE campaign_id = $1
                ORDER BY created_at DESC
                LIMIT 1
            )
            ORDER BY rank
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=[campaign_id])
            return [self._row_to_allocation(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("get_latest_allocations", e) from e

    # ====================
    # Experiments
    # ====================

    async def save_test(self, test: ExperimentTest) -> ExperimentTest:
        query = f'''
            INSERT INTO {self._table(self.tests_table)} (
                test_id, campaign_id, name, status, winner_variant_id,
                confidence, recommendations, created_at, completed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (test_id) DO NOTHING
            RETURNING *
        '''
        params = [
            test.test_id,
            test.campaign_id,
            test.name,
            test.status.value,
            test.winner_variant_id,
            test.confidence,
            json.dumps(test.recommendations),
            test.created_at,
            test.completed_at,
        ]
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params)
            return self._row_to_test(row) if row else test
        except DRIVER_ERRORS as e:
            raise self._unavailable("save_test", e) from e

    async def get_test(self, test_id: str) -> Optional[ExperimentTest]:
        query = f'''
            SELECT * FROM {self._table(self.tests_table)}
            WHERE test_id = $1
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params=[test_id])
            return self._row_to_test(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("get_test", e) from e

    async def list_tests(
        self, campaign_id: str, status: Optional[ExperimentStatus] = None
    ) -> List[ExperimentTest]:
        conditions = ["campaign_id = $1"]
        params: List[Any] = [campaign_id]
        if status:
            conditions.append("status = $2")
            params.append(status.value)
        query = f'''
            SELECT * FROM {self._table(self.tests_table)}
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=params)
            return [self._row_to_test(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("list_tests", e) from e

    async def save_variant(self, variant: ExperimentVariant) -> ExperimentVariant:
        query = f'''
            INSERT INTO {self._table(self.variants_table)} (
                variant_id, test_id, name, is_control, visitors, conversions
            ) VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (variant_id) DO NOTHING
            RETURNING *
        '''
        params = [
            variant.variant_id,
            variant.test_id,
            variant.name,
            variant.is_control,
            variant.visitors,
            variant.conversions,
        ]
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params)
            return self._row_to_variant(row) if row else variant
        except DRIVER_ERRORS as e:
            raise self._unavailable("save_variant", e) from e

    async def get_variants(self, test_id: str) -> List[ExperimentVariant]:
        query = f'''
            SELECT * FROM {self._table(self.variants_table)}
            WHERE test_id = $1
            ORDER BY is_control DESC, variant_id
        '''
        try:
            async with self.db:
                rows = await self.db.query(query, params=[test_id])
            return [self._row_to_variant(row) for row in rows]
        except DRIVER_ERRORS as e:
            raise self._unavailable("get_variants", e) from e

    async def increment_variant(
        self, test_id: str, variant_id: str, visitors: int = 0, conversions: int = 0
    ) -> Optional[ExperimentVariant]:
        """Add to the counters while the test is running and conversions stay within visitors"""
        query = f'''
            UPDATE {self._table(self.variants_table)} AS v
            SET visitors = v.visitors + $3, conversions = v.conversions + $4
            FROM {self._table(self.tests_table)} AS t
            WHERE v.test_id = $1 AND v.variant_id = $2
              AND t.test_id = v.test_id AND t.status = $5
              AND v.conversions + $4 <= v.visitors + $3
            RETURNING v.*
        '''
        params = [test_id, variant_id, visitors, conversions, ExperimentStatus.RUNNING.value]
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params)
            return self._row_to_variant(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("increment_variant", e) from e

    async def complete_test(
        self,
        test_id: str,
        winner_variant_id: Optional[str],
        confidence: float,
        recommendations: List[str],
    ) -> Optional[ExperimentTest]:
        """running -> completed, compare-and-set on status"""
        query = f'''
            UPDATE {self._table(self.tests_table)}
            SET status = $2, winner_variant_id = $3, confidence = $4,
                recommendations = $5, completed_at = $6
            WHERE test_id = $1 AND status = $7
            RETURNING *
        '''
        params = [
            test_id,
            ExperimentStatus.COMPLETED.value,
            winner_variant_id,
            confidence,
            json.dumps(recommendations),
            datetime.now(timezone.utc),
            ExperimentStatus.RUNNING.value,
        ]
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params)
            return self._row_to_test(row) if row else None
        except DRIVER_ERRORS as e:
            raise self._unavailable("complete_test", e) from e

    # ====================
    # Row Mapping
    # ====================

    def _row_to_click(self, row: Dict[str, Any]) -> ClickEvent:
        """Convert database row to ClickEvent model"""
        return ClickEvent(
            click_id=row["click_id"],
            link_id=row["link_id"],
            campaign_id=row.get("campaign_id"),
            timestamp=row["timestamp"],
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            referrer_source=row.get("referrer_source"),
            device_type=row.get("device_type"),
            country=row.get("country"),
            converted=bool(row.get("converted")),
        )

    def _row_to_conversion(self, row: Dict[str, Any]) -> ConversionEvent:
        """Convert database row to ConversionEvent model"""
        return ConversionEvent(
            conversion_id=row["conversion_id"],
            link_id=row["link_id"],
            channel_id=row.get("channel_id"),
            campaign_id=row.get("campaign_id"),
            timestamp=row["timestamp"],
            sale_amount=Decimal(str(row.get("sale_amount") or 0)),
            commission_amount=Decimal(str(row.get("commission_amount") or 0)),
        )

    def _row_to_channel(self, row: Dict[str, Any]) -> TrafficChannel:
        return TrafficChannel(
            channel_id=row["channel_id"],
            campaign_id=row["campaign_id"],
            name=row.get("name") or row["channel_id"],
            link_ids=_json_list(row.get("link_ids")),
            current_budget=Decimal(str(row.get("current_budget") or 0)),
        )

    def _row_to_settings(self, row: Dict[str, Any]) -> CampaignSettings:
        """Convert database row to CampaignSettings; NULL overrides fall back to engine defaults"""
        signatures = row.get("bot_signatures")
        return CampaignSettings(
            campaign_id=row["campaign_id"],
            total_budget=row.get("total_budget"),
            budget_ceiling=row.get("budget_ceiling"),
            spent_so_far=Decimal(str(row.get("spent_so_far") or 0)),
            start_date=row.get("start_date"),
            end_date=row.get("end_date"),
            fraud_click_threshold=row.get("fraud_click_threshold"),
            fraud_cost_per_click=row.get("fraud_cost_per_click"),
            bot_signatures=_json_list(signatures) if signatures is not None else None,
            scale_roi_threshold=row.get("scale_roi_threshold"),
            scale_factor=row.get("scale_factor"),
            pause_min_spend=row.get("pause_min_spend"),
            pause_roi_threshold=row.get("pause_roi_threshold"),
            confidence_threshold=row.get("confidence_threshold"),
            polling_interval_seconds=row.get("polling_interval_seconds"),
        )

    def _row_to_alert(self, row: Dict[str, Any]) -> FraudAlert:
        """Convert database row to FraudAlert model"""
        return FraudAlert(
            alert_id=row["alert_id"],
            campaign_id=row["campaign_id"],
            source_key=row["source_key"],
            source_type=SourceType(row.get("source_type") or SourceType.IP.value),
            alert_type=FraudAlertType(row.get("alert_type") or FraudAlertType.CLICK_FRAUD.value),
            severity=FraudSeverity(row["severity"]),
            click_count=row.get("click_count") or 0,
            estimated_loss=Decimal(str(row.get("estimated_loss") or 0)),
            details=row.get("details") or "",
            recommended_action=row.get("recommended_action") or "",
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            resolved=bool(row.get("resolved")),
            resolved_at=row.get("resolved_at"),
        )

    def _row_to_allocation(self, row: Dict[str, Any]) -> BudgetAllocation:
        return BudgetAllocation(
            channel_id=row["channel_id"],
            campaign_id=row["campaign_id"],
            previous_budget=Decimal(str(row.get("previous_budget") or 0)),
            recommended_budget=Decimal(str(row.get("recommended_budget") or 0)),
            rank=row["rank"],
            roi=float(row.get("roi") or 0),
            weight=row.get("weight") or 1,
            action=BudgetAction(row.get("action") or BudgetAction.MAINTAIN.value),
            cycle_id=row.get("cycle_id"),
            created_at=row["created_at"],
        )

    def _row_to_test(self, row: Dict[str, Any]) -> ExperimentTest:
        """Convert database row to ExperimentTest model"""
        return ExperimentTest(
            test_id=row["test_id"],
            campaign_id=row["campaign_id"],
            name=row["name"],
            status=ExperimentStatus(row["status"]),
            winner_variant_id=row.get("winner_variant_id"),
            confidence=float(row.get("confidence") or 0),
            recommendations=_json_list(row.get("recommendations")),
            created_at=row["created_at"],
            completed_at=row.get("completed_at"),
        )

    def _row_to_variant(self, row: Dict[str, Any]) -> ExperimentVariant:
        return ExperimentVariant(
            variant_id=row["variant_id"],
            test_id=row["test_id"],
            name=row.get("name") or "",
            is_control=bool(row.get("is_control")),
            visitors=row.get("visitors") or 0,
            conversions=row.get("conversions") or 0,
        )


__all__ = ["PerformanceRepository"]
