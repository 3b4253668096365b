"""
Fraud Detector

Flags IP addresses with abnormal click volume and measures bot traffic by
user-agent signature. Detection is pure: it takes the click snapshot and the
campaign's open alerts and returns the alerts to upsert.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from core.config import EngineConfig

from .models import (
    BotTrafficMetrics,
    ClickEvent,
    FraudAlert,
    FraudAlertType,
    FraudDetectionResult,
    FraudSeverity,
    SourceType,
)

logger = logging.getLogger(__name__)


class FraudDetector:
    """IP frequency and bot-signature fraud detection"""

    RECOMMENDED_ACTION = "Block IP address and request refund from traffic source"

    def __init__(
        self,
        click_threshold: int = 50,
        critical_threshold: int = 100,
        cost_per_click: Decimal = Decimal("0.50"),
        bot_signatures: Optional[Sequence[str]] = None,
    ):
        self.click_threshold = click_threshold
        self.critical_threshold = critical_threshold
        self.cost_per_click = Decimal(str(cost_per_click))
        self.bot_signatures = [
            s.lower() for s in (bot_signatures or ["bot", "crawler", "spider", "scraper"])
        ]

    @classmethod
    def from_config(cls, config: EngineConfig) -> "FraudDetector":
        return cls(
            click_threshold=config.fraud_click_threshold,
            critical_threshold=config.fraud_critical_threshold,
            cost_per_click=config.fraud_cost_per_click,
            bot_signatures=config.bot_signatures,
        )

    # ====================
    # Classification
    # ====================

    def severity_for(self, click_count: int) -> FraudSeverity:
        return FraudSeverity.CRITICAL if click_count > self.critical_threshold else FraudSeverity.HIGH

    def is_bot(self, user_agent: Optional[str]) -> bool:
        if not user_agent:
            return False
        ua = user_agent.lower()
        return any(signature in ua for signature in self.bot_signatures)

    def bot_metrics(self, clicks: Iterable[ClickEvent]) -> BotTrafficMetrics:
        """Tally bot vs. human clicks; produces a metric, never an alert"""
        bot = human = 0
        for click in clicks:
            if self.is_bot(click.user_agent):
                bot += 1
            else:
                human += 1
        total = bot + human
        return BotTrafficMetrics(
            bot_clicks=bot,
            human_clicks=human,
            bot_percentage=(bot / total) * 100 if total > 0 else 0.0,
        )

    # ====================
    # Detection
    # ====================

    def detect(
        self,
        clicks: List[ClickEvent],
        campaign_id: str,
        existing_alerts: Optional[Iterable[FraudAlert]] = None,
        now: Optional[datetime] = None,
    ) -> FraudDetectionResult:
        """
        Run IP frequency detection over a click snapshot.

        Any IP with more clicks than the threshold yields exactly one alert.
        When an unresolved alert for the same (campaign, IP) already exists
        it is refreshed (loss, count, severity) instead of duplicated.
        Volume alone is the signal: spend is not consulted.
        """
        now = now or datetime.now(timezone.utc)
        open_alerts = {
            alert.source_key: alert
            for alert in (existing_alerts or [])
            if not alert.resolved and alert.campaign_id == campaign_id
        }

        ip_counts = Counter(click.ip_address for click in clicks if click.ip_address)

        alerts: List[FraudAlert] = []
        total_loss = Decimal("0")
        # Sorted for deterministic output ordering
        for ip, count in sorted(ip_counts.items()):
            if count <= self.click_threshold:
                continue

            loss = self.cost_per_click * count
            total_loss += loss
            severity = self.severity_for(count)
            details = f"Suspicious activity: {count} clicks from IP {ip}"

            existing = open_alerts.get(ip)
            if existing is not None:
                alert = existing.model_copy(update={
                    "severity": severity,
                    "click_count": count,
                    "estimated_loss": loss,
                    "details": details,
                    "updated_at": now,
                })
            else:
                alert = FraudAlert(
                    campaign_id=campaign_id,
                    source_key=ip,
                    source_type=SourceType.IP,
                    alert_type=FraudAlertType.CLICK_FRAUD,
                    severity=severity,
                    click_count=count,
                    estimated_loss=loss,
                    details=details,
                    recommended_action=self.RECOMMENDED_ACTION,
                    created_at=now,
                    updated_at=now,
                )
                logger.warning(f"Fraud alert for campaign {campaign_id}: {details} ({severity.value})")
            alerts.append(alert)

        total_clicks = len(clicks)
        return FraudDetectionResult(
            campaign_id=campaign_id,
            alerts=alerts,
            total_clicks=total_clicks,
            total_loss=total_loss,
            fraud_rate=(len(alerts) / total_clicks) * 100 if total_clicks > 0 else 0.0,
            bot_metrics=self.bot_metrics(clicks),
        )


__all__ = ["FraudDetector"]
