"""
Insight Synthesizer

Selects and formats the outputs of the other components into a short,
ranked list of recommendations. No new metrics are computed here.
"""

from typing import List, Optional

from .models import (
    AggregationResult,
    BudgetAction,
    BudgetAllocation,
    ExperimentResult,
    FraudDetectionResult,
    FraudSeverity,
    Insight,
    InsightCategory,
    PacingReport,
    PacingStatus,
)


class InsightSynthesizer:
    """Ranks component outputs by impact score"""

    FRAUD_SCORES = {FraudSeverity.CRITICAL: 90.0, FraudSeverity.HIGH: 75.0}
    PAUSE_SCORE = 80.0
    SCALE_SCORE = 60.0
    BOT_TRAFFIC_SCORE = 55.0
    BOT_TRAFFIC_MIN_PERCENTAGE = 10.0
    PACING_SCORES = {PacingStatus.OVERSPENDING: 70.0, PacingStatus.UNDERSPENDING: 50.0}
    SKIPPED_EVENTS_SCORE = 40.0
    NO_WINNER_SCORE = 20.0

    def __init__(self, limit: int = 5):
        self.limit = limit

    def synthesize(
        self,
        aggregation: Optional[AggregationResult] = None,
        fraud: Optional[FraudDetectionResult] = None,
        allocations: Optional[List[BudgetAllocation]] = None,
        experiments: Optional[List[ExperimentResult]] = None,
        pacing: Optional[PacingReport] = None,
    ) -> List[Insight]:
        """Collect candidate insights, sort by impact (stable) and cap"""
        candidates: List[Insight] = []

        if fraud:
            candidates.extend(self._fraud_insights(fraud))
        for allocation in allocations or []:
            insight = self._allocation_insight(allocation)
            if insight:
                candidates.append(insight)
        if pacing and pacing.status in self.PACING_SCORES:
            candidates.append(self._pacing_insight(pacing))
        for result in experiments or []:
            if not result.insufficient_data:
                candidates.append(self._experiment_insight(result))
        if aggregation and aggregation.skipped:
            candidates.append(
                Insight(
                    title="Events skipped during aggregation",
                    description=(
                        f"{aggregation.skipped} event(s) could not be mapped to a channel "
                        f"and were left out of the aggregates"
                    ),
                    impact_score=self.SKIPPED_EVENTS_SCORE,
                    action="Check tracking links are assigned to a traffic channel",
                    category=InsightCategory.DATA_QUALITY,
                )
            )

        ranked = sorted(candidates, key=lambda i: i.impact_score, reverse=True)
        return ranked[: self.limit]

    def _fraud_insights(self, fraud: FraudDetectionResult) -> List[Insight]:
        insights = [
            Insight(
                title=f"Suspicious click volume from {alert.source_key}",
                description=(
                    f"{alert.click_count} clicks from one IP address, "
                    f"estimated loss ${alert.estimated_loss}"
                ),
                impact_score=self.FRAUD_SCORES.get(alert.severity, 75.0),
                action=alert.recommended_action,
                category=InsightCategory.FRAUD,
            )
            for alert in fraud.alerts
        ]
        bot = fraud.bot_metrics
        if bot.bot_percentage >= self.BOT_TRAFFIC_MIN_PERCENTAGE:
            insights.append(
                Insight(
                    title="High bot traffic",
                    description=(
                        f"{bot.bot_percentage:.1f}% of clicks came from known bot user agents"
                    ),
                    impact_score=self.BOT_TRAFFIC_SCORE,
                    action="Exclude bot user agents at the traffic source",
                    category=InsightCategory.FRAUD,
                )
            )
        return insights

    def _allocation_insight(self, allocation: BudgetAllocation) -> Optional[Insight]:
        if allocation.action == BudgetAction.PAUSE:
            return Insight(
                title=f"Pause channel {allocation.channel_id}",
                description=f"ROI of {allocation.roi:.0%} on significant spend",
                impact_score=self.PAUSE_SCORE,
                action="Pause spending on this channel",
                category=InsightCategory.BUDGET,
            )
        if allocation.action == BudgetAction.SCALE:
            return Insight(
                title=f"Scale channel {allocation.channel_id}",
                description=(
                    f"ROI of {allocation.roi:.0%}; recommended budget "
                    f"${allocation.recommended_budget}"
                ),
                impact_score=self.SCALE_SCORE,
                action="Increase the budget on this channel",
                category=InsightCategory.BUDGET,
            )
        return None

    def _pacing_insight(self, pacing: PacingReport) -> Insight:
        label = pacing.status.value.replace("_", " ")
        return Insight(
            title=f"Campaign is {label}",
            description=(
                f"Current pace ${pacing.current_pace}/day against an ideal "
                f"${pacing.ideal_daily_budget}/day ({pacing.variance_pct:+.1f}%)"
            ),
            impact_score=self.PACING_SCORES[pacing.status],
            action=pacing.recommendations[0] if pacing.recommendations else "",
            category=InsightCategory.PACING,
        )

    def _experiment_insight(self, result: ExperimentResult) -> Insight:
        if result.winner_variant_id:
            return Insight(
                title=f"Variant {result.winner_variant_id} won test {result.test_id}",
                description=(
                    f"Lift {result.lift:.1%} over control at {result.confidence:.1f}% confidence"
                ),
                impact_score=result.confidence,
                action="Stop the test and scale the winning variant",
                category=InsightCategory.EXPERIMENT,
            )
        return Insight(
            title=f"No winner yet in test {result.test_id}",
            description=f"Best confidence so far {result.confidence:.1f}%",
            impact_score=self.NO_WINNER_SCORE,
            action="Keep the test running to collect more data",
            category=InsightCategory.EXPERIMENT,
        )


__all__ = ["InsightSynthesizer"]
