"""
Attribution Engine

Distributes conversion credit across channels. Every model is a weighting of
two per-channel shares: the channel's share of clicks and its share of
revenue. Weights are computed per channel and are not renormalized; callers
that need a strict partition use ``renormalize``.
"""

import logging
from decimal import Decimal
from typing import Dict, List

from .models import AttributionModel, AttributionReport, AttributionResult, ChannelAggregate

logger = logging.getLogger(__name__)


class AttributionEngine:
    """Multi-model channel attribution"""

    DEFAULT_MODEL = AttributionModel.TIME_DECAY

    # (click share weight, revenue share weight)
    MODEL_WEIGHTS = {
        AttributionModel.LINEAR: (1.0, 0.0),
        AttributionModel.LAST_TOUCH: (0.0, 1.0),
        AttributionModel.FIRST_TOUCH: (0.4, 0.6),
        AttributionModel.TIME_DECAY: (0.3, 0.7),
        AttributionModel.POSITION_BASED: (0.5, 0.5),
    }

    @classmethod
    def weight(cls, model: AttributionModel, click_share: float, revenue_share: float) -> float:
        click_weight, revenue_weight = cls.MODEL_WEIGHTS[AttributionModel(model)]
        value = click_weight * click_share + revenue_weight * revenue_share
        # Guard against float drift past the [0, 1] bounds
        return min(1.0, max(0.0, value))

    def attribute(
        self,
        channel_stats: List[ChannelAggregate],
        model: AttributionModel = DEFAULT_MODEL,
    ) -> AttributionReport:
        """Credit share per channel under ``model``"""
        model = AttributionModel(model)
        clicks: Dict[str, int] = {}
        revenue: Dict[str, Decimal] = {}
        for row in channel_stats:
            clicks[row.channel_id] = clicks.get(row.channel_id, 0) + row.clicks
            revenue[row.channel_id] = revenue.get(row.channel_id, Decimal("0")) + row.revenue

        total_clicks = sum(clicks.values())
        total_revenue = sum(revenue.values(), Decimal("0"))
        channel_ids = sorted(clicks)

        if total_clicks == 0 or total_revenue == 0:
            logger.debug(f"Insufficient data for {model.value} attribution; returning zero credit")
            return AttributionReport(
                model=model,
                results=[
                    AttributionResult(channel_id=channel_id, model=model, credit_share=0.0)
                    for channel_id in channel_ids
                ],
                recommended_model=self.DEFAULT_MODEL,
                insufficient_data=True,
            )

        results = []
        for channel_id in channel_ids:
            click_share = clicks[channel_id] / total_clicks
            revenue_share = float(revenue[channel_id] / total_revenue)
            results.append(
                AttributionResult(
                    channel_id=channel_id,
                    model=model,
                    credit_share=self.weight(model, click_share, revenue_share),
                )
            )

        return AttributionReport(
            model=model,
            results=results,
            recommended_model=self.DEFAULT_MODEL,
        )

    def attribute_all(self, channel_stats: List[ChannelAggregate]) -> Dict[AttributionModel, AttributionReport]:
        """One report per supported model"""
        return {model: self.attribute(channel_stats, model) for model in AttributionModel}

    @staticmethod
    def renormalize(results: List[AttributionResult]) -> List[AttributionResult]:
        """Scale credit shares so they sum to exactly 1 (all zero stays zero)"""
        total = sum(r.credit_share for r in results)
        if total <= 0:
            return [r.model_copy() for r in results]
        return [
            r.model_copy(update={"credit_share": min(1.0, r.credit_share / total)})
            for r in results
        ]


__all__ = ["AttributionEngine"]
