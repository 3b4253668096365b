"""
Budget Optimizer

Ranks channels by realized ROI and splits the campaign budget by rank
weight, then applies the pause and scale passes. Also classifies spend
pacing against the ideal daily budget.
"""

import logging
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from core.config import EngineConfig

from .models import BudgetAction, BudgetAllocation, ChannelAggregate, PacingReport, PacingStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class BudgetOptimizer:
    """ROI-ranked budget reallocation and pacing"""

    PACING_RECOMMENDATIONS = {
        PacingStatus.ON_TRACK: [
            "Spend is on pace with the campaign budget",
            "Maintain current daily budgets",
            "Keep monitoring channel ROI for scaling opportunities",
        ],
        PacingStatus.OVERSPENDING: [
            "Reduce daily budgets to avoid exhausting the campaign budget early",
            "Pause or cap channels with negative ROI",
            "Tighten bids on high-cost traffic sources",
        ],
        PacingStatus.UNDERSPENDING: [
            "Increase daily budgets on channels with positive ROI",
            "Broaden targeting to capture more qualified traffic",
            "Check for paused channels or delivery limits",
        ],
    }

    def __init__(
        self,
        scale_roi_threshold: float = 0.20,
        scale_factor: float = 1.5,
        pause_min_spend: Decimal = Decimal("50"),
        pause_roi_threshold: float = -0.50,
        pacing_tolerance: float = 0.20,
    ):
        self.scale_roi_threshold = scale_roi_threshold
        self.scale_factor = Decimal(str(scale_factor))
        self.pause_min_spend = Decimal(str(pause_min_spend))
        self.pause_roi_threshold = pause_roi_threshold
        self.pacing_tolerance = pacing_tolerance

    @classmethod
    def from_config(cls, config: EngineConfig) -> "BudgetOptimizer":
        return cls(
            scale_roi_threshold=config.scale_roi_threshold,
            scale_factor=config.scale_factor,
            pause_min_spend=config.pause_min_spend,
            pause_roi_threshold=config.pause_roi_threshold,
            pacing_tolerance=config.pacing_tolerance,
        )

    @staticmethod
    def calculate_roi(revenue: Decimal, spend: Decimal) -> float:
        """(revenue - spend) / spend, or 0 when nothing was spent"""
        if spend == 0:
            return 0.0
        return float((Decimal(revenue) - Decimal(spend)) / Decimal(spend))

    @staticmethod
    def rank_weight(rank: int, channel_count: int) -> int:
        """Weight for a 1-based rank; never below 1"""
        return max(1, channel_count - rank)

    # ====================
    # Optimization
    # ====================

    def optimize(
        self,
        channels: List[ChannelAggregate],
        total_budget: Decimal,
        budget_ceiling: Optional[Decimal] = None,
        previous_budgets: Optional[Dict[str, Decimal]] = None,
        campaign_id: Optional[str] = None,
        cycle_id: Optional[str] = None,
    ) -> List[BudgetAllocation]:
        """
        Compute the recommended budget for every channel.

        1. ROI per channel, ranked descending (ties by channel id).
        2. Weighted split of ``total_budget``; each share is rounded down to the
           cent and the residue goes to the top-ranked channel, so the split
           sums exactly to ``total_budget``.
        3. Pause pass: spend above the minimum with ROI below the pause
           threshold drops the channel to zero.
        4. Scale pass: channels above the scale ROI threshold grow by the
           scale factor, in rank order, while headroom under the ceiling lasts.
        """
        if not channels:
            return []

        total_budget = Decimal(str(total_budget))
        ceiling = Decimal(str(budget_ceiling)) if budget_ceiling is not None else total_budget
        previous_budgets = previous_budgets or {}

        scored = sorted(
            ((self.calculate_roi(c.revenue, c.spend), c) for c in channels),
            key=lambda pair: (-pair[0], pair[1].channel_id),
        )
        n = len(scored)
        weights = [self.rank_weight(rank, n) for rank in range(1, n + 1)]
        weight_sum = sum(weights)

        shares = [
            (total_budget * weight / weight_sum).quantize(CENT, rounding=ROUND_DOWN)
            for weight in weights
        ]
        shares[0] += total_budget - sum(shares)

        allocations = []
        for rank, ((roi, channel), weight, share) in enumerate(zip(scored, weights, shares), start=1):
            allocations.append(
                BudgetAllocation(
                    channel_id=channel.channel_id,
                    campaign_id=campaign_id or channel.campaign_id,
                    previous_budget=previous_budgets.get(channel.channel_id, Decimal("0")),
                    recommended_budget=share,
                    rank=rank,
                    roi=roi,
                    weight=weight,
                    action=BudgetAction.MAINTAIN,
                    cycle_id=cycle_id,
                )
            )

        spend_by_channel = {c.channel_id: c.spend for _, c in scored}
        for allocation in allocations:
            if (
                spend_by_channel[allocation.channel_id] > self.pause_min_spend
                and allocation.roi < self.pause_roi_threshold
            ):
                allocation.recommended_budget = Decimal("0")
                allocation.action = BudgetAction.PAUSE
                logger.info(
                    f"Pausing channel {allocation.channel_id}: ROI {allocation.roi:.2f}, "
                    f"spend {spend_by_channel[allocation.channel_id]}"
                )

        headroom = ceiling - sum((a.recommended_budget for a in allocations), Decimal("0"))
        for allocation in allocations:
            if allocation.action == BudgetAction.PAUSE or allocation.roi <= self.scale_roi_threshold:
                continue
            allocation.action = BudgetAction.SCALE
            increment = (allocation.recommended_budget * (self.scale_factor - 1)).quantize(
                CENT, rounding=ROUND_DOWN
            )
            granted = max(Decimal("0"), min(increment, headroom))
            allocation.recommended_budget += granted
            headroom -= granted

        return allocations

    # ====================
    # Pacing
    # ====================

    def pacing(
        self,
        total_budget: Decimal,
        days_remaining: int,
        spent_so_far: Decimal,
        days_elapsed: int,
    ) -> PacingReport:
        """Compare the current spend rate with the ideal daily budget"""
        total_budget = Decimal(str(total_budget))
        spent_so_far = Decimal(str(spent_so_far))
        days_remaining = max(days_remaining, 1)
        days_elapsed = max(days_elapsed, 1)

        ideal = ((total_budget - spent_so_far) / days_remaining).quantize(CENT, rounding=ROUND_HALF_UP)
        current = (spent_so_far / days_elapsed).quantize(CENT, rounding=ROUND_HALF_UP)

        if ideal <= 0:
            status = PacingStatus.OVERSPENDING if current > 0 else PacingStatus.ON_TRACK
            variance = 0.0
        else:
            variance = float((current - ideal) / ideal) * 100
            band = Decimal(str(self.pacing_tolerance))
            if current > ideal * (1 + band):
                status = PacingStatus.OVERSPENDING
            elif current < ideal * (1 - band):
                status = PacingStatus.UNDERSPENDING
            else:
                status = PacingStatus.ON_TRACK

        return PacingReport(
            status=status,
            ideal_daily_budget=ideal,
            current_pace=current,
            variance_pct=variance,
            days_elapsed=days_elapsed,
            days_remaining=days_remaining,
            recommendations=list(self.PACING_RECOMMENDATIONS[status]),
        )


__all__ = ["BudgetOptimizer"]
