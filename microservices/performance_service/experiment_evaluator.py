"""
Experiment Evaluator

Two-proportion z-test of each variant against the control. Confidence is
derived from the two-sided normal tail probability by default; the
``approximate`` method maps |z| to ``(1 - 1/(1+|z|)) * 100`` instead.
"""

import logging
import math
from typing import List, Optional, Tuple

from scipy import stats

from core.config import EngineConfig

from .models import (
    ConfidenceMethod,
    ExperimentResult,
    ExperimentTest,
    ExperimentVariant,
    VariantComparison,
)

logger = logging.getLogger(__name__)


class ExperimentEvaluator:
    """A/B test significance and winner selection"""

    MAX_CONFIDENCE = 99.0

    WINNER_RECOMMENDATIONS = [
        "Scale winning variant to 100% traffic",
        "Increase budget by 50% to capitalize on performance",
        "Expand to additional channels with similar creative",
        "Create lookalike audiences based on converters",
    ]
    NO_WINNER_RECOMMENDATIONS = [
        "No statistically significant winner; keep the control variant",
    ]

    def __init__(
        self,
        confidence_threshold: float = 90.0,
        method: ConfidenceMethod = ConfidenceMethod.NORMAL,
    ):
        self.confidence_threshold = confidence_threshold
        self.method = ConfidenceMethod(method)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "ExperimentEvaluator":
        return cls(
            confidence_threshold=config.confidence_threshold,
            method=config.confidence_method,
        )

    # ====================
    # Statistics
    # ====================

    @staticmethod
    def z_score(control: ExperimentVariant, variant: ExperimentVariant) -> float:
        """Pooled two-proportion z statistic; 0 when the standard error is 0"""
        n1, n2 = control.visitors, variant.visitors
        if n1 == 0 or n2 == 0:
            return 0.0
        p1 = control.conversions / n1
        p2 = variant.conversions / n2
        pooled = (control.conversions + variant.conversions) / (n1 + n2)
        se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
        if se == 0:
            return 0.0
        return (p2 - p1) / se

    @staticmethod
    def p_value(z: float) -> float:
        """Two-sided p-value"""
        return float(2 * stats.norm.sf(abs(z)))

    def confidence_from_z(self, z: float) -> Tuple[float, float]:
        """Return (confidence percentage, two-sided p-value)"""
        p = self.p_value(z)
        if self.method == ConfidenceMethod.APPROXIMATE:
            confidence = (1 - 1 / (1 + abs(z))) * 100
        else:
            confidence = (1 - p) * 100
        return min(self.MAX_CONFIDENCE, max(0.0, confidence)), p

    @staticmethod
    def lift(control_rate: float, variant_rate: float) -> float:
        """Relative improvement over control; absolute difference if control is 0"""
        if control_rate > 0:
            return (variant_rate - control_rate) / control_rate
        return variant_rate - control_rate

    # ====================
    # Evaluation
    # ====================

    def evaluate(
        self, test: ExperimentTest, variants: List[ExperimentVariant]
    ) -> ExperimentResult:
        """
        Compare every non-control variant against the control.

        A variant qualifies when its lift is positive and its confidence
        exceeds the threshold; the qualifying variant with the highest lift
        wins. Without a control that has visitors the result is neutral.
        """
        control = self._find_control(variants)
        if control is None or control.visitors == 0:
            logger.debug(f"Test {test.test_id}: no control with visitors, skipping evaluation")
            return ExperimentResult(
                test_id=test.test_id,
                control_variant_id=control.variant_id if control else None,
                insufficient_data=True,
            )

        comparisons: List[VariantComparison] = []
        best: Optional[Tuple[VariantComparison, ExperimentVariant]] = None

        for variant in variants:
            if variant.variant_id == control.variant_id or variant.visitors == 0:
                continue

            z = self.z_score(control, variant)
            confidence, p = self.confidence_from_z(z)
            lift = self.lift(control.conversion_rate, variant.conversion_rate)
            qualifies = lift > 0 and confidence > self.confidence_threshold

            comparison = VariantComparison(
                variant_id=variant.variant_id,
                conversion_rate=variant.conversion_rate,
                lift=lift,
                z_score=z,
                confidence=confidence,
                p_value=p,
                qualifies=qualifies,
            )
            comparisons.append(comparison)

            if qualifies and (best is None or lift > best[0].lift):
                best = (comparison, variant)

        if best is None:
            top_confidence = max((c.confidence for c in comparisons), default=0.0)
            return ExperimentResult(
                test_id=test.test_id,
                control_variant_id=control.variant_id,
                confidence=top_confidence,
                comparisons=comparisons,
                insufficient_data=not comparisons,
            )

        comparison, winner = best
        logger.info(
            f"Test {test.test_id}: variant {winner.variant_id} wins with "
            f"{comparison.confidence:.1f}% confidence, lift {comparison.lift:.2%}"
        )
        return ExperimentResult(
            test_id=test.test_id,
            control_variant_id=control.variant_id,
            winner_variant_id=winner.variant_id,
            winner=winner,
            confidence=comparison.confidence,
            lift=comparison.lift,
            comparisons=comparisons,
        )

    def build_recommendations(self, result: ExperimentResult) -> List[str]:
        if result.winner_variant_id:
            return list(self.WINNER_RECOMMENDATIONS)
        return list(self.NO_WINNER_RECOMMENDATIONS)

    @staticmethod
    def _find_control(variants: List[ExperimentVariant]) -> Optional[ExperimentVariant]:
        for variant in variants:
            if variant.is_control:
                return variant
        return None


__all__ = ["ExperimentEvaluator"]
