"""
Unit Tests for A/B Test Significance

Tests the two-proportion z-test, confidence mapping, winner selection
and the neutral result for missing data.
"""

import pytest

from microservices.performance_service.experiment_evaluator import ExperimentEvaluator
from microservices.performance_service.models import ConfidenceMethod


@pytest.fixture
def test_def(factory):
    return factory.make_test()


def _variants(factory, test_id, control, *others):
    variants = [factory.make_variant(test_id, *control, is_control=True)]
    for i, (visitors, conversions) in enumerate(others):
        variants.append(factory.make_variant(test_id, visitors, conversions, name=f"Variant {i + 1}"))
    return variants


class TestZScore:
    """Pooled two-proportion statistic"""

    def test_known_value(self, factory):
        control = factory.make_variant("tst_1", 1000, 50, is_control=True)
        variant = factory.make_variant("tst_1", 1000, 70)

        assert ExperimentEvaluator.z_score(control, variant) == pytest.approx(1.883, abs=1e-3)

    def test_zero_standard_error(self, factory):
        control = factory.make_variant("tst_1", 100, 0, is_control=True)
        variant = factory.make_variant("tst_1", 100, 0)

        assert ExperimentEvaluator.z_score(control, variant) == 0.0

    def test_lift_with_zero_control_rate(self):
        assert ExperimentEvaluator.lift(0.0, 0.05) == pytest.approx(0.05)
        assert ExperimentEvaluator.lift(0.05, 0.07) == pytest.approx(0.4)


class TestConfidence:
    """|z| maps to a confidence percentage capped at 99"""

    def test_normal_method(self, experiment_evaluator):
        confidence, p = experiment_evaluator.confidence_from_z(1.883)

        assert confidence == pytest.approx(94.0, abs=0.2)
        assert p == pytest.approx(0.0597, abs=1e-3)

    def test_approximate_method(self):
        evaluator = ExperimentEvaluator(method=ConfidenceMethod.APPROXIMATE)

        confidence, _ = evaluator.confidence_from_z(1.883)

        assert confidence == pytest.approx(65.3, abs=0.1)

    def test_symmetric_in_sign(self, experiment_evaluator):
        assert experiment_evaluator.confidence_from_z(-2.5) == experiment_evaluator.confidence_from_z(2.5)

    @pytest.mark.parametrize("z", [0.0, 0.5, 3.0, 12.0, -40.0])
    def test_bounds(self, experiment_evaluator, z):
        confidence, _ = experiment_evaluator.confidence_from_z(z)

        assert 0.0 <= confidence <= 99.0


class TestEvaluate:
    """Winner selection against the control"""

    def test_significant_winner(self, experiment_evaluator, factory, test_def):
        # Given
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 70))

        # When
        result = experiment_evaluator.evaluate(test_def, variants)

        # Then
        assert result.winner_variant_id == variants[1].variant_id
        assert result.control_variant_id == variants[0].variant_id
        assert result.confidence > 90
        assert result.lift == pytest.approx(0.4)
        assert result.comparisons[0].qualifies is True

    def test_no_winner_below_threshold(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 52))

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.winner_variant_id is None
        assert result.winner is None
        assert result.confidence == pytest.approx(16.1, abs=0.5)
        assert result.insufficient_data is False

    def test_approximate_method_is_more_conservative(self, factory, test_def):
        evaluator = ExperimentEvaluator(confidence_threshold=90, method="approximate")
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 70))

        result = evaluator.evaluate(test_def, variants)

        assert result.winner_variant_id is None

    def test_worse_variant_never_wins(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 100), (1000, 30))

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.winner_variant_id is None
        assert result.comparisons[0].lift < 0

    def test_highest_lift_wins_among_qualifiers(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 80), (1000, 100))

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.winner_variant_id == variants[2].variant_id
        assert all(c.qualifies for c in result.comparisons)

    def test_confidence_capped(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 150))

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.confidence == 99.0

    def test_threshold_is_strict(self, factory, test_def):
        evaluator = ExperimentEvaluator(confidence_threshold=99.0)
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 150))

        result = evaluator.evaluate(test_def, variants)

        assert result.winner_variant_id is None


class TestInsufficientData:
    """Neutral result when there is nothing to compare"""

    def test_no_control(self, experiment_evaluator, factory, test_def):
        variants = [
            factory.make_variant(test_def.test_id, 1000, 50),
            factory.make_variant(test_def.test_id, 1000, 90),
        ]

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.insufficient_data is True
        assert result.winner_variant_id is None

    def test_control_without_visitors(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (0, 0), (1000, 70))

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.insufficient_data is True

    def test_variants_without_visitors_are_skipped(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 50), (0, 0))

        result = experiment_evaluator.evaluate(test_def, variants)

        assert result.comparisons == []
        assert result.insufficient_data is True


class TestRecommendations:
    """Fixed recommendation lists"""

    def test_winner_recommendations(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 70))
        result = experiment_evaluator.evaluate(test_def, variants)

        recommendations = experiment_evaluator.build_recommendations(result)

        assert recommendations[0] == "Scale winning variant to 100% traffic"
        assert len(recommendations) == 4

    def test_no_winner_recommendations(self, experiment_evaluator, factory, test_def):
        variants = _variants(factory, test_def.test_id, (1000, 50), (1000, 52))
        result = experiment_evaluator.evaluate(test_def, variants)

        assert experiment_evaluator.build_recommendations(result) == ExperimentEvaluator.NO_WINNER_RECOMMENDATIONS
