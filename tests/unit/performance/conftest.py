"""
Unit Test Fixtures for Performance Service

Provides component fixtures for unit testing the pure engine functions.
Uses PerformanceTestDataFactory from the data contract.
"""

import os
import sys
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.performance.data_contract import PerformanceTestDataFactory
from microservices.performance_service.aggregator import Aggregator
from microservices.performance_service.attribution_engine import AttributionEngine
from microservices.performance_service.budget_optimizer import BudgetOptimizer
from microservices.performance_service.experiment_evaluator import ExperimentEvaluator
from microservices.performance_service.fraud_detector import FraudDetector
from microservices.performance_service.insight_synthesizer import InsightSynthesizer


@pytest.fixture
def factory():
    return PerformanceTestDataFactory()


@pytest.fixture
def aggregator():
    return Aggregator()


@pytest.fixture
def fraud_detector():
    return FraudDetector(click_threshold=50, critical_threshold=100, cost_per_click=Decimal("0.50"))


@pytest.fixture
def attribution_engine():
    return AttributionEngine()


@pytest.fixture
def budget_optimizer():
    return BudgetOptimizer()


@pytest.fixture
def experiment_evaluator():
    return ExperimentEvaluator(confidence_threshold=90.0)


@pytest.fixture
def insight_synthesizer():
    return InsightSynthesizer(limit=5)
