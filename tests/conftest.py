"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - component/  : Component tests (in-memory repository, mocked event bus)
    - unit/       : Unit tests (pure engine functions, no I/O)
    - contracts/  : Shared models and test data factories
"""
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

# Keep service start-up quiet and offline under test
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICES = {
        "performance_service": 8260,
    }

    @classmethod
    def get_service_url(cls, service_name: str) -> str:
        port = cls.SERVICES[service_name]
        host = os.getenv("SERVICE_HOST", "localhost")
        return f"http://{host}:{port}"


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Test configuration"""
    return TestConfig()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "requires_db: needs a running PostgreSQL")
    config.addinivalue_line("markers", "requires_nats: needs a running NATS server")


def pytest_collection_modifyitems(config, items):
    """Mark tests by layer and skip infrastructure tests when unavailable"""
    skip_db = pytest.mark.skip(reason="PostgreSQL not available")
    skip_nats = pytest.mark.skip(reason="NATS not available")

    for item in items:
        path = str(item.fspath)
        if f"{os.sep}unit{os.sep}" in path:
            item.add_marker(pytest.mark.unit)
        elif f"{os.sep}component{os.sep}" in path:
            item.add_marker(pytest.mark.component)

        if "requires_db" in item.keywords and os.getenv("SKIP_DB_TESTS"):
            item.add_marker(skip_db)

        if "requires_nats" in item.keywords and os.getenv("SKIP_NATS_TESTS"):
            item.add_marker(skip_nats)
