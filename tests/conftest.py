"""
Pytest configuration and fixtures for AI task router tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root (ai_router package) and tests dir (fakes module) to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from ai_router.config import OrchestratorConfig, RouterConfig
from ai_router.metrics import MetricsStore
from ai_router.smart_router import SmartRouter
from fakes import FakeDetector


@pytest.fixture
def metrics():
    """Fresh seeded metrics store."""
    return MetricsStore()


@pytest.fixture
def accelerated_router(metrics):
    return SmartRouter(detector=FakeDetector(True), metrics=metrics)


@pytest.fixture
def unaccelerated_router(metrics):
    return SmartRouter(detector=FakeDetector(False), metrics=metrics)


@pytest.fixture
def router_config(tmp_path):
    """Default config with the interaction log under a temp directory."""
    config = RouterConfig()
    config.orchestrator.interaction_log_path = str(tmp_path / "interactions.jsonl")
    return config


@pytest.fixture
def orchestrator_config():
    return OrchestratorConfig()


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "hypothesis: property-based tests")
    config.addinivalue_line("markers", "slow: tests that take >1s")
