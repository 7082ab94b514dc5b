"""
pytest configuration and global fixtures.

This file is automatically loaded by pytest and provides:
- Random seed management for reproducibility
- Common fixtures for all tests (clock, config, parameter register)
- Pytest hooks for custom behavior
"""

import os
import random

import numpy as np
import pytest
from hypothesis import HealthCheck, Verbosity, settings

from fixtures import load_seeds
from order_plane.learning import ParameterRegister
from shared.clock import VirtualClock
from shared.config import AgentConfig, load_config
from shared.metrics import AgentMetrics


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """
    Set all random seeds globally for deterministic tests.

    This fixture runs once per test session and ensures reproducibility
    across all tests.
    """
    seeds_config = load_seeds()

    np.random.seed(seeds_config["numpy"])
    random.seed(seeds_config["global"])

    yield

    np.random.seed(None)
    random.seed(None)


@pytest.fixture
def seeds():
    """Provide access to seeds configuration."""
    return load_seeds()


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def clock():
    """Virtual clock at the fixture base timestamp."""
    return VirtualClock()


@pytest.fixture
def config():
    """Packaged default configuration."""
    return load_config()


@pytest.fixture
def default_config():
    """Pure model defaults (no YAML)."""
    return AgentConfig()


@pytest.fixture
def metrics():
    """Metrics on a private registry."""
    return AgentMetrics()


@pytest.fixture
def register(config, clock, metrics):
    """Generation-0 parameter register built from the packaged config."""
    return ParameterRegister.from_config(config, clock, metrics)


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """
    Pytest configuration hook.

    Register custom markers.
    """
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "property: Property-based tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "e2e: End-to-end tests")
    config.addinivalue_line("markers", "slow: Slow-running tests")


def pytest_collection_modifyitems(config, items):
    """
    Pytest hook to modify test collection.

    Auto-mark tests based on their location.
    """
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "property" in path:
            item.add_marker(pytest.mark.property)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "e2e" in path:
            item.add_marker(pytest.mark.e2e)
            item.add_marker(pytest.mark.slow)


# ============================================================================
# Hypothesis Configuration
# ============================================================================

settings.register_profile(
    "default",
    max_examples=100,
    stateful_step_count=50,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

settings.register_profile(
    "ci",
    max_examples=200,
    stateful_step_count=100,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

settings.register_profile(
    "dev",
    max_examples=10,
    stateful_step_count=10,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    verbosity=Verbosity.verbose,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))
