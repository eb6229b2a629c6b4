"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Service, state machine and scheduler against in-memory fakes
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys

import pytest

# Set testing environment BEFORE any service imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.contracts.campaign.data_contract import CampaignTestDataFactory


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "component: marks tests as component tests")


def pytest_collection_modifyitems(config, items):
    """Mark tests by the layer directory they live in"""
    for item in items:
        parts = item.path.parts
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)
        elif "component" in parts:
            item.add_marker(pytest.mark.component)


# =============================================================================
# Test Data
# =============================================================================

@pytest.fixture
def factory():
    """Provide test data factory"""
    return CampaignTestDataFactory
