"""
Unit Test Fixtures for Campaign Service

Pure-logic fixtures: no I/O, no event loop state shared across tests.
"""

import pytest

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.campaign.data_contract import CampaignTestDataFactory
from microservices.campaign_service.variant_assigner import VariantAssigner


@pytest.fixture
def factory():
    """Provide test data factory"""
    return CampaignTestDataFactory


@pytest.fixture
def assigner():
    """Variant assigner with default thresholds and no storage"""
    return VariantAssigner(min_sample_size=100, significance_level=0.05)
