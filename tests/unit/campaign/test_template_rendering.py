"""
Unit Tests for Template Rendering and Retry Backoff
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import EngineConfig
from microservices.campaign_service.step_scheduler import StepScheduler, render_template


class TestRenderTemplate:

    def test_simple_substitution(self):
        assert render_template("Hi {{name}}!", {"name": "Ada"}) == "Hi Ada!"

    def test_whitespace_inside_braces(self):
        assert render_template("Hi {{ name }}", {"name": "Ada"}) == "Hi Ada"

    def test_nested_keys(self):
        data = {"order": {"id": "ord_1"}}
        assert render_template("Order {{order.id}}", data) == "Order ord_1"

    def test_missing_variable_renders_empty(self):
        assert render_template("Hi {{name}}", {}) == "Hi "

    def test_non_string_values(self):
        assert render_template("{{count}} items", {"count": 3}) == "3 items"

    def test_empty_template(self):
        assert render_template("", {"a": 1}) == ""


class TestRetryDelay:

    @pytest.fixture
    def scheduler(self):
        config = EngineConfig(retry_base_seconds=60, retry_max_seconds=600)
        return StepScheduler(MagicMock(), MagicMock(), MagicMock(), MagicMock(), config=config)

    @pytest.mark.parametrize("attempts,seconds", [(1, 60), (2, 120), (3, 240), (4, 480), (5, 600), (9, 600)])
    def test_exponential_backoff_capped(self, scheduler, attempts, seconds):
        assert scheduler.retry_delay(attempts) == timedelta(seconds=seconds)
