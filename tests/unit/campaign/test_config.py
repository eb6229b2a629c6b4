"""
Unit Tests for engine configuration and logging setup

Environment parsing of the config dataclasses and the process logger.
"""

import logging
import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import CampaignEngineConfig, EngineConfig, InfraConfig, LoggingConfig, ServiceConfig
from core import logger as core_logger


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig()

        assert config.max_dispatch_attempts == 5
        assert config.retry_base_seconds == 60.0
        assert config.lease_seconds == 300
        assert config.ab_significance_level == 0.05

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("DISPATCH_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("DISPATCH_RETRY_BASE_SECONDS", "2.5")
        monkeypatch.setenv("AB_MIN_SAMPLE_SIZE", "not-a-number")

        config = EngineConfig.from_env()

        assert config.scheduler_enabled is False
        assert config.max_dispatch_attempts == 7
        assert config.retry_base_seconds == 2.5
        # Invalid values fall back to defaults
        assert config.ab_min_sample_size == 100


class TestInfraConfig:

    def test_dsn_and_servers(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_HOST", "db")
        monkeypatch.setenv("POSTGRES_DB", "campaigns")
        monkeypatch.delenv("NATS_URL", raising=False)
        monkeypatch.setenv("NATS_HOST", "bus")

        config = InfraConfig.from_env()

        assert config.postgres_dsn == "postgresql://postgres:postgres@db:5432/campaigns"
        assert config.nats_servers == "nats://bus:4222"

    def test_explicit_nats_url_wins(self, monkeypatch):
        monkeypatch.setenv("NATS_URL", "nats://cluster:4222")

        assert InfraConfig.from_env().nats_servers == "nats://cluster:4222"


class TestServiceConfig:

    def test_collaborator_urls(self, monkeypatch):
        monkeypatch.setenv("EMAIL_SERVICE_URL", "http://email:80")
        monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "5")

        config = ServiceConfig.from_env()

        assert config.email_service_url == "http://email:80"
        assert config.http_timeout_seconds == 5.0


class TestCampaignEngineConfig:

    def test_composes_sections(self, monkeypatch):
        monkeypatch.setenv("SERVICE_PORT", "9000")

        config = CampaignEngineConfig.from_env()

        assert config.service_port == 9000
        assert isinstance(config.engine, EngineConfig)
        assert isinstance(config.logging, LoggingConfig)


class TestLoggingSetup:

    @pytest.fixture(autouse=True)
    def reset_logging(self, monkeypatch):
        monkeypatch.setattr(core_logger, "_configured", False)
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_quiet_loggers_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_QUIET_LOGGERS", "httpx, nats ,")

        assert LoggingConfig.from_env().quiet_loggers == ["httpx", "nats"]

    def test_setup_service_logger(self):
        config = LoggingConfig(log_level="DEBUG", enable_console=False, quiet_loggers=["chatty.lib"])

        service_logger = core_logger.setup_service_logger("campaign_service", config)

        assert service_logger.name == "campaign_service"
        assert service_logger.level == logging.DEBUG
        assert logging.getLogger("chatty.lib").level == logging.WARNING
        assert logging.getLogger("microservices.campaign_service.step_scheduler").level == logging.INFO
