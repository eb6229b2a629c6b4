#!/usr/bin/env python3
"""
Core Module for the Campaign Engine

Shared infrastructure used by the campaign service.

COMPONENTS:
    - config/: environment-driven configuration (infra, services, engine, logging)
    - logger.py: process-wide logging setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS event bus for event-driven architecture

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger(settings.service_name)
"""

from .config import CampaignEngineConfig, get_settings, reload_settings

__all__ = [
    "CampaignEngineConfig",
    "get_settings",
    "reload_settings",
]

__version__ = "1.0.0"
