#!/usr/bin/env python3
"""Modular configuration system for the campaign engine

Configuration hierarchy:
- infra_config: PostgreSQL and NATS
- service_config: external collaborators (email, message, customer store)
- engine_config: scheduler, retry and A/B settings
- logging_config: Logging configuration
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .engine_config import EngineConfig
from .infra_config import InfraConfig
from .logging_config import LoggingConfig
from .service_config import ServiceConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class CampaignEngineConfig:
    """Top-level settings for the campaign engine process"""
    service_name: str = "campaign_service"
    service_port: int = 8251
    infra: InfraConfig = field(default_factory=InfraConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'CampaignEngineConfig':
        return cls(
            service_name=os.getenv("SERVICE_NAME", "campaign_service"),
            service_port=_int(os.getenv("SERVICE_PORT", "8251"), 8251),
            infra=InfraConfig.from_env(),
            services=ServiceConfig.from_env(),
            engine=EngineConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )


# Create global settings instance
settings = CampaignEngineConfig.from_env()

def get_settings() -> CampaignEngineConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> CampaignEngineConfig:
    """Reload settings from environment"""
    global settings
    settings = CampaignEngineConfig.from_env()
    return settings

__all__ = [
    'CampaignEngineConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'InfraConfig',
    'ServiceConfig',
    'EngineConfig',
    'LoggingConfig',
]
