#!/usr/bin/env python3
"""Logging configuration"""
import os
from dataclasses import dataclass, field
from typing import List

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _list(val: str) -> List[str]:
    return [item.strip() for item in val.split(",") if item.strip()]


@dataclass
class LoggingConfig:
    """Logging configuration"""
    log_level: str = "INFO"
    log_format: str = DEFAULT_FORMAT
    log_file: str = ""
    enable_console: bool = True

    # Third-party loggers held at WARNING
    quiet_loggers: List[str] = field(default_factory=lambda: ["httpx", "asyncio", "nats"])

    # Scheduler tick logging is noisy at DEBUG
    scheduler_log_level: str = "INFO"

    service_name: str = "campaign_service"
    environment: str = "development"

    @classmethod
    def from_env(cls) -> 'LoggingConfig':
        """Load logging config from environment variables"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            log_level=os.getenv("LOG_LEVEL", "DEBUG" if env == "development" else "INFO"),
            log_format=os.getenv("LOG_FORMAT", DEFAULT_FORMAT),
            log_file=os.getenv("LOG_FILE", ""),
            enable_console=os.getenv("LOG_CONSOLE", "true").lower() == "true",
            quiet_loggers=_list(os.getenv("LOG_QUIET_LOGGERS", "httpx,asyncio,nats")),
            scheduler_log_level=os.getenv("SCHEDULER_LOG_LEVEL", "INFO"),
            service_name=os.getenv("SERVICE_NAME", "campaign_service"),
            environment=env,
        )
