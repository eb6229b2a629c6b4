"""
Service logger setup

Stdlib logging configured from LoggingConfig. Every module keeps using
`logging.getLogger(__name__)`; this only wires handlers and levels once
per process.
"""

import logging
import sys
from typing import Optional

from .config import LoggingConfig, get_settings

_configured = False


def setup_service_logger(service_name: str, config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure root handlers and return the service logger"""
    global _configured

    config = config or get_settings().logging
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if not _configured:
        root = logging.getLogger()
        root.setLevel(level)
        formatter = logging.Formatter(config.log_format)

        if config.enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            root.addHandler(console)

        if config.log_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        for name in config.quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)
        logging.getLogger("microservices.campaign_service.step_scheduler").setLevel(
            getattr(logging, config.scheduler_log_level.upper(), logging.INFO)
        )
        _configured = True

    logger = logging.getLogger(service_name)
    logger.setLevel(level)
    return logger
