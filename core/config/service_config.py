#!/usr/bin/env python3
"""Service configuration for external collaborators

The engine never delivers content or stores customers itself. It calls the
transactional email sender, the in-app message sender and the customer store
over HTTP.
"""
import os
from dataclasses import dataclass


def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Collaborator service endpoints"""

    # ===========================================
    # Delivery channels
    # ===========================================
    email_service_url: str = "http://localhost:8271"
    message_service_url: str = "http://localhost:8272"

    # ===========================================
    # Customer / segment store
    # ===========================================
    customer_service_url: str = "http://localhost:8273"

    # ===========================================
    # HTTP
    # ===========================================
    http_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        return cls(
            email_service_url=os.getenv("EMAIL_SERVICE_URL", "http://localhost:8271"),
            message_service_url=os.getenv("MESSAGE_SERVICE_URL", "http://localhost:8272"),
            customer_service_url=os.getenv("CUSTOMER_SERVICE_URL", "http://localhost:8273"),
            http_timeout_seconds=_float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"), 30.0),
        )
