#!/usr/bin/env python3
"""Campaign engine tuning

Scheduler polling, dispatch retry policy and A/B significance settings.
"""
import os
from dataclasses import dataclass

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class EngineConfig:
    """Step scheduler and variant assigner settings"""

    # ===========================================
    # Scheduler
    # ===========================================
    scheduler_enabled: bool = True
    poll_interval_seconds: float = 5.0
    batch_size: int = 100
    lease_seconds: int = 300
    max_concurrency: int = 20

    # ===========================================
    # Dispatch retry
    # ===========================================
    max_dispatch_attempts: int = 5
    retry_base_seconds: float = 60.0
    retry_max_seconds: float = 3600.0

    # ===========================================
    # A/B testing
    # ===========================================
    ab_min_sample_size: int = 100
    ab_significance_level: float = 0.05

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        return cls(
            scheduler_enabled=_bool(os.getenv("SCHEDULER_ENABLED", "true")),
            poll_interval_seconds=_float(os.getenv("SCHEDULER_POLL_INTERVAL_SECONDS", "5"), 5.0),
            batch_size=_int(os.getenv("SCHEDULER_BATCH_SIZE", "100"), 100),
            lease_seconds=_int(os.getenv("SCHEDULER_LEASE_SECONDS", "300"), 300),
            max_concurrency=_int(os.getenv("SCHEDULER_MAX_CONCURRENCY", "20"), 20),
            max_dispatch_attempts=_int(os.getenv("DISPATCH_MAX_ATTEMPTS", "5"), 5),
            retry_base_seconds=_float(os.getenv("DISPATCH_RETRY_BASE_SECONDS", "60"), 60.0),
            retry_max_seconds=_float(os.getenv("DISPATCH_RETRY_MAX_SECONDS", "3600"), 3600.0),
            ab_min_sample_size=_int(os.getenv("AB_MIN_SAMPLE_SIZE", "100"), 100),
            ab_significance_level=_float(os.getenv("AB_SIGNIFICANCE_LEVEL", "0.05"), 0.05),
        )
