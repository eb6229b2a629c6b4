"""
Campaign Service

Campaign orchestration engine providing:
- Campaign and drip sequence registry with lifecycle control
- Customer journeys walked step by step with per-step conditions
- Durable, restart-safe step scheduling with retry and backoff
- Email and in-app message delivery through external channels
- A/B testing with deterministic variant assignment and significance testing
- Event-driven triggers and engagement statistics

Port: 8251
"""

__version__ = "1.0.0"
__service__ = "campaign_service"
