"""
Message Service Client

Client for the in-app messaging sender used by message steps.
"""

import logging
from typing import Optional

import httpx

from core.config import get_settings

logger = logging.getLogger(__name__)


class MessageClient:
    """Client for message_service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        services = get_settings().services
        self.base_url = (base_url or services.message_service_url).rstrip("/")
        self.timeout = timeout or services.http_timeout_seconds
        self._transport = transport

    async def send(
        self,
        customer_id: str,
        subject: str,
        body: str,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """Send an in-app message; True when accepted"""
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/messages",
                    json={
                        "customer_id": customer_id,
                        "subject": subject,
                        "body": body,
                    },
                    headers=headers,
                )
                response.raise_for_status()
                return bool(response.json().get("success", True))

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending message to {customer_id}: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error sending message to {customer_id}: {e}")
            raise
