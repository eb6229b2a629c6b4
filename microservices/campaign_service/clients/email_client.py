"""
Email Service Client

Client for the transactional email sender used by email steps.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.config import get_settings

logger = logging.getLogger(__name__)


class EmailClient:
    """Client for email_service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        services = get_settings().services
        self.base_url = (base_url or services.email_service_url).rstrip("/")
        self.timeout = timeout or services.http_timeout_seconds
        self._transport = transport

    async def send(
        self,
        to_address: str,
        subject: str,
        body: str,
        variables: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """
        Send a rendered email.

        Args:
            to_address: Recipient address
            subject: Rendered subject
            body: Rendered body
            variables: Template variables, for providers that re-render
            idempotency_key: Deduplication key forwarded as Idempotency-Key

        Returns:
            True when the sender accepted the email
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/emails/send",
                    json={
                        "to": to_address,
                        "subject": subject,
                        "body": body,
                        "variables": variables or {},
                    },
                    headers=headers,
                )
                response.raise_for_status()
                return bool(response.json().get("success", True))

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending email to {to_address}: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error sending email to {to_address}: {e}")
            raise
