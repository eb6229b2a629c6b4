"""
Customer Service Client

Client for the customer/segment store consulted by the audience resolver
and for contact lookups at dispatch time.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from core.config import get_settings

logger = logging.getLogger(__name__)


class CustomerClient:
    """Client for customer_service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        services = get_settings().services
        self.base_url = (base_url or services.customer_service_url).rstrip("/")
        self.timeout = timeout or services.http_timeout_seconds
        self._transport = transport

    async def _post_ids(self, path: str, payload: Dict[str, Any]) -> List[str]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}{path}", json=payload)
            response.raise_for_status()
            return [str(cid) for cid in response.json().get("customer_ids", [])]

    async def resolve_segment(
        self, segment_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """
        Resolve a named segment.

        Args:
            segment_id: Segment reference
            filters: Extra narrowing criteria

        Returns:
            Customer ids in the segment
        """
        try:
            return await self._post_ids(
                f"/api/v1/segments/{segment_id}/resolve", {"filters": filters or {}}
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"Error resolving segment {segment_id}: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error resolving segment {segment_id}: {e}")
            raise

    async def list_customers(
        self, organization_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """Every customer visible to a tenant"""
        try:
            return await self._post_ids(
                "/api/v1/customers/search",
                {"organization_id": organization_id, "filters": filters or {}},
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"Error listing customers for {organization_id}: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error listing customers for {organization_id}: {e}")
            raise

    async def filter_customers(
        self, customer_ids: List[str], filters: Dict[str, Any]
    ) -> List[str]:
        """Subset of the given customers matching the filters"""
        try:
            return await self._post_ids(
                "/api/v1/customers/filter",
                {"customer_ids": customer_ids, "filters": filters},
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"Error filtering customers: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error filtering customers: {e}")
            raise

    async def get_contact(self, customer_id: str) -> Dict[str, Any]:
        """Contact details for a customer; empty when unknown"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/api/v1/customers/{customer_id}/contact")
                if response.status_code == 404:
                    return {}
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Error getting contact for {customer_id}: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error getting contact for {customer_id}: {e}")
            raise
