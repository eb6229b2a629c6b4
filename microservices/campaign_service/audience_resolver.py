"""
Audience Resolver

Turns an audience specification into a concrete, ordered, deduplicated
list of customer ids at dispatch time. Store failures abort the caller:
a partial audience is never returned.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .models import Audience, AudienceType
from .protocols import AudienceResolutionError, CustomerStoreProtocol

logger = logging.getLogger(__name__)


def _dedupe(customer_ids: Iterable[Any]) -> List[str]:
    seen = set()
    result = []
    for cid in customer_ids:
        key = str(cid)
        if key not in seen:
            seen.add(key)
            result.append(key)
    return result


class AudienceResolver:
    """Resolves audiences against the customer store"""

    def __init__(self, customer_store: Optional[CustomerStoreProtocol] = None):
        self.customer_store = customer_store

    async def resolve(self, audience: Audience, organization_id: str) -> List[str]:
        """Resolve an audience for a tenant"""
        filters = self._filters(audience)

        if audience.type == AudienceType.CUSTOM and not filters:
            # Explicit list needs no store round trip
            return _dedupe(audience.customer_ids or [])

        if not self.customer_store:
            raise AudienceResolutionError("Customer store is not configured")

        try:
            if audience.type == AudienceType.CUSTOM:
                explicit = _dedupe(audience.customer_ids or [])
                if not explicit:
                    return []
                allowed = set(_dedupe(
                    await self.customer_store.filter_customers(explicit, filters)
                ))
                # Keep the caller's ordering
                customer_ids = [cid for cid in explicit if cid in allowed]
            elif audience.type == AudienceType.SEGMENT:
                customer_ids = await self.customer_store.resolve_segment(
                    audience.segment_id, filters or None
                )
            else:
                customer_ids = await self.customer_store.list_customers(
                    organization_id, filters or None
                )
        except AudienceResolutionError:
            raise
        except Exception as e:
            logger.error(f"Audience resolution failed ({audience.type.value}): {e}")
            raise AudienceResolutionError(f"Audience resolution failed: {e}") from e

        resolved = _dedupe(customer_ids or [])
        logger.info(f"Resolved {audience.type.value} audience to {len(resolved)} customers")
        return resolved

    @staticmethod
    def _filters(audience: Audience) -> Dict[str, Any]:
        if not audience.filters or audience.filters.is_empty():
            return {}
        return audience.filters.model_dump(mode="json", exclude_none=True)


__all__ = ["AudienceResolver"]
