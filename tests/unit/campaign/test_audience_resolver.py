"""
Unit Tests for Audience Resolution

The customer store is mocked; only the resolver's own rules are exercised.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.campaign.data_contract import Audience, AudienceFilters, AudienceType
from microservices.campaign_service.audience_resolver import AudienceResolver
from microservices.campaign_service.protocols import AudienceResolutionError


@pytest.fixture
def store():
    store = AsyncMock()
    store.resolve_segment.return_value = ["c3", "c1", "c3"]
    store.list_customers.return_value = ["c1", "c2"]
    store.filter_customers.return_value = ["c2", "c1"]
    return store


class TestCustomAudience:

    @pytest.mark.asyncio
    async def test_custom_list_deduplicated_in_order(self, store):
        # Given: an explicit list with a repeat
        resolver = AudienceResolver(store)
        audience = Audience(type=AudienceType.CUSTOM, customer_ids=["c2", "c1", "c2", 7])

        # When: resolving
        result = await resolver.resolve(audience, "org_1")

        # Then: first occurrence wins, ids are strings, store untouched
        assert result == ["c2", "c1", "7"]
        store.filter_customers.assert_not_called()

    @pytest.mark.asyncio
    async def test_custom_list_without_store(self):
        resolver = AudienceResolver(None)
        audience = Audience(type=AudienceType.CUSTOM, customer_ids=["c1"])
        assert await resolver.resolve(audience, "org_1") == ["c1"]

    @pytest.mark.asyncio
    async def test_custom_with_filters_keeps_caller_order(self, store):
        resolver = AudienceResolver(store)
        audience = Audience(
            type=AudienceType.CUSTOM,
            customer_ids=["c1", "c2", "c3"],
            filters=AudienceFilters(min_orders=2),
        )

        result = await resolver.resolve(audience, "org_1")

        assert result == ["c1", "c2"]
        store.filter_customers.assert_awaited_once_with(["c1", "c2", "c3"], {"min_orders": 2})

    @pytest.mark.asyncio
    async def test_empty_custom_list(self, store):
        resolver = AudienceResolver(store)
        audience = Audience(type=AudienceType.CUSTOM, customer_ids=[])
        assert await resolver.resolve(audience, "org_1") == []


class TestStoreAudiences:

    @pytest.mark.asyncio
    async def test_segment(self, store):
        resolver = AudienceResolver(store)
        audience = Audience(type=AudienceType.SEGMENT, segment_id="seg_vip")

        result = await resolver.resolve(audience, "org_1")

        assert result == ["c3", "c1"]
        store.resolve_segment.assert_awaited_once_with("seg_vip", None)

    @pytest.mark.asyncio
    async def test_all_customers_with_filters(self, store):
        resolver = AudienceResolver(store)
        audience = Audience(type=AudienceType.ALL, filters=AudienceFilters(has_reviewed=True))

        result = await resolver.resolve(audience, "org_1")

        assert result == ["c1", "c2"]
        store.list_customers.assert_awaited_once_with("org_1", {"has_reviewed": True})

    @pytest.mark.asyncio
    async def test_store_failure_raises(self, store):
        # Given: the store is down
        store.list_customers.side_effect = ConnectionError("refused")
        resolver = AudienceResolver(store)

        # When / Then: resolution fails as a whole
        with pytest.raises(AudienceResolutionError):
            await resolver.resolve(Audience(type=AudienceType.ALL), "org_1")

    @pytest.mark.asyncio
    async def test_missing_store_raises(self):
        resolver = AudienceResolver(None)
        with pytest.raises(AudienceResolutionError):
            await resolver.resolve(Audience(type=AudienceType.ALL), "org_1")
