"""
Component Tests: Campaign Service Event Handlers

Routing of subscribed platform events into the service, with a mocked
service for dispatch checks and the in-memory engine for end-to-end effects.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.nats_client import Event
from microservices.campaign_service.events.handlers import CampaignEventHandler
from microservices.campaign_service.protocols import CampaignNotFoundError
from tests.contracts.campaign.data_contract import (
    Audience,
    AudienceType,
    CampaignTrigger,
    EngagementKind,
    JourneyStatus,
    TriggerType,
)

pytestmark = pytest.mark.component

ORG = "org_test"


@pytest.fixture
def mock_service():
    service = AsyncMock()
    service.trigger_campaigns.return_value = []
    return service


async def start_event_campaign(engine, factory, trigger_type=TriggerType.PURCHASE, conditions=None, organization_id=ORG):
    request = factory.make_create_request(
        trigger=CampaignTrigger(type=trigger_type, conditions=conditions),
        audience=Audience(type=AudienceType.ALL),
    )
    campaign = await engine.service.create_campaign(request, organization_id)
    await engine.service.start_campaign(campaign.campaign_id)
    return campaign


class TestEventRouting:
    """Events reach the right service call"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type,trigger_type", [
        ("order.shipped", TriggerType.SHIPMENT),
        ("order.delivered", TriggerType.DELIVERY),
        ("review.created", TriggerType.REVIEW),
        ("cart.abandoned", TriggerType.ABANDONED_CART),
        ("user.created", TriggerType.SIGNUP),
    ])
    async def test_trigger_events(self, mock_service, event_type, trigger_type):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event(event_type, {"customer_id": "cus_1", "organization_id": ORG})

        mock_service.trigger_campaigns.assert_awaited_once_with(
            trigger_type,
            "cus_1",
            data={"customer_id": "cus_1", "organization_id": ORG},
            organization_id=ORG,
        )

    @pytest.mark.asyncio
    async def test_user_id_accepted_as_customer_id(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("user.created", {"user_id": 17})

        args = mock_service.trigger_campaigns.await_args
        assert args.args == (TriggerType.SIGNUP, "17")

    @pytest.mark.asyncio
    async def test_event_without_organization_uses_default(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("order.shipped", {"customer_id": "cus_1"})

        assert mock_service.trigger_campaigns.await_args.kwargs["organization_id"] == "default_org"

    @pytest.mark.asyncio
    async def test_event_without_organization_stays_in_default_tenant(self, engine, factory):
        # Given: the same trigger in a named tenant and in the default one
        tenant = await start_event_campaign(engine, factory, trigger_type=TriggerType.SHIPMENT)
        default = await start_event_campaign(
            engine, factory, trigger_type=TriggerType.SHIPMENT, organization_id="default_org"
        )
        handler = CampaignEventHandler(engine.service)

        # When
        await handler.handle_event("order.shipped", {"customer_id": "cus_1"})

        # Then: only the default tenant's campaign enrolled the customer
        enrolled = {j.campaign_id for j in engine.repository.journeys.values()}
        assert enrolled == {default.campaign_id}
        assert tenant.campaign_id not in enrolled

    @pytest.mark.asyncio
    async def test_nats_event_adapter(self, mock_service):
        handler = CampaignEventHandler(mock_service)
        event = Event(event_type="review.created", source="review_service", data={"customer_id": "cus_1"})

        await handler.handle_nats_event(event)

        mock_service.trigger_campaigns.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("inventory.updated", {"customer_id": "cus_1"})

        assert mock_service.method_calls == []

    @pytest.mark.asyncio
    async def test_handler_errors_are_contained(self, mock_service):
        mock_service.trigger_campaigns.side_effect = RuntimeError("database down")
        handler = CampaignEventHandler(mock_service)

        # Should not raise
        await handler.handle_event("order.shipped", {"customer_id": "cus_1"})

    @pytest.mark.asyncio
    async def test_malformed_payload_is_contained(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("order.shipped", {"organization_id": ORG})

        mock_service.trigger_campaigns.assert_not_awaited()


class TestOrderCompleted:

    @pytest.mark.asyncio
    async def test_attributed_order_records_conversion(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("order.completed", {
            "customer_id": "cus_1",
            "order_id": "ord_1",
            "total_amount": "49.90",
            "campaign_id": "cmp_1",
            "step_id": "stp_1",
        })

        mock_service.trigger_campaigns.assert_awaited_once()
        campaign_id, request = mock_service.record_engagement.await_args.args
        assert campaign_id == "cmp_1"
        assert request.kind == EngagementKind.CONVERTED
        assert request.amount == Decimal("49.90")
        assert request.step_id == "stp_1"

    @pytest.mark.asyncio
    async def test_unattributed_order_only_triggers(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("order.completed", {"customer_id": "cus_1", "total_amount": 10})

        mock_service.trigger_campaigns.assert_awaited_once()
        mock_service.record_engagement.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_attributed_campaign(self, mock_service):
        mock_service.record_engagement.side_effect = CampaignNotFoundError("gone")
        handler = CampaignEventHandler(mock_service)

        await handler.handle_order_completed(
            "order.completed", {"customer_id": "cus_1", "campaign_id": "cmp_gone"}
        )

    @pytest.mark.asyncio
    async def test_purchase_starts_and_converts_end_to_end(self, engine, factory):
        # Given: an active purchase campaign for gold customers
        campaign = await start_event_campaign(engine, factory, conditions={"tier": "gold"})
        handler = CampaignEventHandler(engine.service)

        # When: a gold customer completes an attributed order
        await handler.handle_event("order.completed", {
            "customer_id": "cus_1",
            "organization_id": ORG,
            "tier": "gold",
            "total_amount": "25.00",
            "campaign_id": campaign.campaign_id,
        })

        # Then: a journey started with the event payload and revenue was booked
        journey = await engine.service.get_journey(campaign.campaign_id, "cus_1")
        assert journey.data["tier"] == "gold"
        stats = engine.repository.campaigns[campaign.campaign_id].stats
        assert stats.total_converted == 1
        assert stats.revenue == Decimal("25.00")


class TestNotificationEngagement:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type,kind", [
        ("notification.opened", EngagementKind.OPENED),
        ("notification.clicked", EngagementKind.CLICKED),
    ])
    async def test_engagement_kind(self, mock_service, event_type, kind):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event(event_type, {"customer_id": "cus_1", "campaign_id": "cmp_1"})

        _, request = mock_service.record_engagement.await_args.args
        assert request.kind == kind

    @pytest.mark.asyncio
    async def test_notification_without_campaign_is_ignored(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("notification.opened", {"customer_id": "cus_1"})

        mock_service.record_engagement.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_opened_counter_end_to_end(self, engine, start_manual_campaign):
        campaign, _ = await start_manual_campaign()
        handler = CampaignEventHandler(engine.service)

        await handler.handle_event("notification.opened", {
            "customer_id": "cus_1", "campaign_id": campaign.campaign_id,
        })

        assert engine.repository.campaigns[campaign.campaign_id].stats.total_opened == 1


class TestUserUnsubscribed:

    @pytest.mark.asyncio
    async def test_single_campaign(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("user.unsubscribed", {"customer_id": "cus_1", "campaign_id": "cmp_1"})

        mock_service.unsubscribe_journey.assert_awaited_once_with("cmp_1", "cus_1")
        mock_service.unsubscribe_customer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_campaigns(self, mock_service):
        handler = CampaignEventHandler(mock_service)

        await handler.handle_event("user.unsubscribed", {"customer_id": "cus_1", "organization_id": ORG})

        mock_service.unsubscribe_customer.assert_awaited_once_with("cus_1", organization_id=ORG)

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_journeys_end_to_end(self, engine, start_manual_campaign):
        first, _ = await start_manual_campaign(delays=[0, 24])
        second, _ = await start_manual_campaign(delays=[0, 24])
        handler = CampaignEventHandler(engine.service)

        await handler.handle_event("user.unsubscribed", {"customer_id": "cus_1"})
        await engine.advance(hours=48)

        assert engine.email.sent == []
        for campaign in (first, second):
            journey = await engine.service.get_journey(campaign.campaign_id, "cus_1")
            assert journey.status == JourneyStatus.UNSUBSCRIBED
