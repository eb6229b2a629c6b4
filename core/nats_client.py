"""
NATS Client for the Campaign Engine
Provides event-driven communication with the rest of the platform

This module wraps nats-py. Subjects are event types
(e.g. "journey.completed"); payloads are the JSON form of `Event`.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import nats
from nats.aio.client import Client as NATS
from nats.aio.msg import Msg

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class EventType(Enum):
    """Event types published by the campaign engine"""

    # Campaign Events
    CAMPAIGN_CREATED = "campaign.created"
    CAMPAIGN_STARTED = "campaign.started"
    CAMPAIGN_PAUSED = "campaign.paused"
    CAMPAIGN_COMPLETED = "campaign.completed"

    # Journey Events
    JOURNEY_STARTED = "journey.started"
    JOURNEY_STEP_DISPATCHED = "journey.step.dispatched"
    JOURNEY_STEP_SKIPPED = "journey.step.skipped"
    JOURNEY_STEP_FAILED = "journey.step.failed"
    JOURNEY_COMPLETED = "journey.completed"
    JOURNEY_PAUSED = "journey.paused"
    JOURNEY_RESUMED = "journey.resumed"
    JOURNEY_UNSUBSCRIBED = "journey.unsubscribed"

    # A/B Test Events
    ABTEST_COMPLETED = "abtest.completed"


class ServiceSource(Enum):
    """Service sources"""

    CAMPAIGN_SERVICE = "campaign_service"
    ORDER_SERVICE = "order_service"
    ACCOUNT_SERVICE = "account_service"
    NOTIFICATION_SERVICE = "notification_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: Union[EventType, str],
        source: Union[ServiceSource, str],
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, EventType) else event_type
        self.source = source.value if isinstance(source, ServiceSource) else source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type") or data.get("event_type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data") or {}
        event.metadata = data.get("metadata") or {}
        event.version = data.get("version", "1.0.0")
        return event


EventHandler = Callable[[Event], Awaitable[None]]


class NATSEventBus:
    """
    NATS event bus on nats-py.

    Subscriptions use a queue group named after the service so that several
    engine replicas share the inbound event load.
    """

    def __init__(self, service_name: str, servers: str = "nats://localhost:4222"):
        self.service_name = service_name
        self.servers = servers
        self._nc: Optional[NATS] = None
        self._subscriptions: Dict[str, Any] = {}

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS"""
        try:
            self._nc = await nats.connect(
                servers=[self.servers],
                name=self.service_name,
                max_reconnect_attempts=-1,
            )
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """Publish an event using its type as the subject"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            await self._nc.publish(event.type, data)
            logger.debug(f"Published event {event.type} [{event.id}]")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe(
        self, subject: str, handler: EventHandler, durable: Optional[str] = None
    ) -> None:
        """Subscribe to a subject pattern (e.g. "order.>")"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return

        async def _on_message(msg: Msg):
            try:
                payload = json.loads(msg.data.decode())
                await handler(Event.from_dict(payload))
            except Exception as e:
                logger.error(f"Error handling message on {msg.subject}: {e}", exc_info=True)

        queue = durable or self.service_name
        self._subscriptions[subject] = await self._nc.subscribe(subject, queue=queue, cb=_on_message)
        logger.info(f"Subscribed to {subject} (queue={queue})")

    async def unsubscribe(self, subject: str) -> bool:
        sub = self._subscriptions.pop(subject, None)
        if not sub:
            return False
        await sub.unsubscribe()
        return True

    async def close(self):
        """Drain and close the NATS connection"""
        for subject in list(self._subscriptions.keys()):
            await self.unsubscribe(subject)

        if self._nc:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.warning(f"Error draining NATS connection: {e}")
            self._nc = None

        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


def create_event(
    event_type: EventType,
    source: ServiceSource,
    data: Dict[str, Any],
    subject: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Event:
    """Create an Event instance"""
    return Event(
        event_type=event_type,
        source=source,
        data=data,
        subject=subject,
        metadata=metadata,
    )
