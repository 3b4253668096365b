"""
NATS JetStream Client for Python Microservices
Provides event-driven communication between platform services

Thin wrapper around nats-py: connects once, ensures the stream for an
event's subject prefix exists, and publishes JSON-encoded events.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import nats
from nats.js.errors import BadRequestError

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class ServiceSource(Enum):
    """Services publishing onto the bus"""
    PERFORMANCE_SERVICE = "performance_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: str,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, Enum) else event_type
        self.source = source.value
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


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are named after the subject prefix: ``performance.*`` events
    land in ``performance-stream``.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self._nc = None
        self._js = None
        self._streams = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.config.nats_servers}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(
                servers=[self.config.nats_servers],
                name=self.service_name,
            )
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def _ensure_stream(self, subject: str) -> str:
        prefix = subject.split(".")[0]
        stream_name = f"{prefix}-stream"
        if stream_name not in self._streams:
            try:
                await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
            except BadRequestError as e:
                # Stream already exists with a compatible config
                logger.debug(f"Stream creation note: {e}")
            self._streams.add(stream_name)
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to JetStream, using event.type as the subject"""
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type)
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def close(self):
        """Close NATS connection"""
        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None
        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


__all__ = ["DecimalEncoder", "Event", "NATSEventBus", "ServiceSource"]
