"""
Event fan-out, publishing side.

Services publish lifecycle events to logical channels:
- staff:{company_id}:{outlet_id} - every terminal and kitchen display of an outlet
- customer:{order_id} - the guest tracking page of one order

The API process pushes events into Redis pub/sub; the WebSocket bridge
(`ws_bridge.py`) subscribes and relays them to joined sessions. Delivery is
fire-and-forget and at-most-once: clients that reconnect re-fetch current
state instead of expecting a replay.
"""
import json
import logging
from enum import Enum
from typing import Any

import redis

from .settings import settings

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_STATUS_UPDATED = "order.status.updated"
    PAYMENT_CREATED = "payment.created"
    PAYMENT_UPDATED = "payment.updated"

    # Control messages sent by clients to the bridge
    JOIN_STAFF_ROOM = "join.staff.room"
    JOIN_CUSTOMER_ROOM = "join.customer.room"
    LEAVE_ROOM = "leave.room"


def staff_channel(company_id: int, outlet_id: int) -> str:
    return f"staff:{company_id}:{outlet_id}"


def customer_channel(order_id: int) -> str:
    return f"customer:{order_id}"


def encode_event(channel: str, event: str, payload: dict[str, Any]) -> str:
    event_name = getattr(event, "value", event)
    return json.dumps({"event": event_name, "channel": channel, "data": payload}, default=str)


class RedisEventPublisher:
    """Publish events to Redis. Never raises: a missing broker only costs real-time updates."""

    def __init__(self, redis_url: str | None = None, prefix: str | None = None):
        self.redis_url = redis_url or settings.redis_url
        self.prefix = settings.event_channel_prefix if prefix is None else prefix
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis | None:
        if self._client is None:
            try:
                client = redis.from_url(self.redis_url, socket_connect_timeout=1, socket_timeout=1)
                client.ping()
                self._client = client
            except Exception as e:
                logger.warning(f"Redis unavailable at {self.redis_url}: {e}")
                return None
        return self._client

    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        event_name = getattr(event, "value", event)
        r = self._get_client()
        if r is None:
            return
        try:
            r.publish(f"{self.prefix}{channel}", encode_event(channel, event_name, payload))
        except Exception as e:
            # Drop the client so the next publish reconnects
            self._client = None
            logger.warning(f"Failed to publish {event_name} to {channel}: {e}", exc_info=True)


class NullEventPublisher:
    """Publisher used when real-time updates are disabled."""

    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        logger.debug(f"Dropping {getattr(event, 'value', event)} for {channel}")


def safe_publish(publisher, channel: str, event: EventType, payload: dict[str, Any]) -> None:
    """Publish through any EventPublisher without letting its failure reach the caller."""
    try:
        publisher.publish(channel, event.value, payload)
    except Exception as e:
        logger.error(f"Event publisher failed for {event.value} on {channel}: {e}", exc_info=True)
