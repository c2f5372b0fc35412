"""
WebSocket Bridge

Subscribes to Redis pub/sub and relays events to WebSocket sessions joined to
the matching channel:
- staff:{company_id}:{outlet_id} (cashier terminals and kitchen displays)
- customer:{order_id} (guest order tracking page)

Clients connect to /ws and send JSON control messages:
    {"event": "join.staff.room", "token": "<jwt>", "outlet_id": 3}
    {"event": "join.customer.room", "order_code": "K7Q2XM"}
    {"event": "leave.room", "channel": "customer:42"}

Run with: uvicorn pos_core.ws_bridge:app
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .channels import ChannelHub, Subscriber
from .events import EventType, customer_channel, staff_channel
from .security import decode_actor
from .settings import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


hub = ChannelHub()


async def resolve_order(order_code: str) -> int | None:
    """Look the order up through the API by its code; None if guests may not follow it."""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{settings.api_url}/public/orders/code/{order_code}")
            if response.status_code != 200:
                return None
            return int(response.json()["order"]["id"])
    except Exception as e:
        logger.error(f"Error validating order {order_code}: {e}", exc_info=True)
        return None


class ControlError(Exception):
    """A control message that cannot be honoured; reported back to the client."""


async def handle_control(hub: ChannelHub, session: Subscriber, message: dict) -> dict:
    """Apply one join/leave control message; returns the reply to send back."""
    event = message.get("event")

    if event == EventType.JOIN_STAFF_ROOM.value:
        actor = decode_actor(message.get("token") or "")
        if actor is None:
            raise ControlError("Invalid authentication token")
        requested_company = message.get("company_id")
        if requested_company is not None and str(requested_company) != str(actor.company_id):
            raise ControlError("Company ID mismatch")
        try:
            outlet_id = int(message["outlet_id"])
        except (KeyError, TypeError, ValueError):
            raise ControlError("outlet_id is required")
        channel = staff_channel(actor.company_id, outlet_id)
        hub.join(channel, session)
        logger.info(f"User {actor.user_id} joined {channel}")
        return {"event": "joined", "channel": channel}

    if event == EventType.JOIN_CUSTOMER_ROOM.value:
        order_code = message.get("order_code")
        if not order_code or not isinstance(order_code, str):
            raise ControlError("order_code is required")
        order_id = await resolve_order(order_code)
        if order_id is None:
            raise ControlError("Order not found")
        channel = customer_channel(order_id)
        hub.join(channel, session)
        logger.info(f"Guest joined {channel}")
        return {"event": "joined", "channel": channel}

    if event == EventType.LEAVE_ROOM.value:
        channel = message.get("channel")
        if not channel:
            raise ControlError("channel is required")
        hub.leave(channel, session)
        return {"event": "left", "channel": channel}

    raise ControlError(f"Unknown event: {event}")


async def relay(redis_channel: str, data: str) -> int:
    """Forward one Redis message to the hub channel it names; returns deliveries."""
    prefix = settings.event_channel_prefix
    if not redis_channel.startswith(prefix):
        return 0
    channel = redis_channel[len(prefix):]
    delivered = await hub.publish(channel, data)
    logger.debug(f"Relayed event on {channel} to {delivered} session(s)")
    return delivered


async def redis_listener():
    """Subscribe to Redis and relay every event to its channel."""
    prefix = settings.event_channel_prefix

    while True:
        try:
            r = redis.from_url(settings.redis_url)
            pubsub = r.pubsub()
            await pubsub.psubscribe(f"{prefix}*")

            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                await relay(message["channel"].decode(), message["data"].decode())

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Redis connection error: {e}", exc_info=True)
            await asyncio.sleep(5)  # Retry after 5 seconds


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Start Redis listener on startup
    task = asyncio.create_task(redis_listener())
    yield
    task.cancel()


app = FastAPI(title="POS WS Bridge", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "staff_connections": hub.count_by_prefix("staff:"),
        "customer_connections": hub.count_by_prefix("customer:"),
        "total_connections": hub.count(),
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    client_host = websocket.client.host if websocket.client else "unknown"
    await websocket.accept()
    logger.info(f"WebSocket connected from {client_host}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ControlError("Control message must be a JSON object")
                reply = await handle_control(hub, websocket, message)
            except json.JSONDecodeError:
                reply = {"event": "error", "detail": "Invalid JSON"}
            except ControlError as e:
                logger.warning(f"Rejected control message from {client_host}: {e}")
                reply = {"event": "error", "detail": str(e)}
            await websocket.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        left = hub.leave_all(websocket)
        logger.info(f"WebSocket from {client_host} disconnected (left {len(left)} channel(s))")
