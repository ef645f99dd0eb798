"""Multiplexed WebSocket endpoint: one socket, many ``queries.<id>`` / ``conversations.<id>`` topics.

Client → server::

    {"type": "subscribe", "channel": "conversations.7"}
    {"type": "unsubscribe", "channel": "conversations.7"}
    {"type": "ping"} / {"type": "pong"}

Server → client: every event envelope published on a subscribed channel, plus
``subscribed`` / ``unsubscribed`` / ``error`` acknowledgements and a ``ping``
whenever the socket has been idle for HEARTBEAT_INTERVAL seconds.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time

import redis.asyncio as aioredis
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from config import settings
from services.events import CONVERSATION_CHANNEL_PREFIX, QUERY_CHANNEL_PREFIX

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_INTERVAL = 30  # seconds
PONG_TIMEOUT = 10  # seconds
MAX_SUBSCRIPTIONS = 100

ALLOWED_PREFIXES = (QUERY_CHANNEL_PREFIX, CONVERSATION_CHANNEL_PREFIX)


def is_allowed_channel(channel: str) -> bool:
    """Only ``queries.<int>`` and ``conversations.<int>``; no patterns."""
    for prefix in ALLOWED_PREFIXES:
        if channel.startswith(prefix):
            return channel[len(prefix):].isdigit()
    return False


class TopicSession:
    """State for one connected client: its pub/sub handle, topics and heartbeat."""

    def __init__(self, websocket: WebSocket, redis_client):
        self.websocket = websocket
        self.redis = redis_client
        self.pubsub = redis_client.pubsub()
        self.channels: set[str] = set()
        self.last_seen = time.monotonic()
        self.ping_sent_at: float | None = None
        self.closing = False

    async def send(self, payload: dict) -> None:
        if self.closing or self.websocket.client_state != WebSocketState.CONNECTED:
            return
        await self.websocket.send_json(payload)
        self.last_seen = time.monotonic()

    async def subscribe(self, channel: str) -> None:
        if not is_allowed_channel(channel):
            await self.send({"type": "error", "channel": channel, "message": "Unknown channel"})
            return
        if channel not in self.channels:
            if len(self.channels) >= MAX_SUBSCRIPTIONS:
                await self.send({"type": "error", "channel": channel, "message": "Too many subscriptions"})
                return
            await self.pubsub.subscribe(channel)
            self.channels.add(channel)
        await self.send({"type": "subscribed", "channel": channel})

    async def unsubscribe(self, channel: str) -> None:
        if channel in self.channels:
            await self.pubsub.unsubscribe(channel)
            self.channels.discard(channel)
        await self.send({"type": "unsubscribed", "channel": channel})

    async def handle(self, msg: dict) -> None:
        kind = msg.get("type")
        channel = msg.get("channel") or ""
        if kind == "subscribe" and channel:
            await self.subscribe(channel)
        elif kind == "unsubscribe" and channel:
            await self.unsubscribe(channel)
        elif kind == "ping":
            await self.send({"type": "pong"})
        elif kind == "pong":
            self.ping_sent_at = None

    async def read_client(self) -> None:
        while True:
            frame = await self.websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            self.last_seen = time.monotonic()

            text = frame.get("text")
            if not text:
                continue
            try:
                msg = json.loads(text)
            except json.JSONDecodeError:
                await self.send({"type": "error", "message": "Invalid JSON"})
                continue
            if isinstance(msg, dict):
                await self.handle(msg)

    async def forward_events(self) -> None:
        while True:
            if not self.channels:
                await asyncio.sleep(0.5)
                continue
            try:
                item = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=0.5)
            except Exception:
                logger.warning("Redis pub/sub read failed, retrying", exc_info=True)
                await asyncio.sleep(1)
                continue
            if item and item["type"] == "message":
                try:
                    envelope = json.loads(item["data"])
                except json.JSONDecodeError:
                    logger.debug("Dropping malformed pubsub message on %s", item.get("channel"))
                else:
                    await self.send(envelope)
            await asyncio.sleep(0.05)

    async def keepalive(self) -> None:
        """Returns (ending the session) when a ping goes unanswered for PONG_TIMEOUT."""
        while True:
            await asyncio.sleep(1)
            now = time.monotonic()
            if self.ping_sent_at is not None:
                if now - self.ping_sent_at > PONG_TIMEOUT:
                    logger.debug("No pong within %ss, closing topic socket", PONG_TIMEOUT)
                    return
            elif now - self.last_seen >= HEARTBEAT_INTERVAL:
                await self.send({"type": "ping"})
                self.ping_sent_at = now

    async def close(self) -> None:
        self.closing = True
        try:
            if self.channels:
                await self.pubsub.unsubscribe(*self.channels)
            await self.pubsub.close()
            await self.redis.close()
        except Exception:
            logger.debug("Error releasing pub/sub for topic socket", exc_info=True)
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close()


@router.websocket("/ws/")
async def global_ws(websocket: WebSocket):
    await websocket.accept()
    session = TopicSession(websocket, aioredis.from_url(settings.REDIS_URL, decode_responses=True))

    workers: list[asyncio.Task] = []
    try:
        workers = [
            asyncio.create_task(session.read_client(), name="topics-reader"),
            asyncio.create_task(session.forward_events(), name="topics-redis"),
            asyncio.create_task(session.keepalive(), name="topics-keepalive"),
        ]
        finished, _ = await asyncio.wait(workers, return_when=asyncio.FIRST_COMPLETED)
        for task in finished:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning("Topic socket task %s ended with %r", task.get_name(), error)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Topic socket crashed")
    finally:
        for task in workers:
            if not task.done():
                task.cancel()
        await session.close()
