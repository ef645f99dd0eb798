"""WebSocket endpoint streaming one query's status events via Redis pub/sub."""

from __future__ import annotations

import asyncio
import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from config import settings
from database import SessionLocal
from models.query import TERMINAL_STATUSES, LLMQuery
from services.events import STATUS_UPDATED, query_channel, query_status_payload

logger = logging.getLogger(__name__)

router = APIRouter()


def _snapshot(query_id: int) -> dict | None:
    """Current status envelope, so a late subscriber doesn't miss a finished query."""
    db = SessionLocal()
    try:
        query = db.get(LLMQuery, query_id)
        if query is None:
            return None
        return {
            "type": STATUS_UPDATED,
            "channel": query_channel(query_id),
            "data": query_status_payload(query),
        }
    finally:
        db.close()


def _is_terminal_event(event: dict) -> bool:
    return (
        event.get("type") == STATUS_UPDATED
        and (event.get("data") or {}).get("status") in TERMINAL_STATUSES
    )


@router.websocket("/ws/queries/{query_id}/")
async def query_ws(websocket: WebSocket, query_id: int):
    snapshot = _snapshot(query_id)
    if snapshot is None:
        await websocket.close(code=1008, reason="Query not found")
        return

    await websocket.accept()

    r = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    pubsub = r.pubsub()
    channel = query_channel(query_id)

    try:
        # Subscribe before sending the snapshot so no transition falls in between
        await pubsub.subscribe(channel)
        await websocket.send_json(snapshot)
        if _is_terminal_event(snapshot):
            return

        while True:
            msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if msg and msg["type"] == "message":
                try:
                    event = json.loads(msg["data"])
                except json.JSONDecodeError:
                    logger.debug("Dropping malformed pubsub message on %s", channel)
                else:
                    await websocket.send_json(event)
                    if _is_terminal_event(event):
                        break

            await asyncio.sleep(0.05)

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected for query %s", query_id)
    except Exception:
        logger.exception("WebSocket error for query %s", query_id)
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
        await r.close()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
