"""Publish event envelopes to Redis pub/sub channels (``queries.<id>``, ``conversations.<id>``)."""

from __future__ import annotations

import json
import time
from datetime import date, datetime
from decimal import Decimal

import redis as redis_lib

from config import settings


def _json_default(obj: object) -> str | float:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)  # display only; the DB keeps the exact value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_event(channel: str, event_type: str, data: dict | None = None) -> str:
    """Serialize the ``{type, channel, timestamp, data}`` envelope."""
    payload: dict = {"type": event_type, "channel": channel, "timestamp": time.time()}
    if data is not None:
        payload["data"] = data
    return json.dumps(payload, default=_json_default)


def broadcast(
    channel: str,
    event_type: str,
    data: dict | None = None,
    connection: redis_lib.Redis | None = None,
) -> int:
    """Publish one event and return the number of subscribers that received it.

    Sync function safe to call from FastAPI endpoints and RQ workers.
    """
    message = encode_event(channel, event_type, data)
    if connection is not None:
        return connection.publish(channel, message)

    r = redis_lib.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        return r.publish(channel, message)
    finally:
        r.close()
