"""
WebSocket handling for StreamVio job events

Clients receive every job event by default. Sending
{"type": "subscribe", "job_ids": [...]} narrows a connection to those
jobs; {"type": "subscribe"} without ids widens it back to all jobs.
"""

import asyncio
import json
import logging
from typing import Dict, FrozenSet, Optional

from fastapi import WebSocket, WebSocketDisconnect

from ..events import JobEvent

logger = logging.getLogger(__name__)

# Connected clients and the job ids each one follows (None = all jobs)
websocket_connections: Dict[WebSocket, Optional[FrozenSet[str]]] = {}

IDLE_PING_INTERVAL = 30.0


def broadcast_event(event: JobEvent):
    """Event bus subscriber: forward a job event to interested clients."""
    targets = [
        ws for ws, job_ids in list(websocket_connections.items())
        if job_ids is None or event.job_id in job_ids
    ]
    if not targets:
        return None
    return _send_to(targets, event.to_dict())


async def _send_to(targets, message: dict) -> None:
    for ws in targets:
        try:
            await ws.send_json(message)
        except (WebSocketDisconnect, RuntimeError, ConnectionError):
            # Client went away mid-send
            websocket_connections.pop(ws, None)


async def _handle_message(websocket: WebSocket, message: dict) -> None:
    kind = message.get("type")
    if kind == "ping":
        await websocket.send_json({"type": "pong"})
    elif kind == "subscribe":
        job_ids = message.get("job_ids")
        followed = frozenset(str(j) for j in job_ids) if job_ids else None
        websocket_connections[websocket] = followed
        await websocket.send_json({
            "type": "subscribed",
            "job_ids": sorted(followed) if followed is not None else None,
        })


async def websocket_events_handler(websocket: WebSocket) -> None:
    """WebSocket endpoint handler for real-time job events."""
    await websocket.accept()
    websocket_connections[websocket] = None
    logger.info(f"[WebSocket] Client connected ({len(websocket_connections)} total)")

    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=IDLE_PING_INTERVAL)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("[WebSocket] Ignoring non-JSON message")
                continue
            if isinstance(message, dict):
                await _handle_message(websocket, message)

    except WebSocketDisconnect:
        pass
    finally:
        websocket_connections.pop(websocket, None)
        logger.info(f"[WebSocket] Client disconnected ({len(websocket_connections)} total)")
