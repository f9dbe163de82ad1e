"""WebSocket route for the room chat protocol.

One receive loop per connection: frames are handled one at a time, so a
disconnect is only processed after the in-flight event has finished.

Heartbeat/idle-timeout handling detects half-open connections: the
server sends a JSON ping when idle and closes after a configurable
number of missed pongs.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from application.ports.realtime import Envelope
from application.services.session_coordinator import SessionCoordinator
from domain.common.exceptions import ConnectionGoneException
from infrastructure.realtime.connection_manager import ConnectionManager
from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)


router = APIRouter(prefix="/ws", tags=["WebSocket"])


def get_coordinator_from_app(ws: WebSocket) -> SessionCoordinator:
    svc = getattr(ws.app.state, "session_coordinator", None)
    if svc is None:
        raise RuntimeError("Session coordinator not initialized. Ensure lifespan sets app.state.session_coordinator.")
    return svc


def get_connections_from_app(ws: WebSocket) -> ConnectionManager:
    conn = getattr(ws.app.state, "realtime_connections", None)
    if conn is None:
        raise RuntimeError("Connection manager not initialized. Ensure lifespan sets app.state.realtime_connections.")
    return conn


async def _receive(ws: WebSocket) -> Optional[dict]:
    """Read one text frame; malformed frames are logged and yield None."""
    text = await ws.receive_text()
    try:
        msg = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("ws_invalid_frame", size=len(text))
        return None
    if not isinstance(msg, dict):
        logger.warning("ws_frame_not_object")
        return None
    return msg


@router.websocket("")
async def websocket_endpoint(ws: WebSocket) -> None:
    await ws.accept()
    coordinator = get_coordinator_from_app(ws)
    connections = get_connections_from_app(ws)

    connection_id = uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(connection_id=connection_id)
    await connections.add(connection_id, ws)
    await coordinator.connect(connection_id)
    try:
        idle_ping_interval = float(settings.REALTIME_WS_IDLE_PING_INTERVAL_S)
        pong_grace = float(settings.REALTIME_WS_PONG_GRACE_S)
        missed_limit = int(settings.REALTIME_WS_MISSED_PING_LIMIT)

        missed = 0
        while True:
            if idle_ping_interval and idle_ping_interval > 0:
                try:
                    msg = await asyncio.wait_for(_receive(ws), timeout=idle_ping_interval)
                    missed = 0
                except asyncio.TimeoutError:
                    # Idle: send ping and wait a short grace for response
                    missed += 1
                    try:
                        await connections.send(connection_id, Envelope(type="ping"))
                    except ConnectionGoneException:
                        break
                    try:
                        msg = await asyncio.wait_for(_receive(ws), timeout=pong_grace)
                        missed = 0
                    except asyncio.TimeoutError:
                        if missed > missed_limit:
                            logger.info("ws_idle_timeout", missed=missed)
                            await ws.close(code=1001)
                            break
                        continue
            else:
                msg = await _receive(ws)

            if msg is None:
                continue
            mtype = str(msg.get("type") or "")
            if mtype == "ping":
                await connections.send(connection_id, Envelope(type="pong"))
            elif mtype == "pong":
                # Client heartbeat reply; nothing else to do.
                continue
            else:
                await coordinator.handle_event(connection_id, msg)
    except WebSocketDisconnect:
        logger.info("ws_client_disconnected")
    except Exception as exc:
        logger.error("ws_error", error=str(exc), exc_info=True)
    finally:
        await coordinator.disconnect(connection_id)
        await connections.remove(connection_id)
        structlog.contextvars.unbind_contextvars("connection_id")
