"""In-process WebSocket connection manager.

Owns the live sockets of this process keyed by connection id, each with
a bounded send queue drained by its own sender task so one slow client
cannot stall a room broadcast. Room membership lives in the
ConnectionRegistry, not here.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from application.ports.realtime import Envelope, ConnectionSenderPort
from domain.common.exceptions import ConnectionGoneException
from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)

_OVERFLOW_POLICIES = {"drop_oldest", "drop_new", "disconnect"}


class ConnectionManager(ConnectionSenderPort):
    """Manage per-process WebSocket connections and their send queues."""

    def __init__(
        self,
        *,
        queue_max: Optional[int] = None,
        overflow_policy: Optional[str] = None,
    ) -> None:
        self._sockets: Dict[str, Any] = {}
        self._send_queues: Dict[str, asyncio.Queue] = {}
        self._sender_tasks: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._queue_max = max(1, int(queue_max or settings.REALTIME_WS_SEND_QUEUE_MAX))
        policy = (overflow_policy or settings.REALTIME_WS_SEND_OVERFLOW_POLICY or "drop_oldest").lower()
        if policy not in _OVERFLOW_POLICIES:
            logger.warning("ws_send_queue_policy_invalid", policy=policy, fallback="drop_oldest")
            policy = "drop_oldest"
        self._overflow_policy = policy

    async def add(self, connection_id: str, ws: Any) -> None:
        async with self._lock:
            self._sockets[connection_id] = ws
            if connection_id not in self._send_queues:
                q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_max)
                self._send_queues[connection_id] = q
                self._sender_tasks[connection_id] = asyncio.create_task(self._sender_loop(connection_id, ws, q))
        logger.info("ws_connected", connection_id=connection_id)

    async def remove(self, connection_id: str) -> None:
        async with self._lock:
            self._sockets.pop(connection_id, None)
            task = self._sender_tasks.pop(connection_id, None)
            if task is not None:
                task.cancel()
            q = self._send_queues.pop(connection_id, None)
            # pending frames for a gone socket are discarded; keep join() from blocking
            while q is not None and not q.empty():
                q.get_nowait()
                q.task_done()
        logger.info("ws_disconnected", connection_id=connection_id)

    def __len__(self) -> int:
        return len(self._sockets)

    async def send(self, connection_id: str, envelope: Envelope) -> bool:  # type: ignore[override]
        q = self._send_queues.get(connection_id)
        if q is None:
            raise ConnectionGoneException(connection_id)
        payload = envelope.model_dump(mode="json")
        return await self._enqueue(connection_id, q, payload)

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to its socket."""
        queues = list(self._send_queues.values())
        for q in queues:
            await q.join()

    async def close_all(self) -> None:
        async with self._lock:
            tasks = list(self._sender_tasks.values())
            self._sender_tasks.clear()
            self._send_queues.clear()
            self._sockets.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _enqueue(self, connection_id: str, q: asyncio.Queue, payload: dict) -> bool:
        try:
            q.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            policy = self._overflow_policy
            if policy == "drop_new":
                logger.warning("ws_send_queue_drop_new", connection_id=connection_id)
                return False
            if policy == "disconnect":
                logger.warning("ws_send_queue_disconnect", connection_id=connection_id)
                ws = self._sockets.get(connection_id)
                if ws is not None:
                    try:
                        await ws.close(code=1013)
                    except Exception as exc:
                        logger.debug("ws_close_failed", connection_id=connection_id, error=str(exc))
                return False
            # default: drop_oldest
            try:
                q.get_nowait()
                q.task_done()
            except asyncio.QueueEmpty:
                pass
            try:
                q.put_nowait(payload)
                return True
            except asyncio.QueueFull:
                logger.warning("ws_send_queue_drop_after_trim", connection_id=connection_id)
                return False

    async def _sender_loop(self, connection_id: str, ws: Any, q: asyncio.Queue) -> None:
        try:
            while True:
                payload = await q.get()
                try:
                    await ws.send_json(payload)
                except Exception as exc:
                    # Closed transport: the receive loop's disconnect path cleans up
                    logger.debug("ws_send_failed", connection_id=connection_id, error=str(exc))
                finally:
                    q.task_done()
        except asyncio.CancelledError:  # graceful exit
            return
