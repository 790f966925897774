"""
WebSocket Push

Live feed of monitor events for dashboard clients.

Every client is subscribed to a set of channels.  An event published on a
channel reaches the clients subscribed to that channel or to ``all``:

    alert          -> "alerts"
    scan_complete  -> "scans"
    stats          -> "all"   (throttled)

Client commands: ``ping``, ``subscribe``, ``unsubscribe``, ``get_stats``.
An idle connection gets a ``heartbeat`` every HEARTBEAT_SECONDS.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from arpmon.config import WEBSOCKET_BROADCAST_INTERVAL

logger = logging.getLogger(__name__)

router = APIRouter()

ALL_CHANNELS = "all"
HEARTBEAT_SECONDS = 30.0

EVENT_CHANNELS = {
    "alert": "alerts",
    "scan_complete": "scans",
    "stats": ALL_CHANNELS,
}
THROTTLED_EVENTS = {"stats"}


def _envelope(message_type: str, **fields) -> Dict:
    return {"type": message_type, "timestamp": datetime.now().isoformat(), **fields}


class ConnectionManager:
    """Tracks open sockets and the channels each one listens on."""

    def __init__(self, broadcast_interval: float = WEBSOCKET_BROADCAST_INTERVAL):
        self.broadcast_interval = broadcast_interval
        self._channels: Dict[WebSocket, Set[str]] = {}
        self._last_sent: Dict[str, float] = {}
        self._counters = {"connections": 0, "sent": 0, "received": 0}

    @property
    def connection_count(self) -> int:
        return len(self._channels)

    def get_stats(self) -> Dict:
        return {
            "active_connections": self.connection_count,
            "total_connections": self._counters["connections"],
            "total_messages_sent": self._counters["sent"],
            "total_messages_received": self._counters["received"],
        }

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._channels[websocket] = {ALL_CHANNELS}
        self._counters["connections"] += 1
        logger.info(f"WebSocket client connected ({self.connection_count} open)")

    def disconnect(self, websocket: WebSocket) -> None:
        if self._channels.pop(websocket, None) is not None:
            logger.info(f"WebSocket client disconnected ({self.connection_count} open)")

    def subscribe(self, websocket: WebSocket, channel: str) -> None:
        self._channels.setdefault(websocket, set()).add(channel)

    def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        self._channels.get(websocket, set()).discard(channel)

    def record_received(self) -> None:
        self._counters["received"] += 1

    def _listeners(self, channel: str):
        return [
            ws for ws, channels in self._channels.items()
            if ALL_CHANNELS in channels or channel in channels
        ]

    def _throttled(self, key: str) -> bool:
        now = time.monotonic()
        last = self._last_sent.get(key)
        if last is not None and now - last < self.broadcast_interval:
            return True
        self._last_sent[key] = now
        return False

    async def broadcast(self, message: Dict, channel: str = ALL_CHANNELS, rate_limited: bool = False) -> int:
        """Send ``message`` to every listener on ``channel``.

        ``rate_limited`` messages are dropped when one of the same type went
        out on the channel less than ``broadcast_interval`` ago.

        Returns:
            Number of clients the message was delivered to.
        """
        if rate_limited and self._throttled(f"{channel}:{message.get('type')}"):
            return 0

        delivered = 0
        for websocket in self._listeners(channel):
            if websocket.client_state != WebSocketState.CONNECTED:
                self.disconnect(websocket)
                continue
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping WebSocket client after failed send: {e}")
                self.disconnect(websocket)
                continue
            delivered += 1
            self._counters["sent"] += 1
        return delivered


manager = ConnectionManager()


async def publish(event: str, data: Dict) -> int:
    """Push a monitor event to subscribed clients."""
    channel = EVENT_CHANNELS.get(event)
    if channel is None:
        logger.debug(f"No WebSocket channel for event {event}")
        return 0
    return await manager.broadcast(
        _envelope(event, data=data), channel=channel, rate_limited=event in THROTTLED_EVENTS
    )


# ─── Client Commands ──────────────────────────────────────────────────────────


async def _on_ping(websocket: WebSocket, message: Dict) -> Optional[Dict]:
    return _envelope("pong")


async def _on_subscribe(websocket: WebSocket, message: Dict) -> Optional[Dict]:
    channel = str(message.get("channel", ALL_CHANNELS))
    manager.subscribe(websocket, channel)
    return _envelope("subscribed", channel=channel)


async def _on_unsubscribe(websocket: WebSocket, message: Dict) -> Optional[Dict]:
    channel = str(message.get("channel", ALL_CHANNELS))
    manager.unsubscribe(websocket, channel)
    return _envelope("unsubscribed", channel=channel)


async def _on_get_stats(websocket: WebSocket, message: Dict) -> Optional[Dict]:
    monitor = websocket.app.state.monitor
    if monitor is None:
        return _envelope("error", message="Monitor not available")
    return _envelope("stats", data=monitor.get_stats())


COMMANDS = {
    "ping": _on_ping,
    "subscribe": _on_subscribe,
    "unsubscribe": _on_unsubscribe,
    "get_stats": _on_get_stats,
}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live event feed; see the module docstring for the message types."""
    await manager.connect(websocket)
    await websocket.send_json(_envelope("connected", connection_count=manager.connection_count))

    try:
        while True:
            try:
                message = await asyncio.wait_for(websocket.receive_json(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json(_envelope("heartbeat", connections=manager.connection_count))
                continue
            except ValueError:
                await websocket.send_json(_envelope("error", message="Invalid JSON"))
                continue

            manager.record_received()
            handler = COMMANDS.get(message.get("type")) if isinstance(message, dict) else None
            if handler is None:
                await websocket.send_json(_envelope("error", message="Unknown command"))
                continue

            reply = await handler(websocket, message)
            if reply is not None:
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        logger.debug("WebSocket client closed the connection")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(websocket)


__all__ = ["router", "manager", "ConnectionManager", "publish"]
