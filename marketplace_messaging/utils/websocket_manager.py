import asyncio
import logging
from typing import Any, Dict, List, Tuple

from fastapi import WebSocket, WebSocketDisconnect


logger = logging.getLogger(__name__)


class LiveSession:
    """One socket and the fanout channels it follows."""

    def __init__(self, user_id: str, websocket: WebSocket, bus) -> None:
        self.user_id = user_id
        self.websocket = websocket
        self._bus = bus
        self._pumps: Dict[str, Tuple[Any, asyncio.Task]] = {}
        self._send_lock = asyncio.Lock()

    @property
    def channels(self) -> List[str]:
        return list(self._pumps)

    async def follow(self, channel: str) -> None:
        if channel in self._pumps:
            return
        subscription = await self._bus.subscribe(channel)
        task = asyncio.create_task(self._pump(subscription), name=f"ws-{self.user_id}-{channel}")
        self._pumps[channel] = (subscription, task)

    async def unfollow(self, channel: str) -> None:
        entry = self._pumps.pop(channel, None)
        if entry is None:
            return
        subscription, task = entry
        await subscription.cancel()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json({"event": event, "data": data})

    async def close(self) -> None:
        for channel in list(self._pumps):
            await self.unfollow(channel)

    async def _pump(self, subscription) -> None:
        async for event, payload in subscription:
            try:
                await self.send(event, payload)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("Socket for %s gone, stopping %s", self.user_id, subscription.channel)
                break


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[LiveSession]] = {}

    async def connect(self, user_id: str, websocket: WebSocket, bus) -> LiveSession:
        await websocket.accept()
        session = LiveSession(user_id, websocket, bus)
        self.active_connections.setdefault(user_id, []).append(session)
        return session

    async def disconnect(self, session: LiveSession) -> None:
        await session.close()
        sessions = self.active_connections.get(session.user_id)
        if sessions is None:
            return
        try:
            sessions.remove(session)
        except ValueError:
            pass
        if not sessions:
            del self.active_connections[session.user_id]

    def is_connected(self, user_id: str) -> bool:
        return bool(self.active_connections.get(user_id))

    async def close_all(self) -> None:
        for sessions in list(self.active_connections.values()):
            for session in list(sessions):
                await self.disconnect(session)
