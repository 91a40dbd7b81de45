"""
Channel Hub

WebSocket fan-out for the assistant. Every connected socket belongs to one
user. Two kinds of delivery:

- private channel: every socket of one user
- room channel: every socket of every member of a room

Room membership is resolved by an injected callable; the hub does not
know how rooms are stored.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """What the coordinator needs from a push transport."""

    async def send_to_user(self, user_id: int, message: dict) -> None:
        ...

    async def send_to_room(self, room_id: int, message: dict) -> None:
        ...


class ChannelHub:
    """
    Central hub for assistant WebSocket connections.

    Responsibilities:
    - Accept and track sockets per user
    - Push private events to one user's sockets
    - Push room events to every member's sockets
    - Drop sockets that fail to receive
    """

    def __init__(self, resolve_members: Callable[[int], Awaitable[list[int]]]):
        """
        Initialize hub.

        Args:
            resolve_members: Async callable returning the user ids in a room
        """
        self.resolve_members = resolve_members

        self._clients: dict[int, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    @property
    def user_count(self) -> int:
        """Number of users with at least one socket."""
        return len(self._clients)

    @property
    def client_count(self) -> int:
        """Number of connected sockets."""
        return sum(len(sockets) for sockets in self._clients.values())

    # ==================== Connection Management ====================

    async def connect(self, user_id: int, websocket: WebSocket) -> None:
        """
        Handle a new client connection.

        Args:
            user_id: Owner of the socket
            websocket: The connecting WebSocket
        """
        await websocket.accept()

        async with self._lock:
            self._clients.setdefault(user_id, set()).add(websocket)

        await self._send_to_client(websocket, {
            "type": "connected",
            "userId": user_id,
        })

        logger.info(f"User {user_id} connected. Total clients: {self.client_count}")

    async def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        """
        Handle client disconnection.

        Args:
            user_id: Owner of the socket
            websocket: The disconnecting WebSocket
        """
        async with self._lock:
            self._discard(user_id, websocket)

        logger.info(f"User {user_id} disconnected. Total clients: {self.client_count}")

    def _discard(self, user_id: int, websocket: WebSocket) -> None:
        sockets = self._clients.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._clients[user_id]

    async def _send_to_client(self, websocket: WebSocket, message: dict) -> bool:
        """
        Send a message to a specific client.

        Returns:
            True if sent successfully, False if client is dead
        """
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=5.0)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to client: {e}")
            return False

    async def _deliver(self, user_ids: list[int], message: dict) -> None:
        """Send to every socket of the given users, pruning dead ones."""
        async with self._lock:
            targets = [
                (user_id, websocket)
                for user_id in user_ids
                for websocket in self._clients.get(user_id, ())
            ]

        dead: list[tuple[int, WebSocket]] = []
        for user_id, websocket in targets:
            if not await self._send_to_client(websocket, message):
                dead.append((user_id, websocket))

        if dead:
            async with self._lock:
                for user_id, websocket in dead:
                    self._discard(user_id, websocket)

    # ==================== Channels ====================

    async def send_to_user(self, user_id: int, message: dict) -> None:
        """Push to one user's private channel."""
        await self._deliver([user_id], message)

    async def send_to_room(self, room_id: int, message: dict) -> None:
        """Push to every member of a room."""
        members = await self.resolve_members(room_id)
        await self._deliver(list(dict.fromkeys(members)), message)

    # ==================== Statistics ====================

    def get_stats(self) -> dict:
        """Get hub statistics."""
        return {
            "user_count": self.user_count,
            "client_count": self.client_count,
        }
