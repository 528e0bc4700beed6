"""In-memory signaling relay.

Routes call messages between connected clients and tracks which client is
in which room. It never looks inside ``call:signal`` payloads.
"""

import logging
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..models.signals import (
    CALL_ENDED,
    CALL_INCOMING,
    CALL_REJECTED,
    CALL_SIGNAL,
    CALL_START,
    CONNECT,
    JOIN_ROOM,
    LEAVE_ROOM,
    USER_JOINED,
)

logger = logging.getLogger(__name__)

SendMessage = Callable[[Dict[str, Any]], Awaitable[None]]


class RelayHub:
    """Room membership and message routing for relay clients.

    Attributes:
        connections (Dict[str, SendMessage]): sid -> send function
        rooms (Dict[str, Set[str]]): room -> member sids
        users (Dict[str, str]): sid -> user id given at connect time
    """

    def __init__(self):
        self.connections: Dict[str, SendMessage] = {}
        self.rooms: Dict[str, Set[str]] = defaultdict(set)
        self.users: Dict[str, str] = {}

    async def register(self, send: SendMessage, user_id: Optional[str] = None) -> str:
        """Add a client and greet it with its session id.

        Args:
            send: Coroutine function delivering one message to the client
            user_id: Optional user id; the client also joins a personal room
                of that name so it can be rung with ``call:start``

        Returns:
            The new session id
        """
        sid = uuid.uuid4().hex
        self.connections[sid] = send
        if user_id:
            self.users[sid] = user_id
            self.rooms[user_id].add(sid)
        logger.info(f"Relay client connected: sid={sid[:8]}, user={user_id}")
        await self._send(sid, CONNECT, {"sid": sid})
        return sid

    def unregister(self, sid: str) -> None:
        self.connections.pop(sid, None)
        self.users.pop(sid, None)
        for room in [name for name, members in self.rooms.items() if sid in members]:
            self._discard(room, sid)
        logger.info(f"Relay client disconnected: sid={sid[:8]}")

    def room_members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, set()))

    async def handle(self, sid: str, event: str, data: Any) -> None:
        """Route one event sent by client ``sid``."""
        data = data if isinstance(data, dict) else {}

        if event == JOIN_ROOM:
            await self._join(sid, data.get("room"))
        elif event == LEAVE_ROOM:
            room = data.get("room")
            if room:
                self._discard(room, sid)
        elif event == CALL_SIGNAL:
            await self._route_signal(sid, data)
        elif event == CALL_REJECTED:
            room = data.get("roomId")
            await self._broadcast(room, CALL_REJECTED, {"roomId": room}, exclude=sid)
            await self._broadcast(room, CALL_ENDED, {"roomId": room}, exclude=sid)
        elif event == CALL_ENDED:
            room = data.get("roomId")
            await self._broadcast(room, CALL_ENDED, {"roomId": room}, exclude=sid)
        elif event == CALL_START:
            await self._ring(sid, data)
        else:
            logger.debug(f"Unknown relay event from {sid[:8]}: {event}")

    async def _join(self, sid: str, room: Optional[str]) -> None:
        if not room:
            return
        members = self.rooms[room]
        if sid in members:
            return
        members.add(sid)
        logger.info(f"sid={sid[:8]} joined room {room} ({len(members)} member(s))")
        await self._broadcast(room, USER_JOINED, {"userId": sid}, exclude=sid)

    async def _route_signal(self, sid: str, data: Dict[str, Any]) -> None:
        to = data.get("to")
        message = {"signal": data.get("signal"), "from": sid}
        if to in self.connections:
            await self._send(to, CALL_SIGNAL, message)
        elif to in self.rooms:
            await self._broadcast(to, CALL_SIGNAL, message, exclude=sid)
        else:
            logger.debug(f"Dropping call:signal from {sid[:8]} to unknown target {to}")

    async def _ring(self, sid: str, data: Dict[str, Any]) -> None:
        to_user = data.get("toUserId")
        room = data.get("roomId")
        if not to_user or not room:
            return
        caller = {"id": self.users.get(sid, sid), "name": data.get("callerName")}
        await self._broadcast(to_user, CALL_INCOMING, {"roomId": room, "from": caller}, exclude=sid)

    async def _broadcast(self, room: Optional[str], event: str, data: Dict[str, Any], exclude: Optional[str] = None) -> None:
        if not room:
            return
        for member in list(self.rooms.get(room, set())):
            if member != exclude:
                await self._send(member, event, data)

    async def _send(self, sid: str, event: str, data: Dict[str, Any]) -> None:
        send = self.connections.get(sid)
        if send is None:
            return
        try:
            await send({"event": event, "data": data})
        except Exception as e:
            logger.error(f"Failed to deliver {event} to {sid[:8]}: {e}")
            self.unregister(sid)

    def _discard(self, room: str, sid: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self.rooms[room]
