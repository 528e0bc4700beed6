"""Typed signaling client on top of a relay channel."""

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

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
    CallEnded,
    CallRejected,
    IncomingCall,
    PeerJoined,
    SignalEnvelope,
    SignalingEvent,
    SignalReceived,
)
from .relay_base import RelayChannel, RelayFrame

logger = logging.getLogger(__name__)


class SignalingClient:
    """Relays call messages without interpreting their payloads.

    Incoming relay frames are turned into typed events and queued; consumers
    read them in arrival order with ``next_event()`` or ``events()``. The
    queue is bounded, so a slow consumer holds back the reader instead of
    letting events pile up.
    """

    def __init__(self, channel: RelayChannel, max_pending_events: int = 256):
        """Initialize signaling client.

        Args:
            channel: Relay transport
            max_pending_events: Capacity of the incoming event queue
        """
        self.channel = channel
        self.local_id: Optional[str] = None
        self._rooms: List[str] = []
        self._events: asyncio.Queue = asyncio.Queue(maxsize=max_pending_events)
        self._reader: Optional[asyncio.Task] = None

    @property
    def rooms(self) -> List[str]:
        return list(self._rooms)

    async def connect(self) -> None:
        """Connect the relay channel and start reading frames.

        Raises:
            SignalingUnreachable: If the relay cannot be reached
        """
        await self.channel.connect()
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        if self._reader:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        await self.channel.close()
        self._rooms.clear()

    async def join_room(self, room_id: str) -> None:
        if room_id not in self._rooms:
            self._rooms.append(room_id)
        await self.channel.emit(JOIN_ROOM, {"room": room_id})
        logger.info(f"Joined room {room_id}")

    async def leave_room(self, room_id: str) -> None:
        if room_id in self._rooms:
            self._rooms.remove(room_id)
        await self.channel.emit(LEAVE_ROOM, {"room": room_id})
        logger.info(f"Left room {room_id}")

    async def send(self, envelope: SignalEnvelope) -> None:
        """Send an envelope to the relay as-is."""
        event, data = envelope.to_relay()
        if event == CALL_SIGNAL and "from" not in data and self.local_id is not None:
            data["from"] = self.local_id
        await self.channel.emit(event, data)
        logger.debug(f"Sent {envelope.kind.value} (room={envelope.room_id}, to={envelope.to})")

    async def invite(self, to_user_id: str, room_id: str, caller_name: Optional[str] = None) -> None:
        """Ring another user, asking them to join ``room_id``."""
        await self.channel.emit(
            CALL_START,
            {"toUserId": to_user_id, "roomId": room_id, "callerName": caller_name},
        )
        logger.info(f"Invited {to_user_id} to room {room_id}")

    async def reject(self, room_id: str) -> None:
        """Decline an incoming call for ``room_id``."""
        await self.channel.emit(CALL_REJECTED, {"roomId": room_id})
        logger.info(f"Rejected call in room {room_id}")

    async def next_event(self) -> SignalingEvent:
        return await self._events.get()

    async def events(self) -> AsyncIterator[SignalingEvent]:
        while True:
            yield await self._events.get()

    async def _read_loop(self) -> None:
        while True:
            frame = await self.channel.receive()
            if frame is None:
                logger.info("Relay channel closed, signaling reader stopped")
                return
            try:
                await self._handle_frame(frame)
            except Exception as e:
                logger.error(f"Error handling relay frame {frame.event}: {e}")

    async def _handle_frame(self, frame: RelayFrame) -> None:
        data: Dict[str, Any] = frame.data if isinstance(frame.data, dict) else {}

        if frame.event == CONNECT:
            self.local_id = data.get("sid", self.local_id)
            logger.info(f"Relay session id: {self.local_id}")
            # Membership does not survive a reconnect on the relay side
            for room_id in list(self._rooms):
                await self.channel.emit(JOIN_ROOM, {"room": room_id})
                logger.info(f"Re-joined room {room_id}")
            return

        event = self._to_event(frame.event, data)
        if event is None:
            logger.debug(f"Ignoring relay event {frame.event}")
            return
        await self._events.put(event)

    @staticmethod
    def _to_event(name: str, data: Dict[str, Any]) -> Optional[SignalingEvent]:
        if name == USER_JOINED:
            peer_id = data.get("userId")
            return PeerJoined(peer_id=peer_id) if peer_id else None
        if name == CALL_SIGNAL:
            signal = data.get("signal")
            if not isinstance(signal, dict):
                return None
            return SignalReceived(from_=data.get("from"), payload=signal)
        if name == CALL_REJECTED:
            return CallRejected(room_id=data.get("roomId"))
        if name == CALL_ENDED:
            return CallEnded(room_id=data.get("roomId"))
        if name == CALL_INCOMING:
            room_id = data.get("roomId")
            return IncomingCall(room_id=room_id, caller=data.get("from") or {}) if room_id else None
        return None
