"""WebSocket relay channel with automatic reconnection."""

import asyncio
import contextlib
import json
import logging
from typing import Any, Optional

import aiohttp

from ..errors import SignalingUnreachable
from .relay_base import RelayFrame

logger = logging.getLogger(__name__)


class WebSocketRelayChannel:
    """Relay transport over a JSON WebSocket (``{"event": ..., "data": ...}`` frames).

    The first connection is made by ``connect()`` and fails loudly. After
    that, a dropped connection is re-established in the background with
    exponential backoff; the relay greets every new connection with a
    ``connect`` frame, which is passed on like any other frame.
    """

    def __init__(
        self,
        url: str,
        connect_timeout: float = 10.0,
        reconnect_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        user_id: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize relay channel.

        Args:
            url: Relay WebSocket URL
            connect_timeout: Seconds allowed for each connection attempt
            reconnect_delay: Initial backoff after a lost connection
            reconnect_max_delay: Backoff ceiling
            user_id: Name to register with the relay so others can ring us
            session: Optional aiohttp session (will create if not provided)
        """
        self.url = url
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.user_id = user_id
        self._session = session
        self._owned_session = session is None

        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._frames: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        session = await self._get_session()
        params = {"user_id": self.user_id} if self.user_id else None
        return await asyncio.wait_for(
            session.ws_connect(self.url, heartbeat=20.0, params=params), timeout=self.connect_timeout
        )

    async def connect(self) -> None:
        """Connect to the relay and start the background reader.

        Raises:
            SignalingUnreachable: If the first connection attempt fails
        """
        if self._task is not None:
            return

        self._closing = False
        logger.info(f"Connecting to relay {self.url}")
        try:
            ws = await self._open()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Relay unreachable at {self.url}: {e}")
            await self._close_session()
            raise SignalingUnreachable(f"relay unreachable at {self.url}: {e}") from e

        self._ws = ws
        self._task = asyncio.create_task(self._run(ws))
        logger.info("Relay connection established")

    async def emit(self, event: str, data: Any) -> None:
        """Send one event.

        Raises:
            SignalingUnreachable: If the relay is not connected right now
        """
        if not self.connected:
            raise SignalingUnreachable(f"relay not connected, cannot send {event}")
        await self._ws.send_str(json.dumps({"event": event, "data": data}))
        logger.debug(f"Relay -> {event}")

    async def receive(self) -> Optional[RelayFrame]:
        return await self._frames.get()

    async def close(self) -> None:
        """Close the connection, stop reconnecting and release the session."""
        self._closing = True

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None

        await self._close_session()
        self._frames.put_nowait(None)
        logger.info("Relay channel closed")

    async def _close_session(self) -> None:
        """Close session if we own it."""
        if self._owned_session and self._session:
            await self._session.close()
            self._session = None

    async def _run(self, ws: Optional[aiohttp.ClientWebSocketResponse]) -> None:
        """Read frames and transparently reconnect until closed."""
        delay = self.reconnect_delay
        while not self._closing:
            if ws is None:
                try:
                    ws = await self._open()
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.warning(f"Relay reconnect failed: {e}; retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.reconnect_max_delay)
                    continue
                logger.info("Relay connection re-established")
                delay = self.reconnect_delay
                self._ws = ws

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break

            self._ws = None
            ws = None
            if not self._closing:
                logger.warning("Relay connection lost, reconnecting")

    def _dispatch(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON from relay: {e}")
            return

        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            logger.warning(f"Malformed relay frame ignored: {raw[:200]}")
            return

        self._frames.put_nowait(RelayFrame(message["event"], message.get("data")))
