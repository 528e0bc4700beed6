"""Signaling relay WebSocket router."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from ..deps import get_relay_hub_dependency
from ..services.relay_hub import RelayHub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/relay")
async def relay_endpoint(
    websocket: WebSocket,
    user_id: Optional[str] = Query(default=None),
    hub: RelayHub = Depends(get_relay_hub_dependency),
) -> None:
    """WebSocket endpoint relaying call signaling between clients.

    Every frame is ``{"event": <name>, "data": <payload>}``. The first frame
    sent to a client is ``connect`` carrying its session id.
    """
    await websocket.accept()

    async def send(message):
        await websocket.send_text(json.dumps(message))

    sid = await hub.register(send, user_id=user_id)

    try:
        async for message in websocket.iter_text():
            await _process_relay_message(hub, sid, message)

    except WebSocketDisconnect:
        logger.info(f"Relay client {sid[:8]} disconnected")
    except Exception as e:
        logger.error(f"Relay WebSocket error: {e}")
    finally:
        hub.unregister(sid)


async def _process_relay_message(hub: RelayHub, sid: str, message: str) -> None:
    """Parse one client frame and hand it to the hub.

    Args:
        hub: Relay hub
        sid: Session id of the sender
        message: Raw WebSocket text frame
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in relay message: {e}")
        return

    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        logger.warning("Relay message without event name ignored")
        return

    await hub.handle(sid, data["event"], data.get("data"))
